"""grpcio integration: a ClientConnectionPort that keeps a grpc aio channel current."""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from grpc import aio

from ..ports.logger import LoggerPort
from ..ports.resolver import ClientConnectionPort, ResolverState
from .simple_logger import SimpleLogger

ROUND_ROBIN_OPTIONS: list[tuple[str, Any]] = [("grpc.lb_policy_name", "round_robin")]

HostResolver = Callable[[str, int], Awaitable[list[str]]]


def split_host_port(address: str) -> tuple[str, str]:
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Address '{address}' is not host:port")
    return host.strip("[]"), port


def _ip_version(host: str) -> int | None:
    try:
        return ipaddress.ip_address(host).version
    except ValueError:
        return None


def render_target(addresses: Sequence[str]) -> str:
    """Render a list of IP literal addresses as a gRPC static target.

    All-IPv4 lists become ``ipv4:a:p,b:p`` and all-IPv6 lists
    ``ipv6:[a]:p,...`` so the channel balances over every address.

    Raises:
        ValueError: If the list is empty, an address is not host:port, an
            address is a hostname, or the list mixes IPv4 and IPv6
    """
    if not addresses:
        raise ValueError("Cannot render a target from an empty address list")

    families: set[int] = set()
    parts: list[tuple[str, str]] = []
    for address in addresses:
        host, port = split_host_port(address)
        version = _ip_version(host)
        if version is None:
            raise ValueError(f"Address '{address}' is not an IP literal, resolve it first")
        families.add(version)
        parts.append((host, port))

    if families == {4}:
        return "ipv4:" + ",".join(f"{host}:{port}" for host, port in parts)
    if families == {6}:
        return "ipv6:" + ",".join(f"[{host}]:{port}" for host, port in parts)
    raise ValueError("Cannot mix IPv4 and IPv6 addresses in one target")


async def resolve_host(host: str, port: int) -> list[str]:
    """IP addresses of host, IPv4 first when the name has both families."""
    infos = await asyncio.get_running_loop().getaddrinfo(host, port, type=socket.SOCK_STREAM)
    v4 = [info[4][0] for info in infos if info[0] == socket.AF_INET]
    v6 = [info[4][0] for info in infos if info[0] == socket.AF_INET6]
    return list(dict.fromkeys(v4 or v6))


class GrpcChannelSink(ClientConnectionPort):
    """Rebuilds a round-robin ``grpc.aio`` channel whenever the address list changes.

    Hostnames are resolved to IP addresses before the target is rendered, so
    every published instance takes part in balancing. An empty address list
    keeps the previous channel, so callers keep the last known membership
    instead of failing every RPC.
    """

    def __init__(
        self,
        channel_factory: Callable[..., Any] | None = None,
        options: list[tuple[str, Any]] | None = None,
        close_grace: float | None = 1.0,
        resolver: HostResolver | None = None,
        logger: LoggerPort | None = None,
    ):
        self._channel_factory = channel_factory or aio.insecure_channel
        self._options = list(options) if options is not None else list(ROUND_ROBIN_OPTIONS)
        self._close_grace = close_grace
        self._resolver = resolver or resolve_host
        self._logger = logger or SimpleLogger("etcd_registry.grpc_channel")
        self._channel: Any = None
        self._target: str | None = None
        self._last_error: Exception | None = None

    @property
    def channel(self) -> Any:
        """Current channel, or None before the first non-empty update."""
        return self._channel

    @property
    def target(self) -> str | None:
        return self._target

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    async def resolve(self, addresses: Sequence[str]) -> list[str]:
        """Replace hostnames with their IP addresses, keeping order and dropping duplicates.

        Raises:
            ValueError: If an address is not host:port or a hostname has no addresses
            OSError: If name resolution fails
        """
        resolved: dict[str, None] = {}
        for address in addresses:
            host, port = split_host_port(address)
            if _ip_version(host) is not None:
                resolved[address] = None
                continue
            ips = await self._resolver(host, int(port))
            if not ips:
                raise ValueError(f"Host '{host}' resolved to no addresses")
            for ip in ips:
                resolved[f"[{ip}]:{port}" if ":" in ip else f"{ip}:{port}"] = None
        return list(resolved)

    async def update_state(self, state: ResolverState) -> None:
        addresses = state.addrs()
        if not addresses:
            self._logger.warning("Resolver published no addresses, keeping channel", target=self._target)
            return

        try:
            target = render_target(await self.resolve(addresses))
        except (ValueError, OSError) as e:
            self.report_error(e)
            return

        if target == self._target:
            return

        previous = self._channel
        self._channel = self._channel_factory(target, options=self._options)
        self._target = target
        self._logger.info("gRPC channel rebuilt", target=target, addresses=len(addresses))
        if previous is not None:
            await previous.close(self._close_grace)

    def report_error(self, error: Exception) -> None:
        self._last_error = error
        self._logger.error("Resolver error", error=str(error), target=self._target)

    async def close(self) -> None:
        if self._channel is not None:
            channel, self._channel = self._channel, None
            self._target = None
            await channel.close(self._close_grace)
