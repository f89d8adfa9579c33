"""Resolver adapter - exposes registry watches through the RPC resolver contract."""

from __future__ import annotations

from typing import Any

from ..domain.exceptions import InvalidTargetError
from ..domain.models import MembershipSnapshot
from ..infrastructure.simple_logger import SimpleLogger
from ..ports.logger import LoggerPort
from ..ports.resolver import (
    ClientConnectionPort,
    ResolvedAddress,
    ResolverBuilderPort,
    ResolverPort,
    ResolverState,
    ResolverTarget,
)
from .registry import ServiceRegistry
from .watch import WatchSubscription

SCHEME = "etcd"

_builders: dict[str, ResolverBuilderPort] = {}


def register_resolver(builder: ResolverBuilderPort) -> None:
    """Make builder available for its scheme, replacing any previous one."""
    _builders[builder.scheme()] = builder


def get_resolver(scheme: str) -> ResolverBuilderPort | None:
    return _builders.get(scheme)


def unregister_resolver(scheme: str) -> None:
    _builders.pop(scheme, None)


def snapshot_to_state(snapshot: MembershipSnapshot) -> ResolverState:
    """Bare addresses only; name and version stay behind."""
    return ResolverState(
        addresses=tuple(ResolvedAddress(addr=address) for address in snapshot.addresses())
    )


class RegistryResolver(ResolverPort):
    """One running resolution. Event-driven, so resolve_now() does nothing."""

    def __init__(self, target: ResolverTarget, subscription: WatchSubscription):
        self.target = target
        self._subscription = subscription
        self._closed = False

    @property
    def subscription(self) -> WatchSubscription:
        return self._subscription

    def resolve_now(self, **options: Any) -> None:
        pass

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._subscription.cancel()


class RegistryResolverBuilder(ResolverBuilderPort):
    """Builds resolvers for ``etcd:///<service>`` targets."""

    def __init__(self, registry: ServiceRegistry, logger: LoggerPort | None = None):
        self._registry = registry
        self._logger = logger or SimpleLogger("etcd_registry.resolver")

    def scheme(self) -> str:
        return SCHEME

    async def build(
        self,
        target: ResolverTarget,
        conn: ClientConnectionPort,
        options: dict[str, Any] | None = None,
    ) -> RegistryResolver:
        if target.scheme != SCHEME:
            raise InvalidTargetError(str(target), f"scheme must be '{SCHEME}'")
        name = target.endpoint
        if not name or "/" in name:
            raise InvalidTargetError(str(target), "endpoint must be a single service name")

        async def publish(snapshot: MembershipSnapshot) -> None:
            await conn.update_state(snapshot_to_state(snapshot))

        try:
            subscription = await self._registry.watch(name, publish)
        except Exception as e:
            conn.report_error(e)
            raise

        self._logger.info("Resolver started", target=str(target), service=name)
        return RegistryResolver(target, subscription)
