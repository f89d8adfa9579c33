"""etcd KV Store adapter - Concrete implementation of KVStorePort over python-etcd3."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

import etcd3
import grpc
from etcd3 import events as etcd_events

from ..domain.enums import WatchEventType
from ..domain.exceptions import LeaseNotFoundError, StoreError, StoreNotConnectedError
from ..domain.models import LeaseHandle, StoreEntry, WatchBatch, WatchEvent
from ..ports.kv_store import KeepAliveStream, KVStorePort, WatchStream
from ..ports.logger import LoggerPort
from ..ports.metrics import MetricsPort
from .config import EtcdConnectionConfig, LogContext
from .in_memory_metrics import InMemoryMetrics
from .simple_logger import SimpleLogger
from .streams import PeriodicKeepAliveStream, QueueWatchStream

T = TypeVar("T")


def _decode_key(raw: bytes | str) -> str:
    return raw.decode("utf-8") if isinstance(raw, bytes) else raw


def _grpc_host(host: str) -> str:
    return f"[{host}]" if ":" in host else host


def _read(path: str | None) -> bytes | None:
    return Path(path).read_bytes() if path else None


def is_not_found(error: BaseException) -> bool:
    """True for the gRPC NOT_FOUND status etcd returns for an unknown lease."""
    code = getattr(error, "code", None)
    return isinstance(error, grpc.RpcError) and callable(code) and code() == grpc.StatusCode.NOT_FOUND


def build_etcd_client(
    endpoints: list[tuple[str, int]],
    user: str | None = None,
    password: str | None = None,
    ca_cert: str | None = None,
    cert_key: str | None = None,
    cert_cert: str | None = None,
    timeout: float | None = None,
) -> Any:
    """Create the etcd3 client for a list of endpoints.

    A single endpoint gets a plain ``etcd3.client``; several endpoints get a
    ``MultiEndpointEtcd3Client`` that fails over between them.
    """
    if len(endpoints) == 1:
        host, port = endpoints[0]
        return etcd3.client(
            host=_grpc_host(host),
            port=port,
            ca_cert=ca_cert,
            cert_key=cert_key,
            cert_cert=cert_cert,
            timeout=timeout,
            user=user,
            password=password,
        )

    secure = ca_cert is not None
    creds = None
    if secure:
        creds = grpc.ssl_channel_credentials(
            root_certificates=_read(ca_cert),
            private_key=_read(cert_key),
            certificate_chain=_read(cert_cert),
        )
    return etcd3.MultiEndpointEtcd3Client(
        endpoints=[
            etcd3.Endpoint(_grpc_host(host), port, secure=secure, creds=creds)
            for host, port in endpoints
        ],
        timeout=timeout,
        user=user,
        password=password,
        failover=True,
    )


def translate_watch_response(response: Any) -> WatchBatch:
    """Convert an etcd3 WatchResponse into a WatchBatch."""
    events: list[WatchEvent] = []
    for event in getattr(response, "events", ()) or ():
        key = _decode_key(event.key)
        if isinstance(event, etcd_events.DeleteEvent):
            events.append(WatchEvent(type=WatchEventType.DELETE, key=key))
        else:
            events.append(
                WatchEvent(type=WatchEventType.PUT, key=key, value=bytes(event.value or b""))
            )

    header = getattr(response, "header", None)
    revision = int(getattr(header, "revision", 0) or 0)
    if not revision and events:
        revision = max(int(getattr(e, "mod_revision", 0) or 0) for e in response.events)
    return WatchBatch(events=tuple(events), revision=revision)


class EtcdKVStore(KVStorePort):
    """etcd implementation of the KV Store port.

    python-etcd3 is a blocking gRPC client, so every round trip runs in the
    default executor. Watch callbacks arrive on the client's watcher thread and
    are handed to the event loop with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        config: EtcdConnectionConfig | None = None,
        keepalive_interval_ratio: float = 1 / 3,
        logger: LoggerPort | None = None,
        metrics: MetricsPort | None = None,
        client_factory: Callable[..., Any] | None = None,
    ):
        """Initialize the etcd adapter.

        Args:
            config: Connection settings. Defaults to localhost:2379.
            keepalive_interval_ratio: Renewal period as a fraction of the lease TTL
            logger: Optional logger port. If not provided, uses simple logger.
            metrics: Optional metrics port. If not provided, uses in-memory metrics.
            client_factory: Callable building the etcd client from
                ``EtcdConnectionConfig.to_client_params()``. Defaults to ``build_etcd_client``.
        """
        self._config = config or EtcdConnectionConfig()
        self._keepalive_ratio = keepalive_interval_ratio
        self._logger = logger or SimpleLogger("etcd_registry.etcd_store")
        self._metrics = metrics or InMemoryMetrics()
        self._client_factory = client_factory or build_etcd_client
        self._client: Any = None

    async def _run(self, operation: str, call: Callable[[Any], T]) -> T:
        """Run call(client) in the executor against the current client."""
        client = self._client
        if client is None:
            raise StoreNotConnectedError(operation)
        loop = asyncio.get_running_loop()
        with self._metrics.timer(f"etcd.{operation}"):
            return await loop.run_in_executor(None, call, client)

    def _wrap(self, operation: str, error: Exception, key: str | None = None) -> StoreError:
        context = LogContext(operation=operation, component="etcd_store", key=key).with_error(error)
        self._logger.error(f"etcd {operation} failed", **context.to_dict())
        self._metrics.increment(f"etcd.{operation}.error")
        return StoreError(f"etcd {operation} failed: {error}", key=key, operation=operation)

    async def connect(self) -> None:
        """Create the client and verify the cluster answers."""
        if self._client is not None:
            return

        params = self._config.to_client_params()
        loop = asyncio.get_running_loop()
        try:
            client = await loop.run_in_executor(None, partial(self._client_factory, **params))
            await loop.run_in_executor(None, client.status)
        except Exception as e:
            raise self._wrap("connect", e) from e

        self._client = client
        self._logger.info("Connected to etcd", endpoints=self._config.endpoints)

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        with contextlib.suppress(Exception):
            await asyncio.get_running_loop().run_in_executor(None, client.close)
        self._logger.info("Disconnected from etcd")

    async def is_connected(self) -> bool:
        return self._client is not None

    async def put(self, key: str, value: bytes, lease: LeaseHandle | None = None) -> int:
        lease_id = lease.lease_id if lease is not None else None
        try:
            response = await self._run("put", lambda client: client.put(key, value, lease=lease_id))
        except StoreNotConnectedError:
            raise
        except Exception as e:
            if lease_id is not None and is_not_found(e):
                raise LeaseNotFoundError(lease_id, operation="put") from e
            raise self._wrap("put", e, key=key) from e
        return int(getattr(getattr(response, "header", None), "revision", 0) or 0)

    async def get_prefix(self, prefix: str) -> list[StoreEntry]:
        try:
            rows = await self._run("get_prefix", lambda client: list(client.get_prefix(prefix)))
        except StoreNotConnectedError:
            raise
        except Exception as e:
            raise self._wrap("get_prefix", e, key=prefix) from e

        entries = []
        for value, metadata in rows:
            lease_id = int(getattr(metadata, "lease_id", 0) or 0)
            entries.append(
                StoreEntry(
                    key=_decode_key(metadata.key),
                    value=bytes(value or b""),
                    revision=int(getattr(metadata, "mod_revision", 0) or 0),
                    lease_id=lease_id or None,
                )
            )
        return entries

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._run("delete", lambda client: client.delete(key)))
        except StoreNotConnectedError:
            raise
        except Exception as e:
            raise self._wrap("delete", e, key=key) from e

    async def grant_lease(self, ttl_seconds: int) -> LeaseHandle:
        try:
            lease = await self._run("grant_lease", lambda client: client.lease(ttl_seconds))
        except StoreNotConnectedError:
            raise
        except Exception as e:
            raise self._wrap("grant_lease", e) from e
        return LeaseHandle(lease_id=int(lease.id), ttl_seconds=ttl_seconds)

    async def revoke_lease(self, lease_id: int) -> None:
        try:
            await self._run("revoke_lease", lambda client: client.revoke_lease(lease_id))
        except StoreNotConnectedError:
            raise
        except Exception as e:
            if is_not_found(e):
                raise LeaseNotFoundError(lease_id, operation="revoke_lease") from e
            raise self._wrap("revoke_lease", e) from e

    async def _refresh(self, lease_id: int) -> int:
        try:
            response = await self._run(
                "refresh", lambda client: next(iter(client.refresh_lease(lease_id)), None)
            )
        except StoreNotConnectedError:
            raise
        except Exception as e:
            if is_not_found(e):
                raise LeaseNotFoundError(lease_id, operation="refresh") from e
            raise self._wrap("refresh", e) from e
        return int(getattr(response, "TTL", 0) or 0)

    async def open_keepalive(self, lease: LeaseHandle) -> KeepAliveStream:
        ttl = await self._refresh(lease.lease_id)
        if ttl <= 0:
            raise LeaseNotFoundError(lease.lease_id, operation="open_keepalive")
        return PeriodicKeepAliveStream(
            lease,
            refresh=self._refresh,
            interval=max(lease.ttl_seconds * self._keepalive_ratio, 0.05),
            first_ttl=ttl,
            logger=self._logger,
        )

    async def watch_prefix(self, prefix: str) -> WatchStream:
        loop = asyncio.get_running_loop()
        watch_id: Any = None
        stream: QueueWatchStream

        def dispatch(target: Callable[[Any], None], item: Any) -> None:
            if loop.is_closed():
                return
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(target, item)

        def on_response(response: Any) -> None:
            # Runs on the etcd3 watcher thread.
            if isinstance(response, Exception):
                dispatch(stream.fail, self._wrap("watch", response, key=prefix))
                return
            try:
                batch = translate_watch_response(response)
            except Exception as e:
                dispatch(stream.fail, self._wrap("watch", e, key=prefix))
                return
            if batch.events:
                dispatch(stream.publish, batch)

        async def cancel_watch() -> None:
            if watch_id is None or self._client is None:
                return
            try:
                await self._run("cancel_watch", lambda client: client.cancel_watch(watch_id))
            except Exception as e:
                self._logger.warning("Failed to cancel etcd watch", prefix=prefix, error=str(e))

        stream = QueueWatchStream(prefix, on_cancel=cancel_watch)
        try:
            watch_id = await self._run(
                "watch_prefix", lambda client: client.add_watch_prefix_callback(prefix, on_response)
            )
        except StoreNotConnectedError:
            raise
        except Exception as e:
            raise self._wrap("watch_prefix", e, key=prefix) from e
        self._logger.debug("Opened etcd watch", prefix=prefix, watch_id=watch_id)
        return stream
