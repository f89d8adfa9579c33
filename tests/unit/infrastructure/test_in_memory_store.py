"""Tests for the in-memory KV store."""

import asyncio

import pytest
import pytest_asyncio

from etcd_registry.domain.enums import WatchEventType
from etcd_registry.domain.exceptions import LeaseNotFoundError, StoreError, StoreNotConnectedError
from etcd_registry.infrastructure.in_memory_store import InMemoryKVStore


@pytest_asyncio.fixture
async def store(clock, mock_logger):
    store = InMemoryKVStore(clock=clock, sweep_interval=0.01, logger=mock_logger)
    await store.connect()
    yield store
    await store.close()


async def next_batch(stream, timeout=0.5):
    return await asyncio.wait_for(stream.__anext__(), timeout=timeout)


class TestInMemoryKVStore:
    """Test cases for InMemoryKVStore."""

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        store = InMemoryKVStore()
        with pytest.raises(StoreNotConnectedError):
            await store.put("/a", b"1")

    @pytest.mark.asyncio
    async def test_put_and_get_prefix(self, store):
        rev1 = await store.put("/services/auth/a:1", b"1")
        rev2 = await store.put("/services/auth/b:1", b"2")
        await store.put("/services/auth-admin/c:1", b"3")

        entries = await store.get_prefix("/services/auth/")

        assert [e.key for e in entries] == ["/services/auth/a:1", "/services/auth/b:1"]
        assert [e.revision for e in entries] == [rev1, rev2]
        assert rev2 > rev1

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, store):
        await store.put("/k", b"v")
        assert await store.delete("/k") is True
        assert await store.delete("/k") is False

    @pytest.mark.asyncio
    async def test_put_with_unknown_lease_fails(self, store):
        lease = await store.grant_lease(5)
        await store.revoke_lease(lease.lease_id)

        with pytest.raises(LeaseNotFoundError):
            await store.put("/k", b"v", lease=lease)

    @pytest.mark.asyncio
    async def test_revoke_deletes_attached_keys(self, store):
        lease = await store.grant_lease(5)
        await store.put("/services/auth/a:1", b"1", lease=lease)

        await store.revoke_lease(lease.lease_id)

        assert await store.get_prefix("/services/") == []
        with pytest.raises(LeaseNotFoundError):
            await store.revoke_lease(lease.lease_id)

    @pytest.mark.asyncio
    async def test_lease_expires_on_clock(self, store, clock):
        lease = await store.grant_lease(2)
        await store.put("/services/auth/a:1", b"1", lease=lease)

        clock.advance(1.5)
        assert len(await store.get_prefix("/services/")) == 1

        clock.advance(1.0)
        assert await store.get_prefix("/services/") == []
        assert lease.lease_id not in store.lease_ids()

    @pytest.mark.asyncio
    async def test_keepalive_extends_deadline(self, store, clock):
        lease = await store.grant_lease(2)
        await store.put("/services/auth/a:1", b"1", lease=lease)
        stream = await store.open_keepalive(lease)
        await stream.__anext__()

        clock.advance(1.5)
        await stream.__anext__()
        clock.advance(1.5)

        assert len(await store.get_prefix("/services/")) == 1
        await stream.close()

    @pytest.mark.asyncio
    async def test_keepalive_ends_when_lease_expires(self, store):
        lease = await store.grant_lease(1)
        stream = await store.open_keepalive(lease)
        await stream.__anext__()

        store.expire_lease(lease.lease_id)

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(stream.__anext__(), timeout=2.0)

    @pytest.mark.asyncio
    async def test_open_keepalive_on_dead_lease_fails(self, store):
        lease = await store.grant_lease(1)
        store.expire_lease(lease.lease_id)

        with pytest.raises(LeaseNotFoundError):
            await store.open_keepalive(lease)

    @pytest.mark.asyncio
    async def test_rewrite_moves_key_to_new_lease(self, store):
        old = await store.grant_lease(5)
        new = await store.grant_lease(5)
        await store.put("/k", b"1", lease=old)
        await store.put("/k", b"2", lease=new)

        await store.revoke_lease(old.lease_id)

        assert store.lease_of("/k") == new.lease_id
        assert (await store.get_prefix("/k"))[0].value == b"2"

    @pytest.mark.asyncio
    async def test_watch_receives_prefix_events(self, store):
        stream = await store.watch_prefix("/services/auth/")
        lease = await store.grant_lease(5)

        await store.put("/services/other/x:1", b"ignored")
        await store.put("/services/auth/a:1", b"1", lease=lease)
        await store.delete("/services/auth/a:1")

        put = await next_batch(stream)
        delete = await next_batch(stream)
        assert [e.type for e in put.events] == [WatchEventType.PUT]
        assert put.events[0].value == b"1"
        assert [e.type for e in delete.events] == [WatchEventType.DELETE]
        assert delete.revision > put.revision

    @pytest.mark.asyncio
    async def test_lease_expiry_emits_one_delete_batch(self, store):
        stream = await store.watch_prefix("/services/")
        lease = await store.grant_lease(5)
        await store.put("/services/auth/a:1", b"1", lease=lease)
        await store.put("/services/auth/b:1", b"1", lease=lease)
        await next_batch(stream)
        await next_batch(stream)

        store.expire_lease(lease.lease_id)

        batch = await next_batch(stream)
        assert len(batch) == 2
        assert {e.type for e in batch.events} == {WatchEventType.DELETE}

    @pytest.mark.asyncio
    async def test_reaper_expires_leases_in_background(self, store, clock):
        stream = await store.watch_prefix("/services/")
        lease = await store.grant_lease(1)
        await store.put("/services/auth/a:1", b"1", lease=lease)
        await next_batch(stream)

        clock.advance(2)

        batch = await next_batch(stream)
        assert batch.events[0].type is WatchEventType.DELETE

    @pytest.mark.asyncio
    async def test_cancel_detaches_watcher(self, store):
        stream = await store.watch_prefix("/services/")
        assert store.watcher_count() == 1

        await stream.cancel()

        assert store.watcher_count() == 0

    @pytest.mark.asyncio
    async def test_break_watches(self, store):
        stream = await store.watch_prefix("/services/")

        store.break_watches()

        with pytest.raises(StoreError):
            await next_batch(stream)

    @pytest.mark.asyncio
    async def test_fail_next_injects_one_failure(self, store):
        store.fail_next("get_prefix")

        with pytest.raises(StoreError):
            await store.get_prefix("/")
        assert await store.get_prefix("/") == []

    @pytest.mark.asyncio
    async def test_fail_next_with_custom_error(self, store):
        store.fail_next("put", LeaseNotFoundError(1, operation="put"))

        with pytest.raises(LeaseNotFoundError):
            await store.put("/k", b"v")

    @pytest.mark.asyncio
    async def test_close_ends_watches(self, clock):
        store = InMemoryKVStore(clock=clock)
        await store.connect()
        stream = await store.watch_prefix("/")

        await store.close()

        with pytest.raises(StopAsyncIteration):
            await next_batch(stream)
        assert not await store.is_connected()
