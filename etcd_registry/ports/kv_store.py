"""Key-Value Store interface - Port definition for the coordination store."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..domain.models import KeepAliveAck, LeaseHandle, StoreEntry, WatchBatch


class KeepAliveStream(ABC):
    """Renewal stream for one lease.

    Iterating yields one acknowledgement per successful renewal. Iteration
    ends when the store reports the lease gone; a renewal that cannot reach
    the store raises StoreError.
    """

    def __aiter__(self) -> KeepAliveStream:
        return self

    @abstractmethod
    async def __anext__(self) -> KeepAliveAck:
        """Wait for the next renewal acknowledgement."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop renewing. The lease is left to expire on its own."""
        ...


class WatchStream(ABC):
    """Change stream over a key prefix.

    Iterating yields one WatchBatch per store response, in the order the
    store delivered them. A broken stream raises StoreError.
    """

    def __aiter__(self) -> WatchStream:
        return self

    @abstractmethod
    async def __anext__(self) -> WatchBatch:
        """Wait for the next batch of events."""
        ...

    @abstractmethod
    async def cancel(self) -> None:
        """Cancel the subscription; pending and future reads stop iteration."""
        ...


class KVStorePort(ABC):
    """Abstract interface for the strongly-consistent key-value store.

    The store provides atomic put/delete, prefix range reads, time-bounded
    leases and prefix watches. Every method raises StoreError (or a subclass)
    when the store cannot be reached.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the store connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the store connection."""
        ...

    @abstractmethod
    async def is_connected(self) -> bool:
        """Check if connected to the store."""
        ...

    @abstractmethod
    async def put(self, key: str, value: bytes, lease: LeaseHandle | None = None) -> int:
        """Write a value, optionally attached to a lease.

        Args:
            key: The key to store
            value: Encoded payload
            lease: Lease whose death deletes the key

        Returns:
            The store revision of the write
        """
        ...

    @abstractmethod
    async def get_prefix(self, prefix: str) -> list[StoreEntry]:
        """Range read of every key starting with prefix.

        Args:
            prefix: Key prefix

        Returns:
            Entries ordered by key
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Deleting a missing key is not an error.

        Returns:
            True if a key was deleted, False if it did not exist
        """
        ...

    @abstractmethod
    async def grant_lease(self, ttl_seconds: int) -> LeaseHandle:
        """Grant a lease that expires after ttl_seconds without renewal."""
        ...

    @abstractmethod
    async def revoke_lease(self, lease_id: int) -> None:
        """Revoke a lease, deleting every key attached to it."""
        ...

    @abstractmethod
    async def open_keepalive(self, lease: LeaseHandle) -> KeepAliveStream:
        """Open a renewal stream for a lease.

        Raises:
            LeaseNotFoundError: If the lease is already gone
            StoreError: If the stream cannot be opened
        """
        ...

    @abstractmethod
    async def watch_prefix(self, prefix: str) -> WatchStream:
        """Subscribe to put/delete events under a prefix.

        Only changes made after the call returns are delivered.

        Raises:
            StoreError: If the subscription cannot be opened
        """
        ...
