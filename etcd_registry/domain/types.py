"""Callback types used across the registry."""

from collections.abc import Awaitable, Callable

from .models import MembershipSnapshot

SnapshotCallback = Callable[[MembershipSnapshot], Awaitable[None] | None]
"""Receives every membership snapshot; may be a plain function or a coroutine function."""
