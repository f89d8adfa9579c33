"""Application layer - registry facade and the services behind it."""

from .discovery import DiscoveryEngine
from .registry import ServiceRegistry
from .resolver import (
    SCHEME,
    RegistryResolver,
    RegistryResolverBuilder,
    get_resolver,
    register_resolver,
    snapshot_to_state,
    unregister_resolver,
)
from .supervisor import TaskSupervisor
from .watch import WatchPropagator, WatchSubscription

__all__ = [
    "SCHEME",
    "DiscoveryEngine",
    "RegistryResolver",
    "RegistryResolverBuilder",
    "ServiceRegistry",
    "TaskSupervisor",
    "WatchPropagator",
    "WatchSubscription",
    "get_resolver",
    "register_resolver",
    "snapshot_to_state",
    "unregister_resolver",
]
