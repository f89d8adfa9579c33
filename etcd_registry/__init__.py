"""etcd-registry - lease-backed service registration and discovery over etcd."""

from .application.registry import ServiceRegistry
from .application.resolver import RegistryResolverBuilder, register_resolver
from .domain.models import MembershipSnapshot, ServiceInstanceRecord
from .infrastructure.config import EtcdConnectionConfig, RegistryConfig
from .infrastructure.etcd_store import EtcdKVStore
from .infrastructure.in_memory_store import InMemoryKVStore

__all__ = [
    "EtcdConnectionConfig",
    "EtcdKVStore",
    "InMemoryKVStore",
    "MembershipSnapshot",
    "RegistryConfig",
    "RegistryResolverBuilder",
    "ServiceInstanceRecord",
    "ServiceRegistry",
    "register_resolver",
]
__version__ = "0.1.0"
