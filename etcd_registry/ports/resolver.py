"""RPC resolver plugin contract.

A resolver turns a logical target such as ``etcd:///auth`` into a live list
of addresses that the RPC client balances connections over.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from ..domain.exceptions import InvalidTargetError


class ResolverTarget(BaseModel):
    """Parsed dial target: ``scheme://authority/endpoint``."""

    model_config = ConfigDict(frozen=True, strict=True)

    scheme: str
    authority: str = ""
    endpoint: str = ""

    @classmethod
    def parse(cls, target: str) -> ResolverTarget:
        """Parse a dial target string.

        Raises:
            InvalidTargetError: If the target has no scheme
        """
        parts = urlsplit(target)
        if not parts.scheme or "://" not in target:
            raise InvalidTargetError(target, "expected scheme://[authority]/endpoint")
        return cls(scheme=parts.scheme, authority=parts.netloc, endpoint=parts.path.lstrip("/"))

    def __str__(self) -> str:
        return f"{self.scheme}://{self.authority}/{self.endpoint}"


class ResolvedAddress(BaseModel):
    """One address handed to the RPC client."""

    model_config = ConfigDict(frozen=True, strict=True)

    addr: str = Field(..., min_length=1)
    attributes: dict[str, Any] = Field(default_factory=dict)


class ResolverState(BaseModel):
    """Complete address list published by a resolver."""

    model_config = ConfigDict(frozen=True, strict=True)

    addresses: tuple[ResolvedAddress, ...] = ()

    def addrs(self) -> list[str]:
        return [address.addr for address in self.addresses]


class ClientConnectionPort(ABC):
    """The RPC client's side of a resolver: where address lists are published."""

    @abstractmethod
    async def update_state(self, state: ResolverState) -> None:
        """Replace the client's address list."""
        ...

    @abstractmethod
    def report_error(self, error: Exception) -> None:
        """Tell the client resolution failed."""
        ...


class ResolverPort(ABC):
    """Handle for one running resolution."""

    @abstractmethod
    def resolve_now(self, **options: Any) -> None:
        """Hint that the client wants a fresh resolution."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the resolution's background resources."""
        ...


class ResolverBuilderPort(ABC):
    """Factory registered with the RPC client under a scheme."""

    @abstractmethod
    def scheme(self) -> str:
        """Scheme this builder handles."""
        ...

    @abstractmethod
    async def build(
        self,
        target: ResolverTarget,
        conn: ClientConnectionPort,
        options: dict[str, Any] | None = None,
    ) -> ResolverPort:
        """Start resolving target into conn.

        Raises:
            InvalidTargetError: If the target cannot be resolved by this builder
            RegistryError: If resolution cannot start
        """
        ...
