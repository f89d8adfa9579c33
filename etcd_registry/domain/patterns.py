"""Store key layout for service instances."""

from __future__ import annotations


class ServiceKeys:
    """Centralized key pattern management.

    Layout: ``{root}/{name}/{address}``, with ``{root}/{name}/`` as the prefix
    that selects exactly one service's instances.
    """

    DEFAULT_ROOT = "/services"

    def __init__(self, root: str = DEFAULT_ROOT):
        root = root.rstrip("/")
        if not root.startswith("/"):
            raise ValueError(f"Key root must start with '/': {root!r}")
        self._root = root

    @property
    def root(self) -> str:
        return self._root

    def instance(self, name: str, address: str) -> str:
        """Key of one instance."""
        self._check_segment(name, "service name")
        self._check_segment(address, "address")
        return f"{self._root}/{name}/{address}"

    def service_prefix(self, name: str) -> str:
        """Prefix covering every instance of one service."""
        self._check_segment(name, "service name")
        return f"{self._root}/{name}/"

    def parse(self, key: str) -> tuple[str, str] | None:
        """Recover ``(name, address)`` from a key, or None if it is not an instance key."""
        head = f"{self._root}/"
        if not key.startswith(head):
            return None
        rest = key[len(head) :]
        name, sep, address = rest.partition("/")
        if not sep or not name or not address or "/" in address:
            return None
        return name, address

    @staticmethod
    def _check_segment(value: str, label: str) -> None:
        if not value or not value.strip():
            raise ValueError(f"{label} cannot be empty")
        if "/" in value:
            raise ValueError(f"{label} must not contain '/': {value!r}")
