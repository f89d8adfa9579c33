"""Registry exception hierarchy."""


class RegistryError(Exception):
    """Base exception for all registry errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StoreError(RegistryError):
    """Store round trip failed (network, timeout or store-internal)."""

    def __init__(
        self,
        message: str,
        key: str | None = None,
        operation: str | None = None,
    ):
        super().__init__(message)
        self.key = key
        self.operation = operation
        if key:
            self.details["key"] = key
        if operation:
            self.details["operation"] = operation


class StoreNotConnectedError(StoreError):
    """Raised when a store operation is attempted without a connection."""

    def __init__(self, operation: str):
        super().__init__(
            f"Store not connected. Cannot perform '{operation}' operation.",
            operation=operation,
        )


class LeaseNotFoundError(StoreError):
    """Raised when the store no longer knows a lease."""

    def __init__(self, lease_id: int, operation: str | None = None):
        super().__init__(f"Lease {lease_id} not found or expired", operation=operation)
        self.lease_id = lease_id
        self.details["lease_id"] = lease_id


class DecodeError(RegistryError):
    """Stored payload could not be decoded into an instance record."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key
        if key:
            self.details["key"] = key


class RegistryClosedError(RegistryError):
    """Raised when the registry is used after close()."""

    def __init__(self, operation: str):
        super().__init__(
            f"Registry is closed. Cannot perform '{operation}' operation.",
            details={"operation": operation},
        )


class InvalidTargetError(RegistryError):
    """Resolver target cannot be mapped to a service name."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"Invalid resolver target '{target}': {reason}", details={"target": target})
        self.target = target
