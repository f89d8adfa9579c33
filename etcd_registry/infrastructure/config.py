"""Configuration objects for the registry and its store connection."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..domain.enums import ExpiryPolicy, PayloadFormat
from ..domain.patterns import ServiceKeys


class EtcdConnectionConfig(BaseModel):
    """Strongly-typed configuration for the etcd client.

    Authentication and TLS are handed to the client untouched.
    """

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        strict=True,
        validate_assignment=True,
    )

    endpoints: list[str] = Field(
        default_factory=lambda: ["localhost:2379"],
        min_length=1,
        description="etcd endpoints as host:port",
    )
    dial_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout in seconds for each store round trip",
    )
    username: str | None = Field(default=None, description="etcd user")
    password: str | None = Field(default=None, description="etcd password")
    ca_cert: str | None = Field(default=None, description="CA bundle path")
    cert_key: str | None = Field(default=None, description="Client key path")
    cert_cert: str | None = Field(default=None, description="Client certificate path")

    @field_validator("endpoints")
    @classmethod
    def validate_endpoints(cls, v: list[str]) -> list[str]:
        """Validate host:port format, tolerating an http(s):// prefix."""
        cleaned = []
        for endpoint in v:
            bare = endpoint.split("://", 1)[-1].rstrip("/")
            host, sep, port = bare.rpartition(":")
            if not sep or not host or not port.isdigit():
                raise ValueError(f"Invalid endpoint: {endpoint}. Expected host:port")
            cleaned.append(bare)
        return cleaned

    @classmethod
    def from_env(cls, **overrides: Any) -> EtcdConnectionConfig:
        """Build from ETCD_ENDPOINTS, ETCD_USERNAME, ETCD_PASSWORD, ETCD_DIAL_TIMEOUT."""
        values: dict[str, Any] = {}
        if endpoints := os.getenv("ETCD_ENDPOINTS"):
            values["endpoints"] = [e.strip() for e in endpoints.split(",") if e.strip()]
        if username := os.getenv("ETCD_USERNAME"):
            values["username"] = username
        if password := os.getenv("ETCD_PASSWORD"):
            values["password"] = password
        if timeout := os.getenv("ETCD_DIAL_TIMEOUT"):
            values["dial_timeout"] = float(timeout)
        values.update(overrides)
        return cls(**values)

    def addresses(self) -> list[tuple[str, int]]:
        """(host, port) of every endpoint, in order."""
        result = []
        for endpoint in self.endpoints:
            host, _, port = endpoint.rpartition(":")
            result.append((host.strip("[]"), int(port)))
        return result

    def to_client_params(self) -> dict[str, Any]:
        """Keyword arguments for ``build_etcd_client``."""
        return {
            "endpoints": self.addresses(),
            "user": self.username,
            "password": self.password,
            "ca_cert": self.ca_cert,
            "cert_key": self.cert_key,
            "cert_cert": self.cert_cert,
            "timeout": self.dial_timeout,
        }


class RegistryConfig(BaseModel):
    """Behavior of a ServiceRegistry."""

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        strict=True,
        validate_assignment=True,
    )

    ttl_seconds: int = Field(
        default=10,
        ge=1,
        le=3600,
        description="Lease TTL for each registration",
    )
    key_prefix: str = Field(
        default=ServiceKeys.DEFAULT_ROOT,
        min_length=2,
        description="Root of the key layout",
    )
    keepalive_interval_ratio: float = Field(
        default=1 / 3,
        gt=0,
        lt=1,
        description="Renewal period as a fraction of the TTL",
    )
    payload_format: PayloadFormat = Field(
        default=PayloadFormat.JSON,
        description="Encoding of stored records; readers accept both",
    )
    on_lease_expiry: ExpiryPolicy = Field(
        default=ExpiryPolicy.NOTIFY,
        description="NOTIFY only reports an expired lease; REREGISTER writes the record again",
    )
    reregister_backoff_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Delay between re-registration attempts",
    )
    max_reregister_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts before giving up on a re-registration",
    )
    close_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long close() waits for each background task",
    )

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Key prefix must start with '/': {v}")
        return v.rstrip("/")

    def keys(self) -> ServiceKeys:
        return ServiceKeys(self.key_prefix)


class LogContext(BaseModel):
    """Context attached to log lines of one operation."""

    model_config = ConfigDict(
        extra="allow",
        str_strip_whitespace=True,
        validate_assignment=True,
    )

    operation: str | None = Field(default=None)
    component: str | None = Field(default=None)
    key: str | None = Field(default=None)
    error_code: str | None = Field(default=None)
    error_type: str | None = Field(default=None)

    def to_dict(self) -> dict[str, Any]:
        """Non-empty fields, ready to splat into a LoggerPort call."""
        return {k: v for k, v in self.model_dump().items() if v is not None}

    def with_error(self, error: Exception) -> LogContext:
        return LogContext(
            **{
                **self.model_dump(),
                "error_code": error.__class__.__name__,
                "error_type": type(error).__module__ + "." + type(error).__name__,
            }
        )
