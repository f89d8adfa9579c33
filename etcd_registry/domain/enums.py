"""Domain enums for type safety and consistency."""

from enum import Enum


class WatchEventType(str, Enum):
    """Kind of change reported by a prefix watch."""

    PUT = "PUT"
    DELETE = "DELETE"


class KeepAliveOutcome(str, Enum):
    """Terminal state of a lease keepalive loop.

    None of these are raised; they are reported to the logger and metrics.
    """

    OPEN_FAILED = "open_failed"  # renewal stream could not be opened
    EXPIRED = "expired"  # store reported the lease gone
    CANCELLED = "cancelled"  # owner asked the loop to stop
    STREAM_FAILED = "stream_failed"  # renewal round trip raised


class ExpiryPolicy(str, Enum):
    """What the registry does when a registration's lease expires."""

    NOTIFY = "notify"  # log and count only
    REREGISTER = "reregister"  # grant a new lease and rewrite the record


class PayloadFormat(str, Enum):
    """Encoding used for stored instance records."""

    JSON = "json"
    MSGPACK = "msgpack"
