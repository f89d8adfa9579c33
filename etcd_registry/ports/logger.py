"""Logger port used by every registry component."""

from abc import ABC, abstractmethod
from typing import Any


class LoggerPort(ABC):
    """Structured logging sink.

    Context travels as keyword arguments (``service=..., lease_id=...``) so
    adapters can forward it to whatever backend they wrap.
    """

    @abstractmethod
    def debug(self, message: str, **kwargs: Any) -> None: ...

    @abstractmethod
    def info(self, message: str, **kwargs: Any) -> None: ...

    @abstractmethod
    def warning(self, message: str, **kwargs: Any) -> None: ...

    @abstractmethod
    def error(self, message: str, **kwargs: Any) -> None: ...

    @abstractmethod
    def exception(self, message: str, exc_info: Exception | None = None, **kwargs: Any) -> None:
        """Log at error level with the traceback of exc_info (or the active exception)."""
        ...
