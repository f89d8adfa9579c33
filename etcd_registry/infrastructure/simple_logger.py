"""Logger adapter over the standard library logging module."""

import logging
from typing import Any

from ..ports.logger import LoggerPort


class SimpleLogger(LoggerPort):
    """LoggerPort backed by ``logging.getLogger(name)``.

    Keyword context is appended to the message as ``key=value`` pairs, so it
    shows up with any formatter and never collides with LogRecord attributes.
    """

    def __init__(self, name: str = "etcd_registry", level: int | None = None):
        """Initialize the logger.

        Args:
            name: Logger name
            level: Optional level to set on the logger
        """
        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(level)

        if not self._logger.handlers and not logging.getLogger().handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            self._logger.addHandler(handler)

    @staticmethod
    def _render(message: str, context: dict[str, Any]) -> str:
        if not context:
            return message
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{message} [{pairs}]"

    def debug(self, message: str, **kwargs: Any) -> None:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(self._render(message, kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._render(message, kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._render(message, kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(self._render(message, kwargs))

    def exception(self, message: str, exc_info: Exception | None = None, **kwargs: Any) -> None:
        self._logger.error(self._render(message, kwargs), exc_info=exc_info or True)
