"""Named background task table owned by the registry."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from ..infrastructure.simple_logger import SimpleLogger
from ..ports.logger import LoggerPort


class TaskSupervisor:
    """Tracks every background task the registry starts, by name.

    Finished tasks remove themselves. ``shutdown`` joins whatever is still
    running and cancels stragglers, so nothing the registry started outlives
    ``close()``.
    """

    def __init__(self, logger: LoggerPort | None = None):
        self._tasks: dict[str, asyncio.Task] = {}
        self._logger = logger or SimpleLogger("etcd_registry.supervisor")
        self._closed = False

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Start coro as a task recorded under name.

        Raises:
            RuntimeError: If the supervisor has been shut down or name is taken
        """
        if self._closed:
            coro.close()
            raise RuntimeError("Supervisor is shut down")
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            coro.close()
            raise RuntimeError(f"Task '{name}' is already running")

        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._on_done(name, t))
        return task

    def _on_done(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error("Background task crashed", task=name, error=str(error))

    def get(self, name: str) -> asyncio.Task | None:
        return self._tasks.get(name)

    def names(self) -> list[str]:
        return sorted(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    async def cancel(self, name: str, timeout: float | None = None) -> None:
        """Cancel one task and wait for it to finish. Unknown names are ignored."""
        task = self._tasks.get(name)
        if task is None:
            return
        await self._stop(task, timeout)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Join every task, cancelling whatever is still running after timeout. Idempotent."""
        self._closed = True
        tasks = list(self._tasks.values())
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if not pending:
            return
        for task in pending:
            task.cancel()
        _, stuck = await asyncio.wait(pending, timeout=timeout)
        if stuck:
            self._logger.warning(
                "Timed out joining background tasks",
                pending=sorted(t.get_name() for t in stuck),
            )

    async def _stop(self, task: asyncio.Task, timeout: float | None) -> None:
        if task is asyncio.current_task():
            return
        task.cancel()
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            self._logger.warning("Timed out stopping task", task=task.get_name())
