"""Tests for the background task supervisor."""

import asyncio

import pytest

from etcd_registry.application.supervisor import TaskSupervisor


async def forever():
    await asyncio.Event().wait()


class TestTaskSupervisor:
    """Test cases for TaskSupervisor."""

    @pytest.mark.asyncio
    async def test_finished_tasks_remove_themselves(self, mock_logger):
        supervisor = TaskSupervisor(logger=mock_logger)

        task = supervisor.spawn("quick", asyncio.sleep(0))
        await task
        await asyncio.sleep(0)

        assert "quick" not in supervisor
        assert len(supervisor) == 0

    @pytest.mark.asyncio
    async def test_duplicate_running_name_rejected(self, mock_logger):
        supervisor = TaskSupervisor(logger=mock_logger)
        supervisor.spawn("a", forever())

        with pytest.raises(RuntimeError):
            supervisor.spawn("a", forever())

        await supervisor.shutdown(timeout=0.1)

    @pytest.mark.asyncio
    async def test_cancel_one(self, mock_logger):
        supervisor = TaskSupervisor(logger=mock_logger)
        task = supervisor.spawn("a", forever())
        supervisor.spawn("b", forever())

        await supervisor.cancel("a")
        await supervisor.cancel("missing")

        assert task.cancelled()
        assert supervisor.names() == ["b"]
        await supervisor.shutdown(timeout=0.1)

    @pytest.mark.asyncio
    async def test_shutdown_lets_cooperative_tasks_finish(self, mock_logger):
        supervisor = TaskSupervisor(logger=mock_logger)
        stop = asyncio.Event()

        async def cooperative():
            await stop.wait()
            return "done"

        task = supervisor.spawn("coop", cooperative())
        stop.set()
        await supervisor.shutdown(timeout=1.0)

        assert task.result() == "done"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stragglers(self, mock_logger):
        supervisor = TaskSupervisor(logger=mock_logger)
        task = supervisor.spawn("stuck", forever())

        await supervisor.shutdown(timeout=0.05)

        assert task.cancelled()
        assert len(supervisor) == 0

    @pytest.mark.asyncio
    async def test_spawn_after_shutdown_rejected(self, mock_logger):
        supervisor = TaskSupervisor(logger=mock_logger)
        await supervisor.shutdown()

        with pytest.raises(RuntimeError):
            supervisor.spawn("late", forever())

    @pytest.mark.asyncio
    async def test_crashes_are_logged(self, mock_logger):
        supervisor = TaskSupervisor(logger=mock_logger)

        async def crash():
            raise ValueError("bug")

        task = supervisor.spawn("crash", crash())
        with pytest.raises(ValueError):
            await task
        await asyncio.sleep(0)

        mock_logger.error.assert_called_once()
