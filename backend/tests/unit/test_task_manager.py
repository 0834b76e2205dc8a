"""Tests for the asyncio TaskSupervisor."""
import asyncio

import pytest

from backend.services.shared.task_manager import TaskBusyError, TaskSupervisor


class TestSpawn:
    def test_spawn_runs_factory(self):
        ran = []

        async def scenario():
            sup = TaskSupervisor()

            async def work():
                ran.append("done")

            sup.spawn("song-1", work, name="pipeline")
            await sup.wait("song-1", timeout=1)

        asyncio.run(scenario())
        assert ran == ["done"]

    def test_spawn_same_key_while_running_raises(self):
        async def scenario():
            sup = TaskSupervisor()
            gate = asyncio.Event()
            sup.spawn("song-1", gate.wait)
            with pytest.raises(TaskBusyError):
                sup.spawn("song-1", gate.wait)
            gate.set()
            await sup.wait("song-1", timeout=1)

        asyncio.run(scenario())

    def test_spawn_same_key_after_finish_allowed(self):
        async def scenario():
            sup = TaskSupervisor()

            async def work():
                return None

            sup.spawn("song-1", work)
            await sup.wait("song-1", timeout=1)
            await asyncio.sleep(0)
            sup.spawn("song-1", work)
            await sup.wait("song-1", timeout=1)

        asyncio.run(scenario())

    def test_different_keys_run_concurrently(self):
        async def scenario():
            sup = TaskSupervisor()
            gate = asyncio.Event()
            sup.spawn("a", gate.wait)
            sup.spawn("b", gate.wait)
            await asyncio.sleep(0)
            assert sup.is_running("a") and sup.is_running("b")
            gate.set()
            await sup.wait("a", timeout=1)
            await sup.wait("b", timeout=1)

        asyncio.run(scenario())


class TestTracking:
    def test_active_lists_running_tasks(self):
        async def scenario():
            sup = TaskSupervisor()
            gate = asyncio.Event()
            sup.spawn("first", gate.wait, name="pipeline")
            sup.spawn("second", gate.wait, name="retry")
            active = sup.active()
            gate.set()
            await sup.wait("first", timeout=1)
            await sup.wait("second", timeout=1)
            return active

        active = asyncio.run(scenario())
        assert [i.key for i in active] == ["first", "second"]
        assert [i.name for i in active] == ["pipeline", "retry"]

    def test_get_returns_none_when_idle(self):
        assert TaskSupervisor().get("missing") is None

    def test_finished_task_forgotten(self):
        async def scenario():
            sup = TaskSupervisor()

            async def work():
                return None

            sup.spawn("k", work)
            await sup.wait("k", timeout=1)
            await asyncio.sleep(0)
            return sup.is_running("k"), sup.active()

        running, active = asyncio.run(scenario())
        assert running is False
        assert active == []

    def test_wait_unknown_key_is_noop(self):
        asyncio.run(TaskSupervisor().wait("nothing"))


class TestFailures:
    def test_exception_is_contained(self):
        async def scenario():
            sup = TaskSupervisor()

            async def boom():
                raise RuntimeError("provider exploded")

            task = sup.spawn("k", boom)
            await sup.wait("k", timeout=1)
            return task

        task = asyncio.run(scenario())
        assert task.done()
        assert task.exception() is None


class TestShutdown:
    def test_shutdown_cancels_running(self):
        async def scenario():
            sup = TaskSupervisor()
            never = asyncio.Event()
            task = sup.spawn("k", never.wait)
            await asyncio.sleep(0)
            await sup.shutdown(timeout=1)
            return task

        task = asyncio.run(scenario())
        assert task.cancelled()

    def test_shutdown_with_nothing_running(self):
        asyncio.run(TaskSupervisor().shutdown())
