"""Supervised background tasks for SongSmith.

One asyncio task per key (song id).  HTTP handlers respond first and the
pipeline keeps running here, detached from the request that started it.
The supervisor keeps a strong reference to every task, logs any exception
a task lets escape, and cancels whatever is still running on shutdown.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger("songsmith.shared.task_manager")


class TaskBusyError(RuntimeError):
    """A task is already running under this key."""

    def __init__(self, key: str):
        super().__init__(f"A task is already running for {key!r}.")
        self.key = key


@dataclass
class TaskInfo:
    key: str
    name: str
    started_at: float


class TaskSupervisor:
    """Owns detached asyncio tasks keyed by song id.

    Only one task per key may run at a time; ``spawn`` raises
    :class:`TaskBusyError` otherwise.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}
        self._info: Dict[str, TaskInfo] = {}

    # ── private ──────────────────────────────────────────────────────────────

    async def _guard(self, key: str, name: str, factory: Callable[[], Awaitable[None]]) -> None:
        try:
            await factory()
        except asyncio.CancelledError:
            logger.info("Task %s for %s cancelled", name, key)
            raise
        except Exception:
            logger.exception("Task %s for %s raised an unhandled error", name, key)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
            self._info.pop(key, None)

    # ── public ───────────────────────────────────────────────────────────────

    def spawn(self, key: str, factory: Callable[[], Awaitable[None]], name: str = "task") -> asyncio.Task:
        """Start ``factory()`` as a background task under ``key``.

        Must be called from inside a running event loop.

        Raises:
            TaskBusyError: If a task for ``key`` is still running.
        """
        if self.is_running(key):
            raise TaskBusyError(key)
        task = asyncio.create_task(self._guard(key, name, factory), name=f"{name}:{key}")
        self._tasks[key] = task
        self._info[key] = TaskInfo(key=key, name=name, started_at=time.time())
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        logger.debug("Spawned %s for %s", name, key)
        return task

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def get(self, key: str) -> Optional[TaskInfo]:
        return self._info.get(key) if self.is_running(key) else None

    def active(self) -> List[TaskInfo]:
        """Return info for every running task, oldest first."""
        infos = [self._info[k] for k in list(self._tasks) if self.is_running(k)]
        return sorted(infos, key=lambda i: i.started_at)

    async def wait(self, key: str, timeout: Optional[float] = None) -> None:
        """Wait for the task under ``key`` to finish (no-op if none)."""
        task = self._tasks.get(key)
        if task is None:
            return
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel all running tasks and wait for them to unwind."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return
        logger.info("Cancelling %d in-flight task(s)", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks, timeout=timeout)
