"""
Background task registry.

Witness pipelines, notification emails, and timers outlive the turn that
started them. They are registered here by name so a failure is logged with
that name, and shutdown can drain or cancel whatever is still in flight.
"""

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING, Any, Coroutine, Dict, Optional, Set

if TYPE_CHECKING:
    from ..metrics.collector import MetricsCollector

logger = logging.getLogger("vericall.tasks")


class TaskRegistry:
    """Named asyncio tasks with failure tracking."""

    def __init__(self, metrics: Optional["MetricsCollector"] = None):
        self.metrics = metrics
        self._tasks: Dict[str, asyncio.Task] = {}
        self._failed: Set[str] = set()
        self._completed = 0
        self._seq = itertools.count(1)

    def register(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Schedule ``coro`` and track it as ``name``.

        A name already in use gets a ``#n`` suffix, so two pipelines for the
        same call never overwrite each other's entry.
        """
        if name in self._tasks:
            name = f"{name}#{next(self._seq)}"
        task = asyncio.create_task(coro)
        self._tasks[name] = task
        task.add_done_callback(lambda t, key=name: self._finished(key, t))
        logger.debug(f"Task started: {name}")
        self._report()
        return task

    def _finished(self, name: str, task: asyncio.Task) -> None:
        self._tasks.pop(name, None)
        self._completed += 1
        self._report()

        if task.cancelled():
            logger.debug(f"Task cancelled: {name}")
            return
        exc = task.exception()
        if exc is None:
            return

        self._failed.add(name)
        if self.metrics:
            self.metrics.update_tasks(len(self._tasks), failed_delta=1)
        logger.error(f"Task '{name}' failed: {exc}", exc_info=exc)

    def _report(self) -> None:
        if self.metrics:
            self.metrics.update_tasks(len(self._tasks))

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def failed_count(self) -> int:
        return len(self._failed)

    @property
    def completed_count(self) -> int:
        return self._completed

    def get_active_tasks(self) -> Dict[str, asyncio.Task]:
        return dict(self._tasks)

    def get_failed_task_names(self) -> Set[str]:
        return set(self._failed)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the registry to empty, including tasks registered meanwhile.

        Returns:
            False if tasks were still running at the timeout
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(list(self._tasks.values()), timeout=remaining)
        return True

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel everything still registered and give it ``timeout`` seconds to unwind."""
        pending = list(self._tasks.values())
        if not pending:
            return

        logger.info(f"Cancelling {len(pending)} background tasks")
        for task in pending:
            task.cancel()

        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(f"{len(still_running)} background tasks did not stop within {timeout}s")
        logger.info(f"Task registry stopped, failed tasks: {len(self._failed)}")
