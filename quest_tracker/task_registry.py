"""
Task registry for background persistence work.

Thread-safe for the free-threaded interpreter. Tracks the asyncio tasks that
carry optimistic mutations to disk so they can be awaited before reads that
need a settled database, and cancelled during shutdown.
"""

import asyncio
import threading

from quest_tracker.logger import setup_logger

logger = setup_logger()


class TaskRegistry:
    """Registry of in-flight background tasks with a one-way shutdown switch"""

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: list[asyncio.Task] = []
        self._shutdown_in_progress = False

    @property
    def shutting_down(self) -> bool:
        with self._lock:
            return self._shutdown_in_progress

    def register(self, task: asyncio.Task, name: str = "") -> asyncio.Task:
        """Register a background task for tracking.

        The lock is held during both the shutdown check and the append so a
        task cannot slip in after cancel_all() took its copy.

        Args:
            task: The asyncio.Task to track
            name: Optional name for logging

        Returns:
            The same task (for chaining)
        """
        with self._lock:
            if self._shutdown_in_progress:
                logger.warning(f"Task '{name}' created during shutdown - cancelling immediately")
                task.cancel()
                return task

            # Drop finished tasks to prevent unbounded growth
            self._tasks[:] = [t for t in self._tasks if not t.done()]
            self._tasks.append(task)
        logger.debug(f"Registered background task: {name or task.get_name()}")
        return task

    def active_count(self) -> int:
        """Number of tasks that are not yet done."""
        with self._lock:
            return sum(1 for t in self._tasks if not t.done())

    def task_names(self) -> list[str]:
        """Snapshot of the names of unfinished tasks."""
        with self._lock:
            return [t.get_name() for t in self._tasks if not t.done()]

    async def wait_all(self):
        """Wait until every registered task, including ones registered meanwhile, has finished."""
        while True:
            with self._lock:
                pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel_all(self, timeout: float = 3.0) -> int:
        """Cancel all registered tasks and refuse new ones.

        Args:
            timeout: Maximum time to wait for task cancellation

        Returns:
            Number of tasks cancelled
        """
        with self._lock:
            self._shutdown_in_progress = True
            tasks = self._tasks.copy()
            self._tasks.clear()

        if not tasks:
            logger.debug("No background tasks to cancel")
            return 0

        logger.info(f"Cancelling {len(tasks)} background tasks...")

        for task in tasks:
            if not task.done():
                task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Some tasks did not complete within {timeout}s timeout")

        cancelled = sum(1 for t in tasks if t.cancelled())
        logger.info(f"Cancelled {cancelled}/{len(tasks)} background tasks")
        return cancelled

    def reset(self):
        """Clear all tasks and the shutdown flag (restart scenarios and tests)."""
        with self._lock:
            self._shutdown_in_progress = False
            self._tasks.clear()
        logger.debug("Task registry reset: shutdown state cleared")
