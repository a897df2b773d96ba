"""Fire-and-forget task registry for work that outlives a request."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from .config import config

if TYPE_CHECKING:
    from collections.abc import Coroutine

logger = config.get_logger(__name__)


class BackgroundDispatcher:
    """Runs coroutines in the background and keeps them alive until done.

    Tasks are held by strong reference so the event loop cannot garbage
    collect them mid-flight. Failures are logged, never raised to the caller.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of background tasks still running."""
        return len(self._tasks)

    def spawn(
        self, coro: Coroutine[Any, Any, Any], *, name: str | None = None
    ) -> asyncio.Task[Any]:
        """Schedule a coroutine on the running loop.

        Returns:
            The created task.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float | None = 30.0) -> None:
        """Wait for outstanding tasks, cancelling any still running at timeout."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("Waiting for %d background tasks", len(tasks))
        _done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(
                "Cancelled %d background tasks after %.1fs", len(still_running), timeout
            )
            await asyncio.gather(*still_running, return_exceptions=True)
