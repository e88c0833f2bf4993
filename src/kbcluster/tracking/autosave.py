"""Periodic background save of dirty knowledge state."""

import asyncio
import logging

from .progress import KnowledgeProgressTracker

logger = logging.getLogger(__name__)


class AutoSaver:
    """Saves the tracker every ``interval`` seconds, but only when dirty.

    Use as an async context manager, or call ``start()`` / ``await stop()``.
    Stopping flushes once more so a session end loses nothing.
    """

    def __init__(self, tracker: KnowledgeProgressTracker, interval: float = 30.0):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.tracker = tracker
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Auto-save started (every {self.interval}s)")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.tracker.save_if_dirty():
                logger.debug("Auto-saved knowledge state")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.tracker.save_if_dirty()

    async def __aenter__(self) -> "AutoSaver":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
