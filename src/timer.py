"""Elapsed-seconds counter for the active recording."""

import asyncio
from typing import Callable, Optional


class ElapsedTimer:
    """
    Ticks once per interval while running.

    There is never more than one tick source: ``start`` while running returns
    the existing handle. ``stop`` cancels it and resets the counter to zero,
    since elapsed time belongs to one session.
    """

    def __init__(self, interval: float = 1.0, on_tick: Optional[Callable[[int], None]] = None):
        self.interval = interval
        self.on_tick = on_tick
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start ticking on the running loop and return the handle."""
        if self.running:
            return self._task
        self.ticks = 0
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def stop(self, handle: Optional[asyncio.Task] = None) -> None:
        """Cancel the tick source and reset the counter."""
        if handle is not None and handle is not self._task:
            # A stale handle from an earlier run
            handle.cancel()
            return
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self.ticks = 0

    def tick(self) -> None:
        if not self.running:
            return
        self.ticks += 1
        if self.on_tick:
            self.on_tick(self.ticks)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self.tick()
