"""Fixed-rate periodic tasks on asyncio."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Union

logger = logging.getLogger("argos.scheduler")

Callback = Callable[[], Union[Awaitable[None], None]]


class PeriodicTask:
    """Run ``callback`` every ``period`` seconds until stopped.

    Deadlines are computed from the start time (``start + n * period``), so a
    slow callback delays one tick but never shifts the ones after it. Ticks
    that are already overdue when a callback returns are skipped rather than
    run back-to-back. Exceptions from the callback are logged and the
    schedule continues.
    """

    def __init__(
        self,
        name: str,
        period: float,
        callback: Callback,
        initial_delay: float | None = None,
    ) -> None:
        if period <= 0:
            raise ValueError(f"period must be > 0, got {period}")
        self.name = name
        self.period = period
        self.initial_delay = period if initial_delay is None else initial_delay
        self._callback = callback
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"argos:{self.name}"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self.initial_delay
        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            await self._tick()
            next_at += self.period
            now = loop.time()
            if next_at < now:
                skipped = int((now - next_at) // self.period) + 1
                logger.debug("%s overran, skipping %d tick(s)", self.name, skipped)
                next_at += skipped * self.period

    async def _tick(self) -> None:
        self.runs += 1
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Periodic task %s failed", self.name)
