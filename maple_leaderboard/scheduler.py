"""Scheduler — produces sync ticks and hands each one to the orchestrator.

Ticks come from a fixed interval (anchored on the start time, so they do not
drift) or from a cron expression. Every tick starts its own cycle task, so a
tick that arrives while a cycle is still running reaches the orchestrator's
single-flight guard instead of waiting behind it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, AsyncIterator

from croniter import croniter

if TYPE_CHECKING:
    from .orchestrator import SyncOrchestrator


class SyncScheduler:
    """Drives SyncOrchestrator.run_cycle() on a fixed interval or cron."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_seconds: float = 60,
        cron: str | None = None,
        run_on_start: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        if cron and not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron expression: {cron!r}")
        self._orchestrator = orchestrator
        self._interval = max(float(interval_seconds), 0.01)
        self._cron = cron or None
        self._run_on_start = run_on_start
        self._logger = logger or logging.getLogger("leaderboard.scheduler")

        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._cycles: set[asyncio.Task] = set()
        self.ticks_emitted = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the tick loop."""
        self._stop_event.clear()
        self._task = asyncio.create_task(self._tick_loop())
        if self._cron:
            self._logger.info("Sync scheduler started (cron: %s)", self._cron)
        else:
            self._logger.info("Sync scheduler started (interval: %.0fs)", self._interval)

    async def stop(self) -> None:
        """Stop ticking and wait for in-flight cycles to wind down.

        Cycles are never cancelled: the orchestrator is asked to stop after
        its current stage so no write is cut off halfway.
        """
        self._stop_event.set()
        self._orchestrator.request_stop()
        if self._task:
            await self._task
            self._task = None
        if self._cycles:
            await asyncio.gather(*self._cycles, return_exceptions=True)
        self._logger.info("Sync scheduler stopped")

    # ══════════════════════════════════════════════════════════
    #  Ticks
    # ══════════════════════════════════════════════════════════

    def _next_delay(self, tick_no: int, anchor: float) -> float:
        if self._cron:
            now = datetime.now(timezone.utc)
            next_fire = croniter(self._cron, now).get_next(datetime)
            return max((next_fire - now).total_seconds(), 0.0)
        return max(anchor + tick_no * self._interval - time.monotonic(), 0.0)

    async def ticks(self) -> AsyncIterator[datetime]:
        """Yield one UTC timestamp per tick until stop() is called."""
        anchor = time.monotonic()
        tick_no = 0
        if self._run_on_start:
            yield datetime.now(timezone.utc)
        while not self._stop_event.is_set():
            tick_no += 1
            delay = self._next_delay(tick_no, anchor)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            yield datetime.now(timezone.utc)

    async def _tick_loop(self) -> None:
        async for _tick in self.ticks():
            self._dispatch()

    def _dispatch(self) -> None:
        self.ticks_emitted += 1
        task = asyncio.create_task(self._run_cycle())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def _run_cycle(self) -> None:
        try:
            await self._orchestrator.run_cycle()
        except Exception:
            self._logger.exception("Sync cycle failed unexpectedly")
