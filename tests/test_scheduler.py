"""Tests for the sync scheduler tick loop."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from maple_leaderboard.scheduler import SyncScheduler


def _fake_orchestrator(run_cycle: AsyncMock | None = None) -> MagicMock:
    orch = MagicMock()
    orch.run_cycle = run_cycle or AsyncMock(return_value=None)
    orch.request_stop = MagicMock()
    return orch


def _scheduler(orch, **kwargs) -> SyncScheduler:
    return SyncScheduler(orch, logger=logging.getLogger("test"), **kwargs)


class TestConstruction:

    def test_invalid_cron_rejected(self):
        with pytest.raises(ValueError, match="cron"):
            _scheduler(_fake_orchestrator(), cron="every minute please")

    def test_cron_delay_within_a_minute(self):
        sched = _scheduler(_fake_orchestrator(), cron="*/1 * * * *")
        assert 0.0 <= sched._next_delay(1, 0.0) <= 60.0


class TestTicks:

    async def test_runs_on_start(self):
        orch = _fake_orchestrator()
        sched = _scheduler(orch, interval_seconds=3600)
        await sched.start()
        await asyncio.sleep(0.05)
        assert sched.running is True
        await sched.stop()
        assert orch.run_cycle.await_count == 1
        assert sched.running is False

    async def test_no_tick_on_start_when_disabled(self):
        orch = _fake_orchestrator()
        sched = _scheduler(orch, interval_seconds=3600, run_on_start=False)
        await sched.start()
        await asyncio.sleep(0.05)
        await sched.stop()
        orch.run_cycle.assert_not_called()

    async def test_interval_ticks(self):
        orch = _fake_orchestrator()
        sched = _scheduler(orch, interval_seconds=0.05)
        await sched.start()
        await asyncio.sleep(0.23)
        await sched.stop()
        # run-on-start plus roughly four interval ticks
        assert sched.ticks_emitted >= 3
        assert orch.run_cycle.await_count == sched.ticks_emitted

    async def test_ticks_dispatched_while_cycle_running(self):
        release = asyncio.Event()

        async def slow_cycle():
            await release.wait()

        orch = _fake_orchestrator(AsyncMock(side_effect=slow_cycle))
        sched = _scheduler(orch, interval_seconds=0.03)
        await sched.start()
        await asyncio.sleep(0.1)
        # The first cycle has not finished, yet later ticks reached the orchestrator
        assert orch.run_cycle.call_count >= 2
        release.set()
        await sched.stop()

    async def test_cycle_exception_does_not_stop_loop(self):
        orch = _fake_orchestrator(AsyncMock(side_effect=RuntimeError("unexpected")))
        sched = _scheduler(orch, interval_seconds=0.03)
        await sched.start()
        await asyncio.sleep(0.1)
        assert sched.running is True
        await sched.stop()
        assert orch.run_cycle.call_count >= 2


class TestStop:

    async def test_stop_requests_orchestrator_stop_and_waits(self):
        entered = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def slow_cycle():
            entered.set()
            await release.wait()
            finished.append(True)

        orch = _fake_orchestrator(AsyncMock(side_effect=slow_cycle))
        sched = _scheduler(orch, interval_seconds=3600)
        await sched.start()
        await entered.wait()

        stopper = asyncio.create_task(sched.stop())
        await asyncio.sleep(0.02)
        orch.request_stop.assert_called_once()
        assert not stopper.done()

        release.set()
        await stopper
        assert finished == [True]

    async def test_stop_is_prompt_between_ticks(self):
        sched = _scheduler(_fake_orchestrator(), interval_seconds=3600, run_on_start=False)
        await sched.start()
        await asyncio.wait_for(sched.stop(), timeout=1.0)
