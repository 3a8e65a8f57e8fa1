"""Sync orchestrator — drives one synchronization cycle at a time.

Cycle: Extracting → Replacing → Probing → Publishing. Each stage has its own
failure domain; nothing that goes wrong inside a cycle escapes it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Callable

from .errors import (
    ConnectivityError,
    ExtractError,
    ProbeError,
    PublishError,
    ReplaceError,
    SchemaError,
)
from .utils import now_utc

if TYPE_CHECKING:
    from .extractor import SnapshotExtractor
    from .probe import OnlineCountProbe
    from .publisher import StatusPublisher
    from .replacer import CacheReplacer
    from .schema import SchemaReconciler


class SyncState(str, Enum):
    IDLE = "idle"
    RECONCILING = "reconciling"
    EXTRACTING = "extracting"
    REPLACING = "replacing"
    PROBING = "probing"
    PUBLISHING = "publishing"


@dataclass
class CycleReport:
    """Outcome of one sync cycle."""

    started_at: datetime
    rows_written: int | None = None
    is_online: bool = False
    online_count: int = 0
    published: bool = False
    stopped_early: bool = False
    errors: dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def replaced(self) -> bool:
        return self.rows_written is not None


@dataclass
class SyncMetrics:
    """Counters exposed on /metrics."""

    cycles_total: int = 0
    cycles_rejected_total: int = 0
    extract_failures_total: int = 0
    replace_failures_total: int = 0
    probe_failures_total: int = 0
    publish_failures_total: int = 0
    last_rows: int = 0
    last_online_count: int = 0
    last_duration_seconds: float = 0.0
    last_cycle_at: datetime | None = None


class SyncOrchestrator:
    """Runs sync cycles behind a single-flight guard."""

    def __init__(
        self,
        reconciler: SchemaReconciler,
        replacer: CacheReplacer,
        publisher: StatusPublisher,
        extractor: SnapshotExtractor | None = None,
        probe: OnlineCountProbe | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._replacer = replacer
        self._publisher = publisher
        self._extractor = extractor
        self._probe = probe
        self._logger = logger or logging.getLogger("leaderboard.sync")

        self._guard = asyncio.Lock()
        self._stop_requested = False
        self._listeners: list[Callable[[int], None]] = []

        self.state = SyncState.IDLE
        self.metrics = SyncMetrics()
        self.last_report: CycleReport | None = None

    @property
    def schema_only(self) -> bool:
        return self._extractor is None

    @property
    def in_flight(self) -> bool:
        return self._guard.locked()

    def add_replace_listener(self, callback: Callable[[int], None]) -> None:
        """Call ``callback(rows_written)`` after every successful replace."""
        self._listeners.append(callback)

    def request_stop(self) -> None:
        """Let an in-flight cycle finish its current stage, then end it."""
        self._stop_requested = True

    # ══════════════════════════════════════════════════════════
    #  Startup
    # ══════════════════════════════════════════════════════════

    async def prepare(self) -> bool:
        """Run the schema reconciler once. Returns False if it failed."""
        self.state = SyncState.RECONCILING
        try:
            await self._reconciler.reconcile()
            return True
        except (SchemaError, ConnectivityError) as exc:
            self._logger.error("Schema reconcile failed, continuing: %s", exc)
            return False
        finally:
            self.state = SyncState.IDLE

    # ══════════════════════════════════════════════════════════
    #  Cycle
    # ══════════════════════════════════════════════════════════

    async def run_cycle(self) -> CycleReport | None:
        """Run one cycle. Returns None if another cycle is already in flight."""
        if self._guard.locked():
            self.metrics.cycles_rejected_total += 1
            self._logger.warning("Sync tick rejected: previous cycle still running")
            return None

        async with self._guard:
            started = time.monotonic()
            report = CycleReport(started_at=now_utc())
            self.metrics.cycles_total += 1
            try:
                await self._run_stages(report)
            finally:
                self.state = SyncState.IDLE
                report.duration_seconds = time.monotonic() - started
                self._record(report)
            return report

    async def _run_stages(self, report: CycleReport) -> None:
        is_online = False
        online_count = 0

        if self._extractor is None:
            self._logger.info("No source store configured: publishing offline status only")
        else:
            self.state = SyncState.EXTRACTING
            try:
                rows = await self._extractor.extract()
            except (ExtractError, ConnectivityError) as exc:
                rows = None
                self.metrics.extract_failures_total += 1
                report.errors["extract"] = str(exc)
                self._logger.error("Extract failed, keeping previous snapshot: %s", exc)

            if rows is not None:
                if self._stopping(report, SyncState.REPLACING):
                    return
                self.state = SyncState.REPLACING
                try:
                    report.rows_written = await self._replacer.replace(rows)
                except (ReplaceError, ConnectivityError) as exc:
                    self.metrics.replace_failures_total += 1
                    report.errors["replace"] = str(exc)
                    self._logger.error("Replace failed, previous snapshot remains: %s", exc)
                else:
                    self._notify(report.rows_written)

                if self._stopping(report, SyncState.PROBING):
                    return
                self.state = SyncState.PROBING
                try:
                    online_count = await self._probe.probe() if self._probe else 0
                    is_online = self._probe is not None
                except (ProbeError, ConnectivityError) as exc:
                    self.metrics.probe_failures_total += 1
                    report.errors["probe"] = str(exc)
                    self._logger.error("Online probe failed, reporting offline: %s", exc)

        if self._stopping(report, SyncState.PUBLISHING):
            return
        self.state = SyncState.PUBLISHING
        report.is_online = is_online
        report.online_count = online_count if is_online else 0
        try:
            await self._publisher.publish(report.is_online, report.online_count)
            report.published = True
        except (PublishError, ConnectivityError) as exc:
            self.metrics.publish_failures_total += 1
            report.errors["publish"] = str(exc)
            self._logger.error("Status publish failed: %s", exc)

        self._logger.info(
            "Sync %s: rows=%s online=%s count=%d",
            "OK" if not report.errors else "degraded",
            report.rows_written if report.replaced else "kept",
            report.is_online,
            report.online_count,
        )

    def _stopping(self, report: CycleReport, next_state: SyncState) -> bool:
        if not self._stop_requested:
            return False
        report.stopped_early = True
        self._logger.info("Shutdown requested: cycle ends before %s", next_state.value)
        return True

    def _notify(self, rows_written: int) -> None:
        for callback in self._listeners:
            try:
                callback(rows_written)
            except Exception:
                self._logger.exception("Replace listener failed")

    def _record(self, report: CycleReport) -> None:
        self.last_report = report
        self.metrics.last_cycle_at = report.started_at
        self.metrics.last_duration_seconds = report.duration_seconds
        if report.replaced:
            self.metrics.last_rows = report.rows_written
        if report.published:
            self.metrics.last_online_count = report.online_count
