"""Service orchestrator — LeaderboardApp.

Startup sequence:
config → pools → components → schema reconcile → scheduler → HTTP API.
Shutdown runs in reverse and lets an in-flight sync cycle finish its stage.
"""

from __future__ import annotations

import asyncio
import logging
import time

from . import __version__
from .api_server import LeaderboardApiServer
from .config import LeaderboardConfig
from .database import ConnectionPool
from .extractor import SnapshotExtractor
from .orchestrator import CycleReport, SyncOrchestrator
from .probe import OnlineCountProbe
from .publisher import StatusPublisher
from .query_service import QueryService
from .read_cache import ReadCache
from .replacer import CacheReplacer
from .scheduler import SyncScheduler
from .schema import SchemaReconciler


class LeaderboardApp:
    """Top-level application: owns every process-scoped resource."""

    def __init__(self, config: LeaderboardConfig) -> None:
        self.config = config
        self.logger = logging.getLogger("leaderboard")

        # Components (initialized in build())
        self.source_pool: ConnectionPool | None = None
        self.cache_pool: ConnectionPool | None = None
        self.reconciler: SchemaReconciler | None = None
        self.orchestrator: SyncOrchestrator | None = None
        self.read_cache: ReadCache | None = None
        self.query_service: QueryService | None = None
        self.scheduler: SyncScheduler | None = None
        self.api_server: LeaderboardApiServer | None = None

        # State
        self._running = False
        self._start_time: float | None = None
        self._stopped = asyncio.Event()

    def build(self) -> None:
        """Construct pools and components without touching any store."""
        cfg = self.config

        self.cache_pool = ConnectionPool(
            "cache",
            cfg.cache.path,
            size=cfg.cache.pool_size,
            timeout=cfg.cache.connect_timeout,
        )
        extractor: SnapshotExtractor | None = None
        probe: OnlineCountProbe | None = None
        if not cfg.schema_only:
            self.source_pool = ConnectionPool(
                "source",
                cfg.source.path,
                size=cfg.source.pool_size,
                timeout=cfg.source.connect_timeout,
                read_only=True,
            )
            extractor = SnapshotExtractor(
                self.source_pool,
                limit=cfg.sync.extract_limit,
                logger=logging.getLogger("leaderboard.extractor"),
            )
            probe = OnlineCountProbe(self.source_pool, logger=logging.getLogger("leaderboard.probe"))

        self.reconciler = SchemaReconciler(self.cache_pool, logger=logging.getLogger("leaderboard.schema"))
        self.orchestrator = SyncOrchestrator(
            reconciler=self.reconciler,
            replacer=CacheReplacer(self.cache_pool, logger=logging.getLogger("leaderboard.replacer")),
            publisher=StatusPublisher(self.cache_pool, logger=logging.getLogger("leaderboard.publisher")),
            extractor=extractor,
            probe=probe,
            logger=logging.getLogger("leaderboard.sync"),
        )

        self.read_cache = ReadCache(ttl_seconds=cfg.leaderboard.cache_ttl_ms / 1000)
        self.orchestrator.add_replace_listener(lambda _rows: self.read_cache.clear())
        self.query_service = QueryService(
            self.cache_pool,
            self.read_cache,
            cfg.leaderboard,
            stale_ms=cfg.status.stale_ms,
            logger=logging.getLogger("leaderboard.query"),
        )

    async def start(self) -> None:
        """Start the service and block until stop() is called."""
        self.logger.info("Starting maple-leaderboard...")
        self._start_time = time.time()

        # 1. Pools and components
        self.build()
        if self.config.schema_only:
            self.logger.info("No source store configured: schema-only mode")
        else:
            self.logger.info("Source store: %s", self.config.source.path)
        self.logger.info("Cache store: %s", self.config.cache.path)

        # 2. Reconcile the cache schema once per process
        await self.orchestrator.prepare()

        # 3. Sync scheduler
        if self.config.sync.enabled:
            self.scheduler = SyncScheduler(
                self.orchestrator,
                interval_seconds=self.config.sync.interval_seconds,
                cron=self.config.sync.cron,
                run_on_start=self.config.sync.run_on_start,
                logger=logging.getLogger("leaderboard.scheduler"),
            )
            await self.scheduler.start()

        # 4. HTTP API
        if self.config.api.enabled:
            self.api_server = LeaderboardApiServer(
                self.query_service,
                self.read_cache,
                orchestrator=self.orchestrator,
                host=self.config.api.host,
                port=self.config.api.port,
                cors_origin=self.config.api.cors_origin,
                logger=logging.getLogger("leaderboard.api"),
            )
            await self.api_server.start()

        self._running = True
        self.logger.info("maple-leaderboard started successfully (v%s)", __version__)
        await self._stopped.wait()

    async def run_once(self) -> CycleReport | None:
        """Reconcile, run a single sync cycle and release the pools."""
        self.build()
        try:
            await self.orchestrator.prepare()
            report = await self.orchestrator.run_cycle()
            try:
                columns = await self.reconciler.describe_columns()
                self.logger.info("characters_light columns: %s", ", ".join(columns))
            except Exception as exc:
                self.logger.warning("Could not describe columns: %s", exc)
            return report
        finally:
            self._close_pools()

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            self._stopped.set()
            return
        self.logger.info("Shutting down maple-leaderboard...")
        self._running = False

        if self.api_server:
            await self.api_server.stop()
        if self.scheduler:
            await self.scheduler.stop()
        self._close_pools()

        self.logger.info("maple-leaderboard stopped after %.0fs.", time.time() - (self._start_time or time.time()))
        self._stopped.set()

    def _close_pools(self) -> None:
        if self.source_pool:
            self.source_pool.close()
        if self.cache_pool:
            self.cache_pool.close()
