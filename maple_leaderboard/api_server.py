"""HTTP adapter — exposes the query service and Prometheus metrics via aiohttp.

Routes carry no logic of their own: they parse query parameters, call the
QueryService and render JSON. Sync-cycle failures never reach this layer;
read-path failures arrive as ServiceError and become structured payloads.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from aiohttp import web

from . import __version__
from .errors import ServiceError

if TYPE_CHECKING:
    from .orchestrator import SyncOrchestrator
    from .query_service import QueryService
    from .read_cache import ReadCache


def _make_error_middleware(logger: logging.Logger):
    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except ServiceError as exc:
            logger.warning("%s %s failed: %s", request.method, request.path, exc)
            return web.json_response(exc.to_payload(), status=exc.http_status)

    return error_middleware


def _make_cors_middleware(origin: str):
    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        response = await handler(request)
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
        return response

    return cors_middleware


class LeaderboardApiServer:
    """aiohttp application serving the read API on one TCP port."""

    def __init__(
        self,
        query_service: QueryService,
        read_cache: ReadCache,
        orchestrator: SyncOrchestrator | None = None,
        host: str = "0.0.0.0",
        port: int = 10000,
        cors_origin: str = "*",
        logger: logging.Logger | None = None,
    ) -> None:
        self._query = query_service
        self._cache = read_cache
        self._orchestrator = orchestrator
        self._host = host
        self._port = port
        self._logger = logger or logging.getLogger("leaderboard.api")
        self._runner: web.AppRunner | None = None
        self._start_time = time.time()

        # Error middleware sits inside CORS so error payloads get the header too
        self.app = web.Application(
            middlewares=[_make_cors_middleware(cors_origin), _make_error_middleware(self._logger)],
        )
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/api/health", self.handle_health)
        self.app.router.add_get("/api/status", self.handle_status)
        self.app.router.add_get("/api/server_status", self.handle_status)
        self.app.router.add_get("/api/leaderboard", self.handle_leaderboard)
        self.app.router.add_get("/api/rankings", self.handle_leaderboard)
        self.app.router.add_get("/metrics", self.handle_metrics)

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        self._logger.info("HTTP API listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ══════════════════════════════════════════════════════════
    #  Handlers
    # ══════════════════════════════════════════════════════════

    async def handle_root(self, request: web.Request) -> web.Response:
        return web.Response(text=f"OK - maple-leaderboard {__version__} is running")

    async def handle_health(self, request: web.Request) -> web.Response:
        payload = await self._query.health()
        return web.json_response(payload, status=200 if payload["ok"] else 500)

    async def handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(await self._query.status())

    async def handle_leaderboard(self, request: web.Request) -> web.Response:
        params = request.query
        payload = await self._query.leaderboard(
            params.get("type"),
            params.get("limit"),
            params.get("q", params.get("name")),
        )
        return web.json_response(payload)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        lines = self.collect_metrics()
        return web.Response(text="\n".join(lines) + "\n", content_type="text/plain")

    # ══════════════════════════════════════════════════════════
    #  Metrics
    # ══════════════════════════════════════════════════════════

    def collect_metrics(self) -> list[str]:
        """Prometheus exposition lines for sync and read-side counters."""
        lines: list[str] = []
        lines.append(f"leaderboard_uptime_seconds {time.time() - self._start_time:.0f}")

        # ── Sync counters ────────────────────────────────────
        if self._orchestrator is not None:
            m = self._orchestrator.metrics
            lines.append(f"leaderboard_sync_cycles_total {m.cycles_total}")
            lines.append(f"leaderboard_sync_cycles_rejected_total {m.cycles_rejected_total}")
            lines.append(f"leaderboard_sync_extract_failures_total {m.extract_failures_total}")
            lines.append(f"leaderboard_sync_replace_failures_total {m.replace_failures_total}")
            lines.append(f"leaderboard_sync_probe_failures_total {m.probe_failures_total}")
            lines.append(f"leaderboard_sync_publish_failures_total {m.publish_failures_total}")
            lines.append(f"leaderboard_sync_last_rows {m.last_rows}")
            lines.append(f"leaderboard_sync_last_online_count {m.last_online_count}")
            lines.append(f"leaderboard_sync_last_duration_seconds {m.last_duration_seconds:.3f}")
            lines.append(f"leaderboard_sync_in_flight {int(self._orchestrator.in_flight)}")

        # ── Read side ────────────────────────────────────────
        lines.append(f"leaderboard_read_cache_hits_total {self._cache.hits}")
        lines.append(f"leaderboard_read_cache_misses_total {self._cache.misses}")
        lines.append(f"leaderboard_read_cache_entries {len(self._cache)}")
        lines.append(f"leaderboard_query_errors_total {self._query.query_errors}")
        return lines
