"""Query service — leaderboard, status and health reads against the cache store.

Leaderboard pages go through the ReadCache; status is read on every call so
the staleness window is always applied against the current time.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .errors import ConnectivityError, QueryError
from .models import LeaderboardRow, ServerStatus, StatusView
from .schema import LEADERBOARD_TABLE, STATUS_ROW_ID, STATUS_TABLE
from .utils import isoformat_utc, now_utc, parse_timestamp

if TYPE_CHECKING:
    from .config import LeaderboardSettings
    from .database import ConnectionPool
    from .read_cache import ReadCache


class RankingType(str, Enum):
    LEVEL = "level"
    FAME = "fame"
    CURRENCY = "currency"
    AUX1 = "aux1"
    AUX2 = "aux2"


# Closed mapping: the only ORDER BY expressions that can reach SQL.
ORDER_BY: dict[RankingType, str] = {
    RankingType.LEVEL: "level DESC, name ASC",
    RankingType.FAME: "fame DESC, level DESC, name ASC",
    RankingType.CURRENCY: "meso DESC, level DESC, name ASC",
    RankingType.AUX1: "dog_points DESC, level DESC, name ASC",
    RankingType.AUX2: "fish_points DESC, level DESC, name ASC",
}

_ALIASES: dict[str, RankingType] = {
    "meso": RankingType.CURRENCY,
    "dog": RankingType.AUX1,
    "dog_points": RankingType.AUX1,
    "fish": RankingType.AUX2,
    "fish_points": RankingType.AUX2,
}


def resolve_ranking(value: Any) -> RankingType:
    """Map client input onto a RankingType; unknown values fall back to LEVEL."""
    key = str(value or "").strip().lower()
    try:
        return RankingType(key)
    except ValueError:
        return _ALIASES.get(key, RankingType.LEVEL)


def parse_limit(value: Any, default: int = 50, ceiling: int = 200) -> int:
    """Clamp a client-supplied limit into ``[1, ceiling]``.

    Missing, non-numeric, zero and negative values give *default*;
    fractional values are floored.
    """
    fallback = min(max(int(default), 1), ceiling)
    if value is None or isinstance(value, bool):
        return fallback
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(n):
        return fallback
    n = math.floor(n)
    if n <= 0:
        return fallback
    return min(int(n), ceiling)


def normalize_filter(value: Any, max_length: int = 50) -> str:
    if value is None:
        return ""
    return str(value).strip()[:max_length]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class QueryService:
    """Read API consumed by the HTTP adapter."""

    def __init__(
        self,
        pool: ConnectionPool,
        cache: ReadCache,
        settings: LeaderboardSettings,
        stale_ms: int = 900_000,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._pool = pool
        self._cache = cache
        self._settings = settings
        self._stale_ms = stale_ms
        self._logger = logger or logging.getLogger("leaderboard.query")
        self._clock = clock
        self.query_errors = 0

    # ══════════════════════════════════════════════════════════
    #  Leaderboard
    # ══════════════════════════════════════════════════════════

    async def leaderboard(
        self,
        ranking: Any = None,
        limit: Any = None,
        name_filter: Any = None,
    ) -> dict:
        """Return a leaderboard page payload, served from cache within TTL.

        Payload: ``{type, limit, count, rows, updatedAt}``. Identical
        normalized arguments within the TTL return the same dict instance.
        """
        rtype = resolve_ranking(ranking)
        bound = parse_limit(limit, self._settings.default_limit, self._settings.max_limit)
        term = normalize_filter(name_filter, self._settings.max_filter_length)

        cache_key = f"rank:{rtype.value}:{term}:{bound}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            self._logger.debug("Read cache hit: %s", cache_key)
            return cached

        rows = await self._fetch_rows(rtype, bound, term)
        payload = {
            "type": rtype.value,
            "limit": bound,
            "count": len(rows),
            "rows": [r.to_payload() for r in rows],
            "updatedAt": isoformat_utc(self._clock()),
        }
        self._cache.purge_expired()
        self._cache.set(cache_key, payload)
        return payload

    async def _fetch_rows(self, rtype: RankingType, limit: int, term: str) -> list[LeaderboardRow]:
        sql = (
            "SELECT name, job, level, fame, meso, dog_points, fish_points "
            f"FROM {LEADERBOARD_TABLE} "
        )
        params: list[Any] = []
        if term:
            sql += "WHERE name LIKE ? ESCAPE '\\' "
            params.append(f"%{_escape_like(term)}%")
        sql += f"ORDER BY {ORDER_BY[rtype]} LIMIT ?"
        params.append(limit)

        def _sync(conn: sqlite3.Connection) -> list[LeaderboardRow]:
            rows = conn.execute(sql, params).fetchall()
            return [
                LeaderboardRow(
                    rank=i,
                    name=r["name"],
                    job=int(r["job"]),
                    level=int(r["level"]),
                    fame=int(r["fame"]),
                    meso=int(r["meso"]),
                    dog_points=int(r["dog_points"]),
                    fish_points=int(r["fish_points"]),
                )
                for i, r in enumerate(rows, start=1)
            ]

        return await self._run_query(_sync, "leaderboard")

    # ══════════════════════════════════════════════════════════
    #  Status / Health
    # ══════════════════════════════════════════════════════════

    async def read_status(self) -> ServerStatus | None:
        """The stored status row, or None if it has not been seeded."""

        def _sync(conn: sqlite3.Connection) -> ServerStatus | None:
            row = conn.execute(
                f"SELECT is_online, online_count, updated_at FROM {STATUS_TABLE} WHERE id = ?",
                (STATUS_ROW_ID,),
            ).fetchone()
            if row is None:
                return None
            return ServerStatus(
                is_online=bool(row["is_online"]),
                online_count=int(row["online_count"] or 0),
                updated_at=parse_timestamp(row["updated_at"]),
            )

        return await self._run_query(_sync, "status")

    async def status(self) -> dict:
        """Status payload with the staleness window applied."""
        stored = await self.read_status()
        if stored is None:
            return StatusView.offline().to_payload()
        return StatusView.from_status(stored, self._clock(), self._stale_ms).to_payload()

    async def health(self) -> dict:
        """Liveness probe against the cache store. Never raises."""
        try:
            db_ok = await self._pool.ping()
        except (sqlite3.Error, ConnectivityError) as exc:
            self._logger.warning("Health check failed: %s", exc)
            return {"ok": False, "db": False, "error": str(exc)}
        return {"ok": db_ok, "db": db_ok, "time": isoformat_utc(self._clock())}

    async def _run_query(self, fn: Callable[[sqlite3.Connection], Any], what: str) -> Any:
        try:
            return await self._pool.run(fn)
        except (sqlite3.Error, ConnectivityError) as exc:
            self.query_errors += 1
            self._logger.error("%s query failed: %s", what, exc)
            raise QueryError(f"{what} query failed: {exc}") from exc
