"""Status publisher — upserts the single server_status record."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from .errors import PublishError
from .schema import STATUS_ROW_ID, STATUS_TABLE
from .utils import now_utc

if TYPE_CHECKING:
    from .database import ConnectionPool

_UPSERT_SQL = (
    f"INSERT INTO {STATUS_TABLE} (id, is_online, online_count, updated_at) "
    "VALUES (?, ?, ?, ?) "
    "ON CONFLICT(id) DO UPDATE SET "
    "is_online = excluded.is_online, "
    "online_count = excluded.online_count, "
    "updated_at = excluded.updated_at"
)


class StatusPublisher:
    """Writes the status record stamped with the current UTC time."""

    def __init__(
        self,
        pool: ConnectionPool,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._pool = pool
        self._logger = logger or logging.getLogger("leaderboard.publisher")
        self._clock = clock

    async def publish(self, is_online: bool, online_count: int) -> datetime:
        """Upsert the status row. Returns the ``updated_at`` that was written."""
        count = max(int(online_count or 0), 0) if is_online else 0
        updated_at = self._clock()
        params = (STATUS_ROW_ID, 1 if is_online else 0, count, updated_at.isoformat())

        def _sync(conn: sqlite3.Connection) -> None:
            conn.execute(_UPSERT_SQL, params)

        try:
            await self._pool.run(_sync)
        except sqlite3.Error as exc:
            raise PublishError(f"Status publish failed: {exc}") from exc
        self._logger.debug("Published status online=%s count=%d", is_online, count)
        return updated_at
