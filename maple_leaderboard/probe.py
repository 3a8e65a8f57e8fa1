"""Online-count probe — counts logged-in, non-GM accounts in the source store."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from .errors import ProbeError

if TYPE_CHECKING:
    from .database import ConnectionPool

ONLINE_COUNT_SQL = (
    "SELECT COUNT(DISTINCT a.id) AS c "
    "FROM accounts a "
    "JOIN characters ch ON ch.accountid = a.id "
    "WHERE a.loggedin > 0 "
    "AND (ch.gm = 0 OR ch.gm IS NULL)"
)


class OnlineCountProbe:
    """Queries session state independently of the snapshot path."""

    def __init__(self, pool: ConnectionPool, logger: logging.Logger | None = None) -> None:
        self._pool = pool
        self._logger = logger or logging.getLogger("leaderboard.probe")

    async def probe(self) -> int:
        """Number of distinct active sessions on non-privileged characters."""

        def _sync(conn: sqlite3.Connection) -> int:
            row = conn.execute(ONLINE_COUNT_SQL).fetchone()
            return int(row["c"] or 0) if row else 0

        try:
            return await self._pool.run(_sync)
        except sqlite3.Error as exc:
            raise ProbeError(f"Online count query failed: {exc}") from exc
        except (ValueError, TypeError) as exc:
            raise ProbeError(f"Online count could not be converted: {exc}") from exc
