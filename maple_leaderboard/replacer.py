"""Cache replacer — swaps the derived leaderboard table in one transaction."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Sequence

from .errors import ReplaceError
from .models import SNAPSHOT_COLUMNS
from .schema import LEADERBOARD_TABLE

if TYPE_CHECKING:
    from .database import ConnectionPool
    from .models import CharacterSnapshot

_INSERT_SQL = (
    f"INSERT OR REPLACE INTO {LEADERBOARD_TABLE} ({', '.join(SNAPSHOT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in SNAPSHOT_COLUMNS)})"
)


class CacheReplacer:
    """Replaces the full contents of the derived table.

    Readers on other connections see either the previous committed set or
    the new one: the delete and the inserts share one write transaction and
    the cache store runs in WAL mode.
    """

    def __init__(self, pool: ConnectionPool, logger: logging.Logger | None = None) -> None:
        self._pool = pool
        self._logger = logger or logging.getLogger("leaderboard.replacer")

    async def replace(self, rows: Sequence[CharacterSnapshot]) -> int:
        """Write *rows* as the new snapshot. Returns the number of rows written.

        An empty sequence is allowed and leaves the table empty.
        """
        values = [r.as_tuple() for r in rows]

        def _sync(conn: sqlite3.Connection) -> int:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(f"DELETE FROM {LEADERBOARD_TABLE}")
                if values:
                    conn.executemany(_INSERT_SQL, values)
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
            return len(values)

        try:
            written = await self._pool.run(_sync)
        except sqlite3.Error as exc:
            raise ReplaceError(f"Leaderboard replace failed: {exc}") from exc
        self._logger.debug("Replaced %s with %d rows", LEADERBOARD_TABLE, written)
        return written
