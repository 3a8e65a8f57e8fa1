"""Snapshot extractor — reads the leaderboard snapshot from the source store."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from .database import table_columns
from .errors import ExtractError
from .models import CharacterSnapshot

if TYPE_CHECKING:
    from .database import ConnectionPool

SOURCE_TABLE = "characters"
REQUIRED_COLUMNS: tuple[str, ...] = ("name", "job", "level", "fame", "meso", "gm")
OPTIONAL_COUNTERS: tuple[str, ...] = ("dog_points", "fish_points")

DEFAULT_LIMIT = 200


def build_snapshot_query(present: set[str]) -> str:
    """SELECT for the snapshot, with ``0`` standing in for absent counters."""
    counters = [
        f"COALESCE({col}, 0) AS {col}" if col in present else f"0 AS {col}"
        for col in OPTIONAL_COUNTERS
    ]
    return (
        "SELECT name, "
        "COALESCE(job, 0) AS job, "
        "COALESCE(level, 0) AS level, "
        "COALESCE(fame, 0) AS fame, "
        "COALESCE(meso, 0) AS meso, "
        f"{', '.join(counters)} "
        f"FROM {SOURCE_TABLE} "
        "WHERE (gm = 0 OR gm IS NULL) "
        "ORDER BY level DESC, name ASC "
        "LIMIT ?"
    )


class SnapshotExtractor:
    """Reads a bounded, ordered set of non-GM characters."""

    def __init__(
        self,
        pool: ConnectionPool,
        limit: int = DEFAULT_LIMIT,
        logger: logging.Logger | None = None,
    ) -> None:
        self._pool = pool
        self._limit = limit
        self._logger = logger or logging.getLogger("leaderboard.extractor")

    async def extract(self, limit: int | None = None) -> list[CharacterSnapshot]:
        """Return up to *limit* snapshot rows ordered by level descending.

        Raises ExtractError on schema mismatch or query failure and
        ConnectivityError when the source store cannot be reached.
        """
        bound = max(int(limit if limit is not None else self._limit), 0)

        def _sync(conn: sqlite3.Connection) -> list[CharacterSnapshot]:
            present = {c["name"] for c in table_columns(conn, SOURCE_TABLE)}
            if not present:
                raise ExtractError(f"Source table '{SOURCE_TABLE}' not found")
            missing = [c for c in REQUIRED_COLUMNS if c not in present]
            if missing:
                raise ExtractError(
                    f"Source table '{SOURCE_TABLE}' is missing required columns: {', '.join(missing)}"
                )
            rows = conn.execute(build_snapshot_query(present), (bound,)).fetchall()
            return [CharacterSnapshot.from_row(r) for r in rows]

        try:
            snapshot = await self._pool.run(_sync)
        except sqlite3.Error as exc:
            raise ExtractError(f"Snapshot query failed: {exc}") from exc
        except (ValueError, TypeError) as exc:
            # Source columns are dynamically typed; a non-numeric stat lands here
            raise ExtractError(f"Snapshot row could not be converted: {exc}") from exc
        self._logger.debug("Extracted %d rows (limit %d)", len(snapshot), bound)
        return snapshot
