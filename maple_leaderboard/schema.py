"""Schema reconciler — keeps the cache store's derived tables in shape.

Creates ``characters_light`` and ``server_status`` if missing, adds absent
columns, puts the derived table back into canonical column order when it has
drifted, and seeds the single status row. Every step is idempotent and never
drops data.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from .database import table_columns
from .errors import ConnectivityError, SchemaError
from .models import SNAPSHOT_COLUMNS

if TYPE_CHECKING:
    from .database import ConnectionPool

LEADERBOARD_TABLE = "characters_light"
STATUS_TABLE = "server_status"
STATUS_ROW_ID = 1

# column → definition (without the name)
COLUMN_DEFS: dict[str, str] = {
    "name": "TEXT PRIMARY KEY",
    "job": "INTEGER NOT NULL DEFAULT 0",
    "level": "INTEGER NOT NULL DEFAULT 0",
    "fame": "INTEGER NOT NULL DEFAULT 0",
    "meso": "INTEGER NOT NULL DEFAULT 0",
    "dog_points": "INTEGER NOT NULL DEFAULT 0",
    "fish_points": "INTEGER NOT NULL DEFAULT 0",
}


def _create_leaderboard_sql(table: str, extra_defs: list[str] | None = None) -> str:
    defs = [f"{col} {COLUMN_DEFS[col]}" for col in SNAPSHOT_COLUMNS]
    defs.extend(extra_defs or [])
    return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(defs)})"


def _column_def_from_info(info: dict) -> str:
    """Rebuild a column definition from a PRAGMA table_info row."""
    parts = [info["name"], info["type"] or ""]
    if info["notnull"]:
        parts.append("NOT NULL")
    if info["dflt_value"] is not None:
        parts.append(f"DEFAULT {info['dflt_value']}")
    return " ".join(p for p in parts if p)


class SchemaReconciler:
    """Idempotent creation/alteration of the cache store schema."""

    def __init__(self, pool: ConnectionPool, logger: logging.Logger | None = None) -> None:
        self._pool = pool
        self._logger = logger or logging.getLogger("leaderboard.schema")

    async def reconcile(self) -> None:
        """Bring both tables up to the expected shape.

        Raises SchemaError if a required step fails. The cosmetic column
        reorder never raises.
        """
        try:
            added = await self._pool.run(self._ensure_tables)
        except sqlite3.Error as exc:
            raise SchemaError(f"Schema reconciliation failed: {exc}") from exc
        if added:
            self._logger.info("Added missing %s columns: %s", LEADERBOARD_TABLE, ", ".join(added))

        try:
            reordered = await self._pool.run(self._reorder_columns)
        except (sqlite3.Error, ConnectivityError) as exc:
            self._logger.warning("Column reorder of %s skipped: %s", LEADERBOARD_TABLE, exc)
        else:
            if reordered:
                self._logger.info("Reordered %s columns to canonical order", LEADERBOARD_TABLE)

    async def describe_columns(self) -> list[str]:
        """Current column order of the derived table."""

        def _sync(conn: sqlite3.Connection) -> list[str]:
            return [c["name"] for c in table_columns(conn, LEADERBOARD_TABLE)]

        return await self._pool.run(_sync)

    # ══════════════════════════════════════════════════════════
    #  Sync steps
    # ══════════════════════════════════════════════════════════

    def _ensure_tables(self, conn: sqlite3.Connection) -> list[str]:
        conn.execute(_create_leaderboard_sql(LEADERBOARD_TABLE))

        present = {c["name"] for c in table_columns(conn, LEADERBOARD_TABLE)}
        added: list[str] = []
        for col in SNAPSHOT_COLUMNS:
            if col in present:
                continue
            if col == "name":
                # A primary key cannot be added after the fact
                raise sqlite3.OperationalError(f"{LEADERBOARD_TABLE} has no 'name' column")
            conn.execute(f"ALTER TABLE {LEADERBOARD_TABLE} ADD COLUMN {col} {COLUMN_DEFS[col]}")
            added.append(col)

        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {STATUS_TABLE} (
                id INTEGER PRIMARY KEY,
                is_online INTEGER NOT NULL DEFAULT 0,
                online_count INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            )
        """)
        conn.execute(
            f"INSERT OR IGNORE INTO {STATUS_TABLE} (id, is_online, online_count, updated_at) "
            "VALUES (?, 0, 0, NULL)",
            (STATUS_ROW_ID,),
        )
        return added

    def _reorder_columns(self, conn: sqlite3.Connection) -> bool:
        """Rebuild the derived table if its column order drifted.

        SQLite has no MODIFY COLUMN ... AFTER, so the table is copied into a
        fresh one inside a single transaction. Extra columns are kept, after
        the canonical ones.
        """
        infos = table_columns(conn, LEADERBOARD_TABLE)
        current = [c["name"] for c in infos]
        canonical = list(SNAPSHOT_COLUMNS)
        extras = [c for c in infos if c["name"] not in COLUMN_DEFS]
        wanted = canonical + [c["name"] for c in extras]
        if current == wanted:
            return False

        tmp = f"{LEADERBOARD_TABLE}__reorder"
        cols = ", ".join(wanted)
        conn.execute("BEGIN IMMEDIATE")
        try:
            conn.execute(f"DROP TABLE IF EXISTS {tmp}")
            conn.execute(_create_leaderboard_sql(tmp, [_column_def_from_info(c) for c in extras]))
            conn.execute(f"INSERT INTO {tmp} ({cols}) SELECT {cols} FROM {LEADERBOARD_TABLE}")
            conn.execute(f"DROP TABLE {LEADERBOARD_TABLE}")
            conn.execute(f"ALTER TABLE {tmp} RENAME TO {LEADERBOARD_TABLE}")
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        return True
