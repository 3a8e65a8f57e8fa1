"""SQLite connection pools for the source and cache stores.

Each public coroutine wraps a synchronous inner function via
``loop.run_in_executor(None, ...)``. Connections are reused from a bounded
pool: at most ``size`` are checked out at once, and a caller waits up to
``timeout`` seconds for a free one before failing with PoolTimeoutError.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from .errors import ConnectivityError, PoolTimeoutError

T = TypeVar("T")


class ConnectionPool:
    """Bounded, thread-safe pool of SQLite connections to one database file."""

    def __init__(
        self,
        name: str,
        path: str,
        *,
        size: int = 5,
        timeout: float = 10.0,
        read_only: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.path = path
        self.size = max(int(size), 1)
        self.timeout = float(timeout)
        self.read_only = read_only
        self._logger = logger or logging.getLogger(f"leaderboard.pool.{name}")

        self._slots = threading.BoundedSemaphore(self.size)
        self._idle: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

        # Stats
        self.connections_created = 0
        self.connections_discarded = 0

    # ══════════════════════════════════════════════════════════
    #  Connection lifecycle
    # ══════════════════════════════════════════════════════════

    def _connect(self) -> sqlite3.Connection:
        """Open a new connection with standard settings."""
        uri = Path(self.path).resolve().as_uri()
        if self.read_only:
            uri += "?mode=ro"
        try:
            conn = sqlite3.connect(
                uri,
                uri=True,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,  # explicit BEGIN/COMMIT only
            )
            conn.row_factory = sqlite3.Row
            if not self.read_only:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
        except sqlite3.Error as exc:
            raise ConnectivityError(f"{self.name} store unreachable ({self.path}): {exc}") from exc
        with self._lock:
            self.connections_created += 1
        return conn

    def _checkout(self) -> sqlite3.Connection:
        with self._lock:
            if self._idle:
                return self._idle.pop()
        return self._connect()

    def _checkin(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.rollback()
            except sqlite3.Error as exc:
                self._logger.warning("%s connection failed to roll back, discarding: %s", self.name, exc)
                self._discard(conn)
                return
        with self._lock:
            if not self._closed:
                self._idle.append(conn)
                return
        conn.close()

    def _discard(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            self.connections_discarded += 1
        try:
            conn.close()
        except sqlite3.Error as close_err:
            self._logger.debug("Error closing %s connection after failure: %s", self.name, close_err)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Check a connection out of the pool for the duration of the block.

        Raises ConnectivityError if the pool is closed or the store cannot be
        opened, PoolTimeoutError if no slot frees up within ``timeout``.
        """
        if self._closed:
            raise ConnectivityError(f"{self.name} pool is closed")
        if not self._slots.acquire(timeout=self.timeout):
            raise PoolTimeoutError(
                f"{self.name} pool exhausted: no connection within {self.timeout:.1f}s"
            )
        conn: sqlite3.Connection | None = None
        try:
            conn = self._checkout()
            yield conn
        except sqlite3.Error:
            if conn is not None:
                self._discard(conn)
                conn = None
            raise
        finally:
            try:
                if conn is not None:
                    self._checkin(conn)
            finally:
                self._slots.release()

    def close(self) -> None:
        """Close idle connections and refuse further checkouts."""
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            conn.close()
        self._logger.debug("%s pool closed (%d idle connections)", self.name, len(idle))

    @property
    def closed(self) -> bool:
        return self._closed

    # ══════════════════════════════════════════════════════════
    #  Async execution
    # ══════════════════════════════════════════════════════════

    def _call(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        with self.connection() as conn:
            return fn(conn)

    async def run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``fn(conn)`` on a pooled connection in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._call, fn)

    async def ping(self) -> bool:
        """Trivial round-trip (``SELECT 1``)."""

        def _sync(conn: sqlite3.Connection) -> bool:
            row = conn.execute("SELECT 1 AS ok").fetchone()
            return bool(row["ok"])

        return await self.run(_sync)


def table_columns(conn: sqlite3.Connection, table: str) -> list[dict[str, Any]]:
    """Return ``PRAGMA table_info`` rows for *table* in declaration order.

    An empty list means the table does not exist.
    """
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return [dict(r) for r in rows]
