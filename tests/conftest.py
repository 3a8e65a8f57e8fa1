"""Shared test fixtures for maple-leaderboard."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio

from maple_leaderboard.config import LeaderboardConfig
from maple_leaderboard.database import ConnectionPool
from maple_leaderboard.extractor import SnapshotExtractor
from maple_leaderboard.orchestrator import SyncOrchestrator
from maple_leaderboard.probe import OnlineCountProbe
from maple_leaderboard.publisher import StatusPublisher
from maple_leaderboard.query_service import QueryService
from maple_leaderboard.read_cache import ReadCache
from maple_leaderboard.replacer import CacheReplacer
from maple_leaderboard.schema import SchemaReconciler

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Minimal config dict matching LeaderboardConfig schema ────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "source": {"path": "source.db", "pool_size": 2, "connect_timeout": 1},
        "cache": {"path": "cache.db", "pool_size": 3, "connect_timeout": 1},
        "sync": {"enabled": True, "interval_seconds": 60, "extract_limit": 200},
        "status": {"stale_ms": 900_000},
        "leaderboard": {"default_limit": 50, "max_limit": 200, "cache_ttl_ms": 30_000},
        "api": {"enabled": False, "host": "127.0.0.1", "port": 0},
    }
    base.update(overrides)
    return base


@pytest.fixture
def sample_config_dict() -> dict:
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> LeaderboardConfig:
    return LeaderboardConfig(**sample_config_dict)


# ── Clocks ──────────────────────────────────────────────────

class FakeMonotonic:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtc:
    """Manually set UTC wall clock."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def mono_clock() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def utc_clock() -> FakeUtc:
    return FakeUtc()


# ── Source store ────────────────────────────────────────────

SOURCE_DDL = """
CREATE TABLE accounts (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    loggedin INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE characters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    accountid INTEGER NOT NULL,
    name TEXT NOT NULL UNIQUE,
    job INTEGER DEFAULT 0,
    level INTEGER DEFAULT 1,
    fame INTEGER DEFAULT 0,
    meso INTEGER DEFAULT 0,
    gm INTEGER DEFAULT 0
    {aux_columns}
);
"""


def build_source_db(
    path: Path,
    characters: list[dict],
    accounts: list[dict] | None = None,
    with_aux: bool = True,
) -> Path:
    """Create a HeavenMS-shaped source database at *path*.

    ``characters`` entries: name, level and optional job/fame/meso/gm/
    accountid/dog_points/fish_points. Each character gets its own account
    unless ``accountid`` is given.
    """
    aux = ",\n    dog_points INTEGER DEFAULT 0,\n    fish_points INTEGER DEFAULT 0" if with_aux else ""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SOURCE_DDL.format(aux_columns=aux))
        for acct in accounts or []:
            conn.execute(
                "INSERT INTO accounts (id, name, loggedin) VALUES (?, ?, ?)",
                (acct["id"], acct.get("name", f"acct{acct['id']}"), acct.get("loggedin", 0)),
            )
        for i, ch in enumerate(characters, start=1):
            cols = ["accountid", "name", "job", "level", "fame", "meso", "gm"]
            vals = [
                ch.get("accountid", i),
                ch["name"],
                ch.get("job", 0),
                ch.get("level", 1),
                ch.get("fame", 0),
                ch.get("meso", 0),
                ch.get("gm", 0),
            ]
            if with_aux:
                cols += ["dog_points", "fish_points"]
                vals += [ch.get("dog_points", 0), ch.get("fish_points", 0)]
            conn.execute(
                f"INSERT INTO characters ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                vals,
            )
        conn.commit()
    finally:
        conn.close()
    return path


# Three players and a GM, per the classic leaderboard scenario
DEFAULT_CHARACTERS = [
    {"name": "Alice", "level": 80, "fame": 10, "meso": 5_000, "dog_points": 3, "fish_points": 9},
    {"name": "Bob", "level": 95, "fame": 2, "meso": 9_000_000_000, "dog_points": 7, "fish_points": 1},
    {"name": "Cara", "level": 40, "fame": 30, "meso": 100, "dog_points": 0, "fish_points": 4},
    {"name": "GameMaster", "level": 200, "fame": 999, "meso": 10**12, "gm": 1},
]


@pytest.fixture
def make_source() -> Callable[..., Path]:
    """Factory for custom source databases."""
    return build_source_db


@pytest.fixture
def source_db_path(tmp_path: Path) -> Path:
    """A seeded source database file."""
    return build_source_db(
        tmp_path / "source.db",
        DEFAULT_CHARACTERS,
        accounts=[
            {"id": 1, "loggedin": 1},
            {"id": 2, "loggedin": 0},
            {"id": 3, "loggedin": 2},
            {"id": 4, "loggedin": 1},
        ],
    )


@pytest.fixture
def cache_db_path(tmp_path: Path) -> Path:
    return tmp_path / "cache.db"


@pytest.fixture
def source_pool(source_db_path: Path) -> Generator[ConnectionPool, None, None]:
    pool = ConnectionPool("source", str(source_db_path), size=2, timeout=1.0, read_only=True)
    yield pool
    pool.close()


@pytest.fixture
def cache_pool(cache_db_path: Path) -> Generator[ConnectionPool, None, None]:
    pool = ConnectionPool("cache", str(cache_db_path), size=3, timeout=1.0)
    yield pool
    pool.close()


@pytest_asyncio.fixture
async def reconciled_cache(cache_pool: ConnectionPool) -> AsyncGenerator[ConnectionPool, None]:
    """Cache pool whose schema has been reconciled."""
    await SchemaReconciler(cache_pool, logging.getLogger("test")).reconcile()
    yield cache_pool


def cache_rows(cache_db_path: Path, table: str = "characters_light") -> list[dict]:
    """Read a cache table directly, bypassing the pools."""
    conn = sqlite3.connect(cache_db_path)
    conn.row_factory = sqlite3.Row
    try:
        return [dict(r) for r in conn.execute(f"SELECT * FROM {table}").fetchall()]
    finally:
        conn.close()


@pytest.fixture
def read_cache_rows() -> Callable[..., list[dict]]:
    return cache_rows


# ── Components ──────────────────────────────────────────────

@pytest.fixture
def reconciler(cache_pool: ConnectionPool) -> SchemaReconciler:
    return SchemaReconciler(cache_pool, logging.getLogger("test"))


@pytest.fixture
def extractor(source_pool: ConnectionPool) -> SnapshotExtractor:
    return SnapshotExtractor(source_pool, limit=200, logger=logging.getLogger("test"))


@pytest.fixture
def probe(source_pool: ConnectionPool) -> OnlineCountProbe:
    return OnlineCountProbe(source_pool, logging.getLogger("test"))


@pytest.fixture
def replacer(cache_pool: ConnectionPool) -> CacheReplacer:
    return CacheReplacer(cache_pool, logging.getLogger("test"))


@pytest.fixture
def publisher(cache_pool: ConnectionPool, utc_clock: FakeUtc) -> StatusPublisher:
    return StatusPublisher(cache_pool, logging.getLogger("test"), clock=utc_clock)


@pytest.fixture
def orchestrator(
    reconciler: SchemaReconciler,
    replacer: CacheReplacer,
    publisher: StatusPublisher,
    extractor: SnapshotExtractor,
    probe: OnlineCountProbe,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        reconciler=reconciler,
        replacer=replacer,
        publisher=publisher,
        extractor=extractor,
        probe=probe,
        logger=logging.getLogger("test"),
    )


@pytest.fixture
def read_cache(mono_clock: FakeMonotonic) -> ReadCache:
    return ReadCache(ttl_seconds=30.0, clock=mono_clock)


@pytest.fixture
def query_service(
    cache_pool: ConnectionPool,
    read_cache: ReadCache,
    sample_config: LeaderboardConfig,
    utc_clock: FakeUtc,
) -> QueryService:
    return QueryService(
        cache_pool,
        read_cache,
        sample_config.leaderboard,
        stale_ms=sample_config.status.stale_ms,
        logger=logging.getLogger("test"),
        clock=utc_clock,
    )
