"""Tests for the online-count probe."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from maple_leaderboard.database import ConnectionPool
from maple_leaderboard.errors import ConnectivityError, ProbeError
from maple_leaderboard.probe import OnlineCountProbe


class TestProbe:
    """Online count from accounts.loggedin."""

    async def test_counts_logged_in_non_gm(self, probe: OnlineCountProbe):
        # accounts 1 and 3 are players online; 4 is the GM's account
        assert await probe.probe() == 2

    async def test_distinct_accounts(self, tmp_path: Path, make_source):
        path = make_source(
            tmp_path / "alts.db",
            [
                {"name": "Main", "level": 50, "accountid": 1},
                {"name": "Alt", "level": 10, "accountid": 1},
            ],
            accounts=[{"id": 1, "loggedin": 1}],
        )
        pool = ConnectionPool("source", str(path), read_only=True, timeout=0.5)
        try:
            assert await OnlineCountProbe(pool, logging.getLogger("test")).probe() == 1
        finally:
            pool.close()

    async def test_nobody_online(self, tmp_path: Path, make_source):
        path = make_source(
            tmp_path / "quiet.db",
            [{"name": "Idle", "level": 5}],
            accounts=[{"id": 1, "loggedin": 0}],
        )
        pool = ConnectionPool("source", str(path), read_only=True, timeout=0.5)
        try:
            assert await OnlineCountProbe(pool, logging.getLogger("test")).probe() == 0
        finally:
            pool.close()


class TestProbeFailures:

    async def test_missing_accounts_table(self, tmp_path: Path):
        path = tmp_path / "noacct.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE characters (name TEXT, accountid INTEGER, gm INTEGER)")
        conn.commit()
        conn.close()
        pool = ConnectionPool("source", str(path), read_only=True, timeout=0.5)
        try:
            with pytest.raises(ProbeError):
                await OnlineCountProbe(pool, logging.getLogger("test")).probe()
        finally:
            pool.close()

    async def test_unconvertible_result_is_probe_error(self, probe: OnlineCountProbe, source_pool: ConnectionPool):
        failing = AsyncMock(side_effect=ValueError("invalid literal for int() with base 10: 'x'"))
        with patch.object(source_pool, "run", failing):
            with pytest.raises(ProbeError, match="could not be converted"):
                await probe.probe()

    async def test_unreachable_source(self, tmp_path: Path):
        pool = ConnectionPool("source", str(tmp_path / "gone.db"), read_only=True, timeout=0.5)
        with pytest.raises(ConnectivityError):
            await OnlineCountProbe(pool, logging.getLogger("test")).probe()
