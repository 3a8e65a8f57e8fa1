"""Data model shared by the sync pipeline and the query service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from .utils import isoformat_utc

# Canonical column order of the derived table; the first entry is the key.
SNAPSHOT_COLUMNS: tuple[str, ...] = (
    "name",
    "job",
    "level",
    "fame",
    "meso",
    "dog_points",
    "fish_points",
)


@dataclass(frozen=True)
class CharacterSnapshot:
    """One character row as extracted from the source store."""

    name: str
    job: int = 0
    level: int = 0
    fame: int = 0
    meso: int = 0
    dog_points: int = 0
    fish_points: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CharacterSnapshot:
        """Build from a sqlite3.Row / mapping, coercing NULLs to 0."""
        return cls(
            name=str(row["name"]),
            job=int(row["job"] or 0),
            level=int(row["level"] or 0),
            fame=int(row["fame"] or 0),
            meso=int(row["meso"] or 0),
            dog_points=int(row["dog_points"] or 0),
            fish_points=int(row["fish_points"] or 0),
        )

    def as_tuple(self) -> tuple:
        return (
            self.name,
            self.job,
            self.level,
            self.fame,
            self.meso,
            self.dog_points,
            self.fish_points,
        )


@dataclass(frozen=True)
class LeaderboardRow:
    """A derived leaderboard row with its 1-based position in the result."""

    rank: int
    name: str
    job: int
    level: int
    fame: int
    meso: int
    dog_points: int
    fish_points: int

    def to_payload(self) -> dict:
        return {
            "rank": self.rank,
            "name": self.name,
            "job": self.job,
            "level": self.level,
            "fame": self.fame,
            "meso": self.meso,
            "dogPoints": self.dog_points,
            "fishPoints": self.fish_points,
        }


@dataclass(frozen=True)
class ServerStatus:
    """The stored status record (row ``id = 1``)."""

    is_online: bool
    online_count: int
    updated_at: datetime | None


@dataclass(frozen=True)
class StatusView:
    """ServerStatus with staleness applied at read time."""

    is_online: bool
    online_count: int
    updated_at: datetime | None
    last_update_seconds: int | None

    @classmethod
    def offline(cls) -> StatusView:
        return cls(is_online=False, online_count=0, updated_at=None, last_update_seconds=None)

    @classmethod
    def from_status(cls, status: ServerStatus, now: datetime, stale_ms: int) -> StatusView:
        """Apply the staleness window: online needs the stored flag AND a fresh write."""
        if status.updated_at is None:
            return cls.offline()
        age_seconds = max((now - status.updated_at).total_seconds(), 0.0)
        fresh = age_seconds * 1000 <= stale_ms
        is_online = bool(status.is_online) and fresh
        return cls(
            is_online=is_online,
            online_count=max(int(status.online_count), 0) if is_online else 0,
            updated_at=status.updated_at,
            last_update_seconds=int(age_seconds),
        )

    def to_payload(self) -> dict:
        return {
            "isOnline": self.is_online,
            "onlineCount": self.online_count,
            "updatedAt": isoformat_utc(self.updated_at) if self.updated_at else None,
            "lastUpdateSeconds": self.last_update_seconds,
        }
