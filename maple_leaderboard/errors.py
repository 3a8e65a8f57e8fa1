"""Typed errors for the sync pipeline and the read path."""

from __future__ import annotations


class LeaderboardError(Exception):
    """Base class for every error raised by maple-leaderboard."""


class ConnectivityError(LeaderboardError):
    """A store could not be reached (open failed, pool exhausted, closed)."""


class PoolTimeoutError(ConnectivityError):
    """No pooled connection became free within the checkout timeout."""


class SchemaError(LeaderboardError):
    """Cache schema reconciliation failed."""


class ExtractError(LeaderboardError):
    """Reading the snapshot from the source store failed."""


class ReplaceError(LeaderboardError):
    """Writing the snapshot into the cache store failed."""


class ProbeError(LeaderboardError):
    """Counting online sessions in the source store failed."""


class PublishError(LeaderboardError):
    """Writing the status record into the cache store failed."""


class ServiceError(LeaderboardError):
    """Read-path failure carrying the HTTP status the caller should see."""

    http_status: int = 500

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        if http_status is not None:
            self.http_status = http_status

    def to_payload(self) -> dict:
        return {"ok": False, "error": str(self)}


class QueryError(ServiceError):
    """The cache store failed while answering a read query."""

    http_status = 500
