"""Configuration system for maple-leaderboard.

Pydantic models with the documented defaults, loaded either from a YAML file
(with ``${VAR}`` expansion) or from flat environment variables.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════
#  Stores
# ═══════════════════════════════════════════════════════════════

class StoreConfig(BaseModel):
    """One SQLite store reached through a bounded connection pool."""
    path: str = ""
    pool_size: int = 5
    connect_timeout: float = Field(default=10.0, description="Seconds to wait for a connection")


class CacheStoreConfig(StoreConfig):
    path: str = "leaderboard_cache.db"


# ═══════════════════════════════════════════════════════════════
#  Sync pipeline
# ═══════════════════════════════════════════════════════════════

class SyncConfig(BaseModel):
    enabled: bool = True
    interval_seconds: float = 60
    cron: str | None = Field(default=None, description="Cron expression; overrides interval_seconds")
    extract_limit: int = 200
    run_on_start: bool = True


class StatusConfig(BaseModel):
    stale_ms: int = Field(default=900_000, description="Max status age before it reads as offline")


# ═══════════════════════════════════════════════════════════════
#  Read side
# ═══════════════════════════════════════════════════════════════

class LeaderboardSettings(BaseModel):
    default_limit: int = 50
    max_limit: int = 200
    cache_ttl_ms: int = 30_000
    max_filter_length: int = 50


class ApiConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 10000
    cors_origin: str = "*"


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class LeaderboardConfig(BaseModel):
    """Full service config."""

    source: StoreConfig = Field(default_factory=StoreConfig)
    cache: CacheStoreConfig = Field(default_factory=CacheStoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    leaderboard: LeaderboardSettings = Field(default_factory=LeaderboardSettings)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @property
    def schema_only(self) -> bool:
        """No source store configured: reconcile and publish offline only."""
        return not self.source.path


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def _drop_empty(obj: Any) -> Any:
    """Remove keys whose expanded value is an empty string so defaults apply."""
    if isinstance(obj, dict):
        return {k: _drop_empty(v) for k, v in obj.items() if v != ""}
    return obj


def load_config(config_path: str) -> LeaderboardConfig:
    """Load and validate YAML config file into LeaderboardConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _drop_empty(_expand_env_vars(raw))
    return LeaderboardConfig(**raw)


# (section, key) for every supported environment variable
ENV_VARS: dict[str, tuple[str, str]] = {
    "SOURCE_DB_PATH": ("source", "path"),
    "SOURCE_DB_POOL_SIZE": ("source", "pool_size"),
    "SOURCE_DB_CONNECT_TIMEOUT": ("source", "connect_timeout"),
    "CACHE_DB_PATH": ("cache", "path"),
    "CACHE_DB_POOL_SIZE": ("cache", "pool_size"),
    "CACHE_DB_CONNECT_TIMEOUT": ("cache", "connect_timeout"),
    "SYNC_INTERVAL_SECONDS": ("sync", "interval_seconds"),
    "SYNC_CRON": ("sync", "cron"),
    "SYNC_EXTRACT_LIMIT": ("sync", "extract_limit"),
    "STATUS_STALE_MS": ("status", "stale_ms"),
    "CACHE_TTL_MS": ("leaderboard", "cache_ttl_ms"),
    "LEADERBOARD_DEFAULT_LIMIT": ("leaderboard", "default_limit"),
    "LEADERBOARD_MAX_LIMIT": ("leaderboard", "max_limit"),
    "API_HOST": ("api", "host"),
    "PORT": ("api", "port"),
    "CORS_ORIGIN": ("api", "cors_origin"),
}


def config_from_env(environ: Mapping[str, str] | None = None) -> LeaderboardConfig:
    """Build LeaderboardConfig from flat environment variables.

    Unset or empty variables leave the model default in place.
    """
    env = os.environ if environ is None else environ
    raw: dict[str, dict[str, str]] = {}
    for var, (section, key) in ENV_VARS.items():
        value = env.get(var)
        if value is None or value.strip() == "":
            continue
        raw.setdefault(section, {})[key] = value.strip()
    return LeaderboardConfig(**raw)
