"""maple-leaderboard — cached leaderboard and server-status sync service."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("maple-leaderboard")
except PackageNotFoundError:
    __version__ = "0.0.0"
