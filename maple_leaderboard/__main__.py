"""CLI entry point for maple-leaderboard."""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .main import LeaderboardApp


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Maple Leaderboard — cached leaderboard & status sync service")
    parser.add_argument("--config", type=str, help="Path to config.yaml (falls back to environment variables)")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Validate config and exit without starting")
    parser.add_argument("--once", action="store_true", help="Run a single sync cycle and exit")
    return parser.parse_args(argv)


def resolve_config(config_path: str | None, logger: logging.Logger):
    """Load the YAML config if one is found, otherwise build it from the environment."""
    from .config import config_from_env, load_config

    if not config_path:
        for candidate in [
            "/etc/maple-leaderboard/config.yaml",
            "./config.yaml",
        ]:
            if Path(candidate).exists():
                config_path = candidate
                break
    if config_path:
        logger.info("Loading config from %s", config_path)
        return load_config(config_path)
    logger.info("No config file found; using environment variables")
    return config_from_env()


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("leaderboard")

    try:
        config = resolve_config(args.config, logger)
    except Exception as e:
        logger.error("Config validation failed: %s", e)
        return 1

    if args.validate_config:
        logger.info("Config is valid.")
        return 0

    app = LeaderboardApp(config)

    if args.once:
        report = await app.run_once()
        return 0 if report is not None and report.published else 1

    # Signal handling (Unix only; Windows uses KeyboardInterrupt)
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()
    return 0


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
