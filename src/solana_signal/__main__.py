"""Command-line entry point.

Usage:
    python -m solana_signal run          # service + HTTP API
    python -m solana_signal poll-once    # one liquidity cycle, print snapshot JSON
    python -m solana_signal status       # read the snapshot mirrored to Redis
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import uvicorn
from redis.asyncio import Redis

from solana_signal.api import create_app
from solana_signal.config import Settings, get_settings
from solana_signal.ingestor.snapshot import SnapshotMirror
from solana_signal.service import SignalService

logger = logging.getLogger("solana_signal")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(settings: Settings, override: str | None) -> None:
    level = getattr(logging, override) if override else settings.get_logging_level()
    logging.basicConfig(level=level, format=LOG_FORMAT)


async def _serve(settings: Settings) -> None:
    service = SignalService(settings)
    app = create_app(service)
    config = uvicorn.Config(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_config=None,
    )
    await uvicorn.Server(config).serve()


async def _poll_once(settings: Settings) -> int:
    service = SignalService(settings)
    await service.start(schedule=False)
    try:
        await service.poll_liquidity_once()
    finally:
        await service.stop()
    print(json.dumps(service.get_snapshot(), indent=2))
    return 1 if service.snapshot.all_failed else 0


async def _status(settings: Settings) -> int:
    if not settings.redis.url:
        print("REDIS_URL is not set; no mirrored snapshot to read", file=sys.stderr)
        return 2
    redis = Redis.from_url(settings.redis.url)
    try:
        snapshot = await SnapshotMirror(redis, key=settings.redis.snapshot_key).load()
    finally:
        await redis.aclose()
    if snapshot is None:
        print("No snapshot has been mirrored yet", file=sys.stderr)
        return 1
    print(snapshot.status_line())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solana_signal",
        description="Liquidity failover poller and wallet win-rate tracker",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override LOG_LEVEL",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the service and the HTTP API")
    sub.add_parser("poll-once", help="Run one liquidity cycle and print the snapshot")
    sub.add_parser("status", help="Print the snapshot mirrored to Redis")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    _configure_logging(settings, args.log_level)
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        if args.command == "run":
            asyncio.run(_serve(settings))
            return 0
        if args.command == "poll-once":
            return asyncio.run(_poll_once(settings))
        return asyncio.run(_status(settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
