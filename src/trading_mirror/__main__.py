"""Command-line entry point: ``python -m trading_mirror``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from trading_mirror.app import MirrorApp
from trading_mirror.config import Settings, get_settings
from trading_mirror.providers.models import TradingProvider
from trading_mirror.valuation.reconstructor import build_portfolio_context

logger = logging.getLogger(__name__)

PROVIDER_CHOICES = ["auto", *[p.value for p in TradingProvider]]


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="trading-mirror",
        description="Mirror Polymarket and Kalshi account state into a local database",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the mirror tables")

    sync = subparsers.add_parser("sync", help="Sync the local user's account now")
    sync.add_argument("--provider", choices=PROVIDER_CHOICES, default="auto")
    sync.add_argument("--no-lease", action="store_true", help="Do not take a Redis sync lease")

    portfolio = subparsers.add_parser("portfolio", help="Print the mirrored portfolio summary")
    portfolio.add_argument("--provider", choices=PROVIDER_CHOICES, default="auto")
    portfolio.add_argument("--context", action="store_true", help="Print assistant context text instead")

    subparsers.add_parser("sweep", help="Mark stale running sync runs as errors")
    return parser


def _preference(value: str) -> TradingProvider | str:
    return "auto" if value == "auto" else TradingProvider(value)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, default=str, indent=2, sort_keys=True))


async def async_main(args: argparse.Namespace, settings: Settings) -> int:
    """Run one command and return the exit code."""
    use_redis = args.command == "sync" and not args.no_lease
    async with MirrorApp(settings, use_redis=use_redis) as app:
        user_id = settings.local_user_id

        if args.command == "init-db":
            await app.db_manager.init_schema_async()
            logger.info("Mirror schema created")
            return 0

        if args.command == "sync":
            outcome = await app.orchestrator.sync_now(user_id, _preference(args.provider))  # type: ignore[arg-type]
            _print_json(outcome.to_dict())
            return 0 if outcome.ok or outcome.provider is None else 1

        if args.command == "portfolio":
            if args.context:
                print(await build_portfolio_context(app.store, user_id))
                return 0
            summary = await app.reconstructor.get_portfolio(user_id, _preference(args.provider))  # type: ignore[arg-type]
            _print_json(summary.to_dict())
            return 0

        if args.command == "sweep":
            reaped = await app.orchestrator.sweep_stale_runs()
            _print_json({"reaped": reaped})
            return 0

    return 2


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = create_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command in ("sync", "portfolio", "sweep"):
        try:
            settings.validate_requirements(command=args.command)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    try:
        return asyncio.run(async_main(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
