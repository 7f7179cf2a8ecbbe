"""CLI entry point for the up/down signal bot.

Usage::

    python3 -m updown_bot --coin BTC
    python3 -m updown_bot --coin ETH --poll-interval 1.0 --weight 0.6
    python3 -m updown_bot --slug btc-updown-15m-1700000000 --duration-minutes 15
    python3 -m updown_bot --live-trading --no-dry-run
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace

from updown_bot.config import COIN_PROFILES, UpDownSettings, load_settings
from updown_bot.engine import SignalEngine
from updown_bot.logging_setup import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python3 -m updown_bot",
        description="Signals and scalp/hold strategy for 15-minute crypto up/down markets",
    )
    parser.add_argument(
        "--coin", type=str.upper, choices=sorted(COIN_PROFILES), default=None,
        help="Underlying to track (default: BTC)",
    )
    parser.add_argument(
        "--slug", type=str, default=None,
        help="Fixed market slug (default: latest live market in the coin's series)",
    )
    parser.add_argument(
        "--poll-interval", type=float, default=None,
        help="Seconds between ticks (default: 0.7)",
    )
    parser.add_argument(
        "--weight", type=float, default=None,
        help="Weight on the quant probability when blending (default: 0.7)",
    )
    parser.add_argument(
        "--live-trading", action="store_true",
        help="Enable order submission (dry-run unless --no-dry-run)",
    )
    parser.add_argument(
        "--no-dry-run", action="store_true",
        help="Actually send orders when trading is enabled",
    )
    parser.add_argument(
        "--signals-csv", type=str, default=None,
        help="Path of the per-tick signal CSV (empty string disables)",
    )
    parser.add_argument(
        "--duration-minutes", type=float, default=0,
        help="How long to run in minutes (0 = indefinitely)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    return parser


def _apply_overrides(settings: UpDownSettings, args: argparse.Namespace) -> UpDownSettings:
    """Apply CLI argument overrides to settings."""
    overrides = {}

    if args.coin is not None:
        overrides["coin"] = args.coin
    if args.slug is not None:
        overrides["market_slug"] = args.slug
    if args.poll_interval is not None:
        overrides["poll_interval_seconds"] = args.poll_interval
    if args.weight is not None:
        overrides["model_weight"] = args.weight
    if args.live_trading:
        overrides["trading_enabled"] = True
    if args.no_dry_run:
        overrides["dry_run"] = False
    if args.signals_csv is not None:
        overrides["signals_csv"] = args.signals_csv
    if args.verbose:
        overrides["log_level"] = "DEBUG"

    if overrides:
        settings = replace(settings, **overrides)
    return settings


async def _async_main(settings: UpDownSettings, duration_minutes: float) -> None:
    engine = SignalEngine.from_settings(settings)
    try:
        await engine.run(duration_minutes=duration_minutes)
    finally:
        await engine.aclose()


def main() -> None:
    """CLI entry point."""
    args = _build_parser().parse_args()
    settings = _apply_overrides(load_settings(), args)
    configure_logging(settings.log_level)

    try:
        asyncio.run(_async_main(settings, args.duration_minutes))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
