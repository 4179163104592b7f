from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any

from dex_arbitrage.bootstrap import build_app_components
from dex_arbitrage.config import find_config_path
from dex_arbitrage.core.exceptions import ConfigurationError

log = logging.getLogger("dex_arbitrage.system")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Two-venue DEX arbitrage scanner")
    parser.add_argument("--config", help="path to config.yaml")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    parser.add_argument(
        "--live",
        action="store_true",
        help="sign and broadcast trades (default is dry run)",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    overrides: dict[str, Any] = {}
    if args.live:
        overrides["wallet"] = {"dry_run": False}

    try:
        components = build_app_components(args.config, overrides=overrides)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.ERROR)
        log.error("Startup failed: %s", exc)
        return 2

    settings = components.settings
    scan_loop = components.scan_loop
    log.info("Using configuration from %s", args.config or find_config_path() or "built-in defaults")
    log.info(
        "Starting arbitrage bot on %s with venues %s (%s)",
        settings.chain.name,
        ", ".join(venue.name for venue in settings.venues),
        "dry run" if settings.wallet.dry_run else "live",
    )

    def _handle_stop(*_: Any) -> None:
        scan_loop.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_stop)
        except NotImplementedError:
            pass

    try:
        await scan_loop.run(max_passes=1 if args.once else None)
    finally:
        await components.close()
        log.info("Shutdown complete")
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        ...


if __name__ == "__main__":
    run()
