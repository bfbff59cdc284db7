"""
backend/oddsline/cli.py

Purpose:
    One-shot runs of the pipeline tasks outside the scheduler, for cron hosts
    and manual backfills.

Usage:
    cd backend && python -m oddsline.cli odds
    cd backend && python -m oddsline.cli lifecycle
    cd backend && python -m oddsline.cli scores
    cd backend && python -m oddsline.cli settle --lookback-days 7
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any

import oddsline.database as _db
from oddsline.middleware.logging import setup_logging

logger = logging.getLogger("oddsline.cli")


async def _run(command: str, args: argparse.Namespace) -> Any:
    from oddsline.providers.odds_api import odds_feed

    await _db.connect_db()
    try:
        if command == "odds":
            from oddsline.workers.odds_poller import poll_odds
            return await poll_odds(force=True)
        if command == "lifecycle":
            from oddsline.services.lifecycle_service import run_lifecycle_sweep
            return await run_lifecycle_sweep()
        if command == "scores":
            from oddsline.workers.scores_poller import poll_scores
            return await poll_scores()
        if command == "settle":
            from oddsline.services.settlement_service import settle_pending_results
            return await settle_pending_results(lookback_days=args.lookback_days)
        raise ValueError(f"Unknown command {command!r}")
    finally:
        await odds_feed.aclose()
        await _db.close_db()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="oddsline", description="Run one pipeline task and exit.")
    parser.add_argument("command", choices=["odds", "lifecycle", "scores", "settle"])
    parser.add_argument("--lookback-days", type=int, default=None, help="settle: completed results window")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    result = asyncio.run(_run(args.command, args))
    print(json.dumps(result, default=str, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
