#!/usr/bin/env python
"""
POS Sync CLI

Operator entry point for running syncs and maintenance outside Prefect.
Usage:
    python scripts/sync_pos_data.py full --days 730
    python scripts/sync_pos_data.py incremental
    python scripts/sync_pos_data.py backfill
    python scripts/sync_pos_data.py full --location L1 --location L2
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config.logging import configure_logging, get_logger  # noqa: E402
from src.database.connection import close_database, get_db, get_session_factory, init_database  # noqa: E402
from src.database.models import SyncStatus  # noqa: E402
from src.ingestion.backfill import backfill_line_item_categories, link_orphan_line_items  # noqa: E402
from src.ingestion.historical_sync import HistoricalSyncEngine  # noqa: E402
from src.pos.client import PosApiClient  # noqa: E402

logger = get_logger("sync_pos_data")


async def run_sync(mode: str, days: Optional[int], location_ids: Optional[List[str]]) -> int:
    async with PosApiClient() as client:
        engine = HistoricalSyncEngine(client, get_session_factory())
        if mode == "full":
            report = await engine.run_full_sync(days=days, location_ids=location_ids)
        else:
            report = await engine.run_incremental_sync(location_ids=location_ids)

    for location in report.locations:
        logger.info(
            "Location result",
            location_id=location.location_id,
            status=location.status.value,
            pages=location.pages_fetched,
            orders_synced=location.orders_synced,
            orders_failed=location.orders_failed,
            error=location.error_message,
        )
    return 0 if report.status == SyncStatus.COMPLETED else 1


async def run_backfill() -> int:
    async with get_db() as db:
        orphans = await link_orphan_line_items(db)
        categories = await backfill_line_item_categories(db)
    logger.info(
        "Backfill finished",
        line_items_linked=orphans.line_items_linked,
        items_created=orphans.items_created,
        categories_filled=categories.total,
    )
    return 0


async def main(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    await init_database()
    try:
        if args.command == "backfill":
            return await run_backfill()
        return await run_sync(args.command, getattr(args, "days", None), args.location or None)
    finally:
        await close_database()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync POS data into the analytics replica")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    full = subparsers.add_parser("full", help="Historical sync over a lookback window")
    full.add_argument("--days", type=int, default=None, help="Lookback in days (default: SYNC_FULL_SYNC_DAYS)")
    full.add_argument("--location", action="append", help="Restrict to a location id (repeatable)")

    incremental = subparsers.add_parser("incremental", help="Sync since the last completed run")
    incremental.add_argument("--location", action="append", help="Restrict to a location id (repeatable)")

    backfill = subparsers.add_parser("backfill", help="Link orphan line items and fill categories")
    backfill.set_defaults(location=None)

    return parser


if __name__ == "__main__":
    sys.exit(asyncio.run(main(build_parser().parse_args())))
