"""
Prefect Workflow Orchestration - POS Sync

Scheduled flows that keep the replica in line with the POS:
- Full historical sync (manual / weekly)
- Incremental sync (hourly, overlapping the previous window)
- Replica maintenance (orphan linking and category backfill)
"""

from typing import List, Optional

from prefect import flow, task, get_run_logger

from src.config import get_settings
from src.database.connection import close_database, get_db, get_session_factory, init_database
from src.ingestion.backfill import backfill_line_item_categories, link_orphan_line_items
from src.ingestion.historical_sync import HistoricalSyncEngine, SyncReport
from src.database.models import SyncMode
from src.pos.client import PosApiClient


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_pos_sync",
    description="Pull orders from the POS into the replica",
    retries=1,
    retry_delay_seconds=300,
)
async def run_pos_sync(
    mode: str,
    days: Optional[int] = None,
    location_ids: Optional[List[str]] = None,
) -> dict:
    """Run one sync and return its report"""
    logger = get_run_logger()

    async with PosApiClient() as client:
        engine = HistoricalSyncEngine(client, get_session_factory())
        if mode == SyncMode.FULL.value:
            report: SyncReport = await engine.run_full_sync(days=days, location_ids=location_ids)
        else:
            report = await engine.run_incremental_sync(location_ids=location_ids)

    logger.info(
        f"Sync {report.sync_run_id} {report.status.value}: "
        f"{report.orders_synced} orders over {report.locations_synced} locations, "
        f"{report.locations_failed} locations failed"
    )

    return {
        "sync_run_id": str(report.sync_run_id),
        "status": report.status.value,
        "window_start": report.window_start.isoformat(),
        "window_end": report.window_end.isoformat(),
        "locations_synced": report.locations_synced,
        "locations_failed": report.locations_failed,
        "pages_fetched": report.pages_fetched,
        "orders_synced": report.orders_synced,
        "orders_failed": report.orders_failed,
    }


@task(
    name="link_orphans",
    description="Link line items that have no item",
    retries=2,
    retry_delay_seconds=30,
)
async def link_orphans() -> dict:
    logger = get_run_logger()
    async with get_db() as db:
        result = await link_orphan_line_items(db)
    logger.info(f"Linked {result.line_items_linked} orphan line items")
    return {
        "names_processed": result.names_processed,
        "items_created": result.items_created,
        "line_items_linked": result.line_items_linked,
    }


@task(
    name="backfill_categories",
    description="Fill missing line item categories",
    retries=2,
    retry_delay_seconds=30,
)
async def backfill_categories() -> dict:
    logger = get_run_logger()
    async with get_db() as db:
        result = await backfill_line_item_categories(db)
    logger.info(f"Backfilled {result.total} line item categories")
    return {"from_items": result.from_items, "from_siblings": result.from_siblings}


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="full_pos_sync",
    description="Historical POS order sync over a fixed lookback window",
)
async def full_pos_sync(days: Optional[int] = None, location_ids: Optional[List[str]] = None) -> dict:
    """
    Full historical sync.

    Defaults to the configured lookback (two years).
    """
    logger = get_run_logger()
    days = days if days is not None else get_settings().sync.full_sync_days
    logger.info(f"Starting full POS sync over the last {days} days")

    await init_database()
    try:
        result = await run_pos_sync(SyncMode.FULL.value, days=days, location_ids=location_ids)
        result["maintenance"] = await _maintenance_steps()
    finally:
        await close_database()
    return result


@flow(
    name="incremental_pos_sync",
    description="Incremental POS sync from the last completed run",
)
async def incremental_pos_sync(location_ids: Optional[List[str]] = None) -> dict:
    """Incremental sync, meant to run hourly"""
    await init_database()
    try:
        return await run_pos_sync(SyncMode.INCREMENTAL.value, location_ids=location_ids)
    finally:
        await close_database()


@flow(
    name="replica_maintenance",
    description="Repair line items written in degraded mode",
)
async def replica_maintenance() -> dict:
    """Link orphan line items, then backfill their categories"""
    await init_database()
    try:
        return await _maintenance_steps()
    finally:
        await close_database()


async def _maintenance_steps() -> dict:
    # Linking first so the category backfill can read from the linked items
    return {
        "orphans": await link_orphans(),
        "categories": await backfill_categories(),
    }


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio

    asyncio.run(incremental_pos_sync())
