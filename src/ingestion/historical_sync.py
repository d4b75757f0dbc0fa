"""
Historical Sync Engine

Pulls orders from the POS search endpoint location by location, page by
page, and hands each page to the upsert engine. Supports:
- Full backfills over a fixed lookback window
- Incremental syncs that resume from the last completed run (with overlap)
- Per-location failure isolation
- A sync_runs audit row per run, which also drives incremental windows

Every page is committed before the next cursor is requested, so memory stays
bounded and an interrupted run keeps everything it already fetched.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import uuid

import structlog
from prometheus_client import Counter, Histogram
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import get_settings
from src.config.settings import Settings
from src.database.connection import session_scope
from src.database.models import SyncMode, SyncRun, SyncStatus
from src.ingestion.catalog import CatalogMapping, build_catalog_mapping
from src.ingestion.schemas import NORMALIZATION_ERRORS, OrderRecord, normalize_location, normalize_order
from src.ingestion.upsert import UpsertEngine
from src.pos.client import PosApiClient

logger = structlog.get_logger(__name__)


SYNC_PAGES = Counter(
    "pos_sync_pages_fetched_total",
    "Order search pages fetched by the sync engine",
    ["mode"],
)

SYNC_RUNS = Counter(
    "pos_sync_runs_total",
    "Completed sync runs by final status",
    ["mode", "status"],
)

SYNC_DURATION = Histogram(
    "pos_sync_duration_seconds",
    "Wall time of a sync run",
    ["mode"],
    buckets=[1, 5, 15, 60, 300, 900, 3600, 7200],
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LocationSyncResult(BaseModel):
    """Outcome of syncing one location"""
    location_id: str
    status: SyncStatus
    pages_fetched: int = 0
    orders_synced: int = 0
    orders_stale: int = 0
    orders_failed: int = 0
    error_message: Optional[str] = None


class SyncReport(BaseModel):
    """Result of a sync run"""
    sync_run_id: uuid.UUID
    mode: SyncMode
    status: SyncStatus
    window_start: datetime
    window_end: datetime
    locations: List[LocationSyncResult] = []
    error_message: Optional[str] = None
    duration_seconds: float = 0
    started_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def locations_synced(self) -> int:
        return sum(1 for loc in self.locations if loc.status != SyncStatus.FAILED)

    @property
    def locations_failed(self) -> int:
        return sum(1 for loc in self.locations if loc.status == SyncStatus.FAILED)

    @property
    def pages_fetched(self) -> int:
        return sum(loc.pages_fetched for loc in self.locations)

    @property
    def orders_synced(self) -> int:
        return sum(loc.orders_synced for loc in self.locations)

    @property
    def orders_failed(self) -> int:
        return sum(loc.orders_failed for loc in self.locations)


def _overall_status(locations: Sequence[LocationSyncResult]) -> SyncStatus:
    if not locations:
        return SyncStatus.COMPLETED
    failed = sum(1 for loc in locations if loc.status == SyncStatus.FAILED)
    if failed == len(locations):
        return SyncStatus.FAILED
    if failed or any(loc.status == SyncStatus.PARTIAL for loc in locations):
        return SyncStatus.PARTIAL
    return SyncStatus.COMPLETED


class HistoricalSyncEngine:
    """
    Sequential pull-based sync against the POS API.

    Example:
        async with PosApiClient() as client:
            engine = HistoricalSyncEngine(client, get_session_factory())
            report = await engine.run_incremental_sync()
    """

    def __init__(
        self,
        client: PosApiClient,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._clock = clock

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def run_full_sync(
        self,
        days: Optional[int] = None,
        location_ids: Optional[List[str]] = None,
    ) -> SyncReport:
        """Sync the last `days` days (defaults to the configured lookback)"""
        days = days if days is not None else self.settings.sync.full_sync_days
        window_end = self._clock()
        window_start = window_end - timedelta(days=days)
        return await self.sync(window_start, window_end, SyncMode.FULL, location_ids)

    async def run_incremental_sync(self, location_ids: Optional[List[str]] = None) -> SyncReport:
        """Sync from the end of the last completed run, minus the overlap"""
        window_start, window_end = await self.determine_incremental_window()
        return await self.sync(window_start, window_end, SyncMode.INCREMENTAL, location_ids)

    async def determine_incremental_window(self) -> Tuple[datetime, datetime]:
        """
        Compute the next incremental window.

        Starts at the last completed run's window end minus the overlap, or
        the default lookback when no run has completed yet.
        """
        now = self._clock()
        sync_settings = self.settings.sync

        async with session_scope(self.session_factory) as session:
            last_end = await session.scalar(
                select(SyncRun.window_end)
                .where(SyncRun.status == SyncStatus.COMPLETED.value)
                .order_by(SyncRun.window_end.desc())
                .limit(1)
            )

        if last_end is None:
            return now - timedelta(hours=sync_settings.incremental_default_hours), now

        window_start = _as_utc(last_end) - timedelta(hours=sync_settings.incremental_overlap_hours)
        return min(window_start, now), now

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def sync(
        self,
        window_start: datetime,
        window_end: datetime,
        mode: SyncMode = SyncMode.FULL,
        location_ids: Optional[List[str]] = None,
    ) -> SyncReport:
        """
        Sync every known location over [window_start, window_end].

        Args:
            window_start: Inclusive created_at lower bound
            window_end: Created_at upper bound
            mode: Recorded on the sync run
            location_ids: Restrict the run to these locations

        Returns:
            SyncReport with per-location results

        Raises:
            PosApiError / PosTransportError: the location listing failed
        """
        started = time.perf_counter()
        report = SyncReport(
            sync_run_id=uuid.uuid4(),
            mode=mode,
            status=SyncStatus.RUNNING,
            window_start=_as_utc(window_start),
            window_end=_as_utc(window_end),
            started_at=self._clock(),
        )
        await self._start_run(report)

        with structlog.contextvars.bound_contextvars(
            sync_run_id=str(report.sync_run_id), sync_mode=mode.value
        ):
            logger.info(
                "Starting POS sync",
                window_start=report.window_start.isoformat(),
                window_end=report.window_end.isoformat(),
            )

            try:
                catalog = await build_catalog_mapping(self.client)
                targets = await self._sync_locations(location_ids)

                for location_id in targets:
                    report.locations.append(
                        await self.sync_location(
                            location_id, report.window_start, report.window_end, catalog, mode
                        )
                    )

                report.status = _overall_status(report.locations)
            except Exception as e:
                report.status = SyncStatus.FAILED
                report.error_message = str(e)
                logger.error("POS sync failed", error=str(e), exc_info=True)
                raise
            finally:
                report.completed_at = self._clock()
                report.duration_seconds = time.perf_counter() - started
                await self._finish_run(report)
                SYNC_RUNS.labels(mode=mode.value, status=report.status.value).inc()
                SYNC_DURATION.labels(mode=mode.value).observe(report.duration_seconds)

            logger.info(
                "POS sync finished",
                status=report.status.value,
                locations_synced=report.locations_synced,
                locations_failed=report.locations_failed,
                pages_fetched=report.pages_fetched,
                orders_synced=report.orders_synced,
                orders_failed=report.orders_failed,
                duration_seconds=round(report.duration_seconds, 2),
            )

        return report

    async def _sync_locations(self, location_ids: Optional[List[str]]) -> List[str]:
        """Refresh location listings and return the ids to sync, in listing order"""
        raw_locations = await self.client.list_locations()
        records = [normalize_location(raw) for raw in raw_locations if raw.get("id")]

        async with session_scope(self.session_factory) as session:
            await UpsertEngine(session).upsert_locations(records)

        ids = [record.external_location_id for record in records]
        if location_ids:
            wanted = set(location_ids)
            ids = [location_id for location_id in ids if location_id in wanted]

        logger.info("Locations to sync", count=len(ids))
        return ids

    async def sync_location(
        self,
        location_id: str,
        window_start: datetime,
        window_end: datetime,
        catalog: CatalogMapping,
        mode: SyncMode = SyncMode.FULL,
    ) -> LocationSyncResult:
        """
        Page through one location's orders.

        Failures are recorded on the result, never raised, so the caller can
        move on to the next location.
        """
        result = LocationSyncResult(location_id=location_id, status=SyncStatus.RUNNING)
        states = self.settings.sync.order_states

        with structlog.contextvars.bound_contextvars(location_id=location_id):
            try:
                cursor: Optional[str] = None
                while True:
                    page = await self.client.search_orders(
                        location_id, window_start, window_end, states, cursor=cursor
                    )
                    result.pages_fetched += 1
                    SYNC_PAGES.labels(mode=mode.value).inc()

                    records = self._normalize_page(page.get("orders") or [], location_id, result)
                    if records:
                        # Committed before the next cursor is requested
                        async with session_scope(self.session_factory) as session:
                            upserted = await UpsertEngine(session, catalog).apply_batch(
                                records, continue_on_error=True
                            )
                        result.orders_synced += upserted.orders_applied
                        result.orders_stale += upserted.orders_stale
                        result.orders_failed += upserted.orders_failed

                    logger.info(
                        "Order page synced",
                        page=result.pages_fetched,
                        orders_in_page=len(records),
                        orders_synced=result.orders_synced,
                    )

                    cursor = page.get("cursor")
                    if not cursor:
                        break

                result.status = SyncStatus.PARTIAL if result.orders_failed else SyncStatus.COMPLETED
            except Exception as e:
                result.status = SyncStatus.FAILED
                result.error_message = str(e)
                logger.error(
                    "Location sync failed, continuing with next location",
                    error=str(e),
                    error_type=type(e).__name__,
                    pages_fetched=result.pages_fetched,
                )

        return result

    def _normalize_page(
        self,
        raw_orders: List[Dict[str, Any]],
        location_id: str,
        result: LocationSyncResult,
    ) -> List[OrderRecord]:
        records = []
        for raw in raw_orders:
            try:
                records.append(
                    normalize_order(
                        raw,
                        default_currency=self.settings.pos_api.default_currency,
                        location_id=location_id,
                    )
                )
            except NORMALIZATION_ERRORS as e:
                result.orders_failed += 1
                logger.error(
                    "Skipping malformed order",
                    external_order_id=raw.get("id") if isinstance(raw, dict) else None,
                    error=str(e),
                )
        return records

    # -------------------------------------------------------------------------
    # Sync run bookkeeping
    # -------------------------------------------------------------------------

    async def _start_run(self, report: SyncReport) -> None:
        async with session_scope(self.session_factory) as session:
            session.add(
                SyncRun(
                    id=report.sync_run_id,
                    mode=report.mode.value,
                    status=SyncStatus.RUNNING.value,
                    window_start=report.window_start,
                    window_end=report.window_end,
                    started_at=report.started_at,
                )
            )

    async def _finish_run(self, report: SyncReport) -> None:
        async with session_scope(self.session_factory) as session:
            run = await session.get(SyncRun, report.sync_run_id)
            if run is None:
                logger.warning("Sync run row missing, not updated")
                return
            run.status = report.status.value
            run.locations_synced = report.locations_synced
            run.locations_failed = report.locations_failed
            run.pages_fetched = report.pages_fetched
            run.orders_synced = report.orders_synced
            run.orders_failed = report.orders_failed
            run.error_message = report.error_message or self._location_errors(report)
            run.completed_at = report.completed_at

    @staticmethod
    def _location_errors(report: SyncReport) -> Optional[str]:
        errors = [
            f"{loc.location_id}: {loc.error_message}"
            for loc in report.locations
            if loc.error_message
        ]
        return "; ".join(errors) or None
