"""
Sync Status Endpoints

Read-only view of recent sync runs and replica sizes for operators.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.connection import get_db_dependency
from src.database.models import Item, LineItem, Location, Order, SyncRun

router = APIRouter()


class SyncRunSummary(BaseModel):
    """One sync_runs row"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    mode: str
    status: str
    window_start: datetime
    window_end: datetime
    locations_synced: int
    locations_failed: int
    pages_fetched: int
    orders_synced: int
    orders_failed: int
    error_message: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]


class SyncStatusResponse(BaseModel):
    """Recent runs plus replica row counts"""
    last_completed_at: Optional[datetime]
    runs: List[SyncRunSummary]
    row_counts: Dict[str, int]


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs"),
    db: AsyncSession = Depends(get_db_dependency),
) -> SyncStatusResponse:
    """Most recent sync runs, newest first"""
    runs = (
        await db.execute(
            select(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit)
        )
    ).scalars().all()

    last_completed_at = await db.scalar(
        select(func.max(SyncRun.completed_at)).where(SyncRun.status == "completed")
    )

    row_counts = {}
    for name, model in (
        ("locations", Location),
        ("items", Item),
        ("orders", Order),
        ("line_items", LineItem),
    ):
        row_counts[name] = await db.scalar(select(func.count()).select_from(model)) or 0

    return SyncStatusResponse(
        last_completed_at=last_completed_at,
        runs=[SyncRunSummary.model_validate(run) for run in runs],
        row_counts=row_counts,
    )
