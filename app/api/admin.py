"""
Admin endpoints for storage management.

Includes:
- Record and storage statistics
- Manual storage sweep (expiry + orphan cleanup)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from loguru import logger

from app.api.deps import get_dedup, get_store, get_sweeper
from app.models.schemas import StoreStats, SweepReport
from app.utils.helpers import format_bytes
from domains.file_sync.dedup import EventDedupCache
from domains.file_sync.store import FileRecordStore
from domains.file_sync.sweeper import StorageSweeper

router = APIRouter()


class StatsResponse(BaseModel):
    """Storage statistics response."""
    records: StoreStats
    pending_storage: str
    dedup_entries: int


@router.get("/stats", response_model=StatsResponse)
async def get_system_stats(
    store: FileRecordStore = Depends(get_store),
    dedup: EventDedupCache = Depends(get_dedup),
):
    """
    Get storage statistics.

    Returns:
        Record counts by status, pending blob usage, dedup cache size
    """
    stats = await store.stats()
    return StatsResponse(
        records=stats,
        pending_storage=format_bytes(stats.pending_bytes),
        dedup_entries=len(dedup),
    )


@router.post("/sweep", response_model=SweepReport)
async def trigger_sweep(
    expiry_hours: Optional[float] = Query(None, ge=0, description="Override the expiry age; 0 skips expiry"),
    sweeper: StorageSweeper = Depends(get_sweeper),
):
    """
    Run the storage sweep now.

    Expires stale pending files, then removes orphaned blobs and abandoned
    staging downloads. Runs inside the API process, so it is serialized with
    ingestion and status reports by the store lock.

    Returns:
        Sweep report
    """
    logger.info("Manual storage sweep triggered")
    return await sweeper.run_once(expiry_hours)
