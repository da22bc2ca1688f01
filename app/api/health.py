"""
Health check endpoint.
"""

import asyncio

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from datetime import datetime

from app.api.deps import get_pipeline, get_store
from app.utils.config import get_settings
from app.utils.helpers import is_writable_dir
from domains.file_sync.store import FileRecordStore

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    storage_writable: bool
    feishu_configured: bool
    records_loaded: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: FileRecordStore = Depends(get_store),
    pipeline=Depends(get_pipeline),
):
    """
    Health check endpoint.

    Verifies:
    - API is running
    - Blob and state directories are writable
    - Feishu ingestion is configured
    """
    settings = get_settings()
    storage_writable = (
        await asyncio.to_thread(is_writable_dir, store.media_dir)
        and await asyncio.to_thread(is_writable_dir, store.state_file.parent)
    )
    feishu_configured = pipeline is not None

    return HealthResponse(
        status="healthy" if storage_writable and feishu_configured else "degraded",
        timestamp=datetime.now(),
        storage_writable=storage_writable,
        feishu_configured=feishu_configured,
        records_loaded=len(store),
        version=settings.api_version
    )
