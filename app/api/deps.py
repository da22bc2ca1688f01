"""
Request dependencies.

Components are built once in the application lifespan and kept on
app.state; routers reach them through these functions.
"""

from typing import Optional

from fastapi import Request

from domains.file_sync.dedup import EventDedupCache
from domains.file_sync.pipeline import FileIngestionPipeline
from domains.file_sync.store import FileRecordStore
from domains.file_sync.sweeper import StorageSweeper


def get_store(request: Request) -> FileRecordStore:
    return request.app.state.store


def get_dedup(request: Request) -> EventDedupCache:
    return request.app.state.dedup


def get_pipeline(request: Request) -> Optional[FileIngestionPipeline]:
    """Pipeline, or None when Feishu credentials are not configured."""
    return request.app.state.pipeline


def get_sweeper(request: Request) -> StorageSweeper:
    return request.app.state.sweeper
