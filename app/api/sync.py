"""
Sync pull endpoints used by the phone app.

The puller:
1. Lists pending files
2. Downloads each blob by key
3. Reports COMPLETED or FAILED, which deletes the local copy
"""

import asyncio
import os
from typing import AsyncIterator, BinaryIO, List
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from loguru import logger

from app.api.deps import get_store
from app.models.schemas import (
    REPORTABLE_STATUSES,
    ErrorResponse,
    FileRecord,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from app.utils.errors import InvalidInput, IOFailure, NotFound
from domains.file_sync.store import FileRecordStore

router = APIRouter()

CHUNK_SIZE = 64 * 1024


@router.get("/files", response_model=List[FileRecord])
async def get_files(store: FileRecordStore = Depends(get_store)):
    """
    List files waiting to be pulled.

    Returns:
        Pending file records, freshly read from disk
    """
    pending = await store.get_pending()
    logger.debug(f"Serving {len(pending)} pending files")
    return pending


async def _iter_blob(fh: BinaryIO, file_key: str) -> AsyncIterator[bytes]:
    """Yield a blob in chunks; read errors abort the response."""
    try:
        while True:
            chunk = await asyncio.to_thread(fh.read, CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    except OSError as e:
        logger.error(f"Failed to stream file {file_key}: {e}")
        raise
    except asyncio.CancelledError:
        # Client went away; the record stays PENDING and can be pulled again
        logger.debug(f"Download of {file_key} aborted by client")
        raise
    finally:
        fh.close()


@router.get(
    "/download/{file_key}",
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def download_file(file_key: str, store: FileRecordStore = Depends(get_store)):
    """
    Stream the bytes of a pending file.

    Args:
        file_key: Key of the file record

    Returns:
        Raw byte stream
    """
    record = store.get(file_key)
    if record is None:
        raise NotFound(f'File with key "{file_key}" not found.')
    if record.status.is_terminal:
        raise NotFound(f'File with key "{file_key}" is {record.status.value} and was cleaned up.')

    blob_path = store.get_blob_path(file_key)
    try:
        fh = await asyncio.to_thread(open, blob_path, "rb")
    except FileNotFoundError:
        raise NotFound(f'File with key "{file_key}" has no local copy.')
    except OSError as e:
        logger.error(f"Failed to read file from disk: {e}")
        raise IOFailure(f"Failed to read file from disk: {e}", cause=e) from e

    size = (await asyncio.to_thread(os.fstat, fh.fileno())).st_size
    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(record.file_name)}",
        "Content-Length": str(size),
    }
    logger.info(f"Streaming {record.file_name} ({size} bytes)")

    return StreamingResponse(
        _iter_blob(fh, file_key),
        media_type="application/octet-stream",
        headers=headers,
    )


@router.post(
    "/status",
    response_model=StatusUpdateResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_status(body: StatusUpdateRequest, store: FileRecordStore = Depends(get_store)):
    """
    Apply a status report from the puller.

    Only COMPLETED and FAILED are accepted; both delete the local copy.
    """
    if body.status not in REPORTABLE_STATUSES:
        raise InvalidInput(
            f"Status must be one of {sorted(s.value for s in REPORTABLE_STATUSES)}, got {body.status.value}"
        )

    record = await store.update_status(body.file_key, body.status)
    if record is None:
        raise NotFound(f'File with key "{body.file_key}" not found.')

    return StatusUpdateResponse(
        message=f"Status for file {body.file_key} updated to {body.status.value}",
        record=record,
    )
