"""
Feishu event callback endpoints.

Feishu pushes `im.message.receive_v1` events here. The callback is answered
immediately and the file is processed as a background task, so slow downloads
never make Feishu redeliver the event.
"""

from typing import Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from loguru import logger

from app.api.deps import get_pipeline
from app.models.schemas import InboundFileEvent, OperationStatus, UnsupportedMessage
from app.utils.config import get_settings
from app.utils.errors import InvalidInput
from domains.feishu.events import extract_token, is_url_verification, parse_message_event
from domains.file_sync.pipeline import FileIngestionPipeline

router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def feishu_status():
    """Liveness text for the Feishu module."""
    return "Feishu module is active and ready."


async def process_message(
    pipeline: FileIngestionPipeline,
    item: Union[InboundFileEvent, UnsupportedMessage],
):
    """Run one parsed message through the pipeline, replying on any failure."""
    try:
        if isinstance(item, InboundFileEvent):
            await pipeline.handle(item)
        else:
            await pipeline.handle_unsupported(item)
    except Exception as e:
        await pipeline.report_error(item.chat_id, e)


def _chat_id_of(payload: dict) -> Optional[str]:
    event = payload.get("event") or {}
    return (event.get("message") or {}).get("chat_id")


@router.post("/events")
async def receive_event(
    request: Request,
    background_tasks: BackgroundTasks,
    pipeline: Optional[FileIngestionPipeline] = Depends(get_pipeline),
):
    """
    Receive a Feishu event callback.

    Handles:
    - url_verification handshakes
    - im.message.receive_v1 messages (files are ingested, text gets a hint)
    """
    try:
        payload = await request.json()
    except ValueError:
        raise InvalidInput("Event body is not valid JSON")
    if not isinstance(payload, dict):
        raise InvalidInput("Event body must be a JSON object")

    expected_token = get_settings().feishu_verification_token
    if expected_token and extract_token(payload) != expected_token:
        logger.warning("Rejected Feishu callback with a wrong verification token")
        raise HTTPException(status_code=403, detail="Verification token mismatch")

    if is_url_verification(payload):
        return {"challenge": payload.get("challenge")}

    if pipeline is None:
        raise HTTPException(status_code=503, detail="Feishu credentials are not configured")

    try:
        item = parse_message_event(payload)
    except InvalidInput as e:
        logger.warning(f"Rejected Feishu event: {e.message}")
        chat_id = _chat_id_of(payload)
        if chat_id:
            background_tasks.add_task(pipeline.report_error, chat_id, e)
        # Redelivering a malformed event would not help, so acknowledge it
        return OperationStatus(status="rejected", message=e.message)

    if item is None:
        return OperationStatus(status="ignored", message="Event type not handled")

    background_tasks.add_task(process_message, pipeline, item)
    return OperationStatus(status="accepted", message="Event queued for processing")
