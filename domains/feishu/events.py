"""
Feishu event callback mapping.

Maps `im.message.receive_v1` callback bodies (schema 2.0) onto the models the
ingestion pipeline consumes. Only the fields needed to locate a file are read;
the message content is otherwise left alone.
"""

import json
from typing import Any, Dict, Optional, Union

from app.models.schemas import InboundFileEvent, ResourceKind, UnsupportedMessage
from app.utils.errors import InvalidInput
from app.utils.helpers import default_filename

MESSAGE_RECEIVE_EVENT = "im.message.receive_v1"

# message_type -> (content field holding the key, resource kind, default extension)
FILE_MESSAGE_TYPES = {
    "image": ("image_key", ResourceKind.IMAGE, "jpg"),
    "media": ("file_key", ResourceKind.FILE, "mp4"),
    "file": ("file_key", ResourceKind.FILE, None),
}


def is_url_verification(payload: Dict[str, Any]) -> bool:
    """Check whether a callback body is the endpoint verification handshake."""
    return payload.get("type") == "url_verification"


def extract_token(payload: Dict[str, Any]) -> Optional[str]:
    """Return the verification token of a callback body, if any."""
    header = payload.get("header") or {}
    return header.get("token") or payload.get("token")


def _parse_content(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        content = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Message content is not valid JSON: {e}") from e
    return content if isinstance(content, dict) else {}


def parse_message_event(
    payload: Dict[str, Any],
) -> Optional[Union[InboundFileEvent, UnsupportedMessage]]:
    """
    Map a callback body to a pipeline input.

    Returns:
        InboundFileEvent for image/media/file messages, UnsupportedMessage
        for any other message type, None for events that are not messages

    Raises:
        InvalidInput: Encrypted body, missing ids, or a file message without key
    """
    if "encrypt" in payload:
        raise InvalidInput("Encrypted event callbacks are not supported; disable the encrypt key")

    header = payload.get("header") or {}
    if header.get("event_type") != MESSAGE_RECEIVE_EVENT:
        return None

    event = payload.get("event") or {}
    message = event.get("message") or {}
    event_id = header.get("event_id")
    chat_id = message.get("chat_id")
    message_id = message.get("message_id")
    message_type = message.get("message_type") or ""

    if not chat_id or not message_id:
        raise InvalidInput("Message event is missing chat_id or message_id")

    content = _parse_content(message.get("content"))

    if message_type not in FILE_MESSAGE_TYPES:
        return UnsupportedMessage(
            event_id=event_id,
            chat_id=chat_id,
            message_type=message_type,
            text=content.get("text"),
        )

    key_field, kind, extension = FILE_MESSAGE_TYPES[message_type]
    resource_key = content.get(key_field)
    if not resource_key:
        raise InvalidInput(f"{key_field} is missing in the {message_type} message content")

    return InboundFileEvent(
        event_id=event_id,
        chat_id=chat_id,
        message_id=message_id,
        resource_key=resource_key,
        file_name=content.get("file_name") or default_filename(resource_key, extension),
        kind=kind,
    )
