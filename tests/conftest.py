"""Pytest configuration and shared fixtures for Feishu File Sync tests."""

import json
from pathlib import Path
from typing import Optional

import pytest

from domains.file_sync.store import FileRecordStore


class FakeFeishuClient:
    """Stands in for FeishuClient; records every call."""

    def __init__(self, payload: bytes = b"\xff\xd8fake-jpeg-bytes", error: Optional[Exception] = None):
        self.payload = payload
        self.error = error
        self.downloads: list[tuple[str, str, str]] = []
        self.sent: list[tuple[str, str]] = []

    async def download_resource(self, message_id, file_key, kind, destination):
        self.downloads.append((message_id, file_key, getattr(kind, "value", kind)))
        if self.error is not None:
            raise self.error
        Path(destination).write_bytes(self.payload)
        return len(self.payload)

    async def send_text(self, chat_id, text):
        self.sent.append((chat_id, text))
        return True

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


def make_message_event(
    event_id: Optional[str],
    message_type: str,
    content: dict,
    chat_id: str = "oc_chat_1",
    message_id: str = "om_message_1",
) -> dict:
    """Build an im.message.receive_v1 callback body (schema 2.0)."""
    return {
        "schema": "2.0",
        "header": {
            "event_id": event_id,
            "event_type": "im.message.receive_v1",
            "token": "verification-token",
            "app_id": "cli_test",
        },
        "event": {
            "sender": {"sender_id": {"open_id": "ou_sender"}},
            "message": {
                "message_id": message_id,
                "chat_id": chat_id,
                "chat_type": "p2p",
                "message_type": message_type,
                "content": json.dumps(content),
            },
        },
    }


@pytest.fixture
def media_dir(tmp_path) -> Path:
    return tmp_path / "file_media"


@pytest.fixture
def state_file(tmp_path) -> Path:
    return tmp_path / "file_data" / "feishu_files.json"


@pytest.fixture
def staging_dir(tmp_path) -> Path:
    path = tmp_path / "temp_uploads"
    path.mkdir()
    return path


@pytest.fixture
async def store(media_dir, state_file) -> FileRecordStore:
    """Initialized store on a temporary data root."""
    file_store = FileRecordStore(media_dir, state_file)
    await file_store.initialize()
    return file_store


@pytest.fixture
def make_blob(tmp_path):
    """Create a staged blob outside the managed directory."""
    counter = {"n": 0}

    def _make(content: bytes = b"hello", name: str = "upload.bin") -> Path:
        counter["n"] += 1
        path = tmp_path / "incoming" / f"{counter['n']}-{name}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def fake_client() -> FakeFeishuClient:
    return FakeFeishuClient()


@pytest.fixture
def message_event():
    """Builder for im.message.receive_v1 callback bodies."""
    return make_message_event
