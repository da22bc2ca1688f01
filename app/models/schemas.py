"""
Pydantic models for Feishu File Sync.

Shared data models across the application.
"""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


# =====================================================
# File Record Models
# =====================================================

class FileStatus(str, Enum):
    """Synchronization status of a staged file."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not FileStatus.PENDING


# Statuses the puller is allowed to report
REPORTABLE_STATUSES = frozenset({FileStatus.COMPLETED, FileStatus.FAILED})


class FileRecord(BaseModel):
    """
    Lifecycle record of one staged file.

    Serialized with camelCase names both on disk and on the wire.
    """
    model_config = ConfigDict(populate_by_name=True)

    file_key: str = Field(..., alias="fileKey")
    file_name: str = Field(..., alias="fileName")
    status: FileStatus = FileStatus.PENDING
    timestamp: int = Field(..., description="Creation time in epoch milliseconds")

    def as_json_ready(self) -> dict:
        """Return a JSON serialisable payload for the state file."""
        return self.model_dump(by_alias=True, mode="json")


class StatusUpdateRequest(BaseModel):
    """Status report sent by the puller."""
    model_config = ConfigDict(populate_by_name=True)

    file_key: str = Field(..., alias="fileKey", min_length=1)
    status: FileStatus


class StatusUpdateResponse(BaseModel):
    """Acknowledgement of an applied status report."""
    message: str
    record: FileRecord


# =====================================================
# Ingestion Models
# =====================================================

class ResourceKind(str, Enum):
    """Resource type understood by the message resource API."""
    IMAGE = "image"
    FILE = "file"


class InboundFileEvent(BaseModel):
    """A file-bearing message delivered by the messaging platform."""
    event_id: Optional[str] = None
    chat_id: str
    message_id: str
    resource_key: str
    file_name: str
    kind: ResourceKind


class UnsupportedMessage(BaseModel):
    """A message that carries no file (plain text, stickers, ...)."""
    event_id: Optional[str] = None
    chat_id: str
    message_type: str
    text: Optional[str] = None


class IngestionOutcome(str, Enum):
    """Terminal outcome of one ingestion attempt."""
    STORED = "stored"
    DUPLICATE = "duplicate"
    FETCH_FAILED = "fetch_failed"
    STORE_FAILED = "store_failed"
    IGNORED = "ignored"


# =====================================================
# Maintenance Models
# =====================================================

class SweepReport(BaseModel):
    """Result of one storage sweep."""
    expired: List[str] = []
    orphans_removed: List[str] = []


class StoreStats(BaseModel):
    """Record counts and blob usage."""
    total: int = 0
    by_status: Dict[str, int] = {}
    pending_bytes: int = 0


# =====================================================
# Response Models
# =====================================================

class OperationStatus(BaseModel):
    """Generic operation status."""
    status: str
    message: str


class ErrorResponse(BaseModel):
    """Structured error body."""
    error: str
    detail: str
