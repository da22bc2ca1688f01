"""
Error taxonomy for Feishu File Sync.

Every error raised by the store, the ingestion pipeline or the Feishu client
derives from FileSyncError, which carries a short machine-readable code and
the HTTP status the API layer answers with.
"""

from typing import Optional


class FileSyncError(Exception):
    """Base class for all file sync errors."""

    error_code = "file_sync_error"
    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict:
        """Structured body for API responses."""
        return {"error": self.error_code, "detail": self.message}


class NotFound(FileSyncError):
    """Unknown file key, or its blob is already gone."""

    error_code = "not_found"
    status_code = 404


class InvalidInput(FileSyncError):
    """Malformed request body or event payload."""

    error_code = "invalid_input"
    status_code = 422


class IOFailure(FileSyncError):
    """Local filesystem move/write/read/delete failure."""

    error_code = "io_failure"
    status_code = 500


class UpstreamFetchFailure(FileSyncError):
    """The messaging platform could not deliver a resource."""

    error_code = "upstream_fetch_failure"
    status_code = 502


class UpstreamNotFoundOrExpired(UpstreamFetchFailure):
    """The resource does not exist anymore or its link has expired."""

    error_code = "upstream_not_found"


class UpstreamTimeout(UpstreamFetchFailure):
    """The platform did not answer in time; resending usually helps."""

    error_code = "upstream_timeout"
    status_code = 504
    retryable = True
