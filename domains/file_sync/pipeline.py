"""
File ingestion pipeline.

Turns an inbound file-bearing chat message into a pending file record:

1. Drop redelivered events (dedup cache)
2. Acknowledge receipt to the sender
3. Download the resource into the staging directory
4. Hand the staged blob to the file record store
5. Tell the sender how it went

A record is only created once the blob is fully staged; every failure is
reported back to the chat instead of being raised.
"""

import asyncio
from pathlib import Path

from loguru import logger

from app.models.schemas import IngestionOutcome, InboundFileEvent, UnsupportedMessage
from app.utils.errors import (
    IOFailure,
    UpstreamFetchFailure,
    UpstreamNotFoundOrExpired,
    UpstreamTimeout,
)
from app.utils.helpers import generate_uuid
from domains.file_sync.dedup import EventDedupCache
from domains.file_sync.store import FileRecordStore


class FileIngestionPipeline:
    """Orchestrates dedup, download and registration of inbound files."""

    def __init__(
        self,
        store: FileRecordStore,
        dedup: EventDedupCache,
        client,
        staging_dir: Path,
        fetch_timeout: float = 300.0,
    ):
        """
        Initialize ingestion pipeline.

        Args:
            store: File record store receiving staged blobs
            dedup: Event dedup cache
            client: Messaging client with download_resource() and send_text()
            staging_dir: Directory for in-flight downloads
            fetch_timeout: Upper bound for one download, in seconds
        """
        self.store = store
        self.dedup = dedup
        self.client = client
        self.staging_dir = Path(staging_dir)
        self.fetch_timeout = fetch_timeout

    def initialize(self):
        """Ensure the staging directory exists."""
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Staging directory: {self.staging_dir}")

    def _is_duplicate(self, event_id) -> bool:
        if event_id and self.dedup.is_duplicate(event_id):
            logger.info(f"Ignoring duplicate event: {event_id}")
            return True
        return False

    async def handle(self, event: InboundFileEvent) -> IngestionOutcome:
        """
        Run one inbound file event through the pipeline.

        Returns:
            The outcome; DUPLICATE means nothing was done at all
        """
        if self._is_duplicate(event.event_id):
            return IngestionOutcome.DUPLICATE

        logger.info(f"Received new event: {event.event_id} ({event.kind.value} {event.file_name})")
        await self.client.send_text(
            event.chat_id, f"Received file: {event.file_name}, preparing transfer..."
        )

        # The declared name only matters once the store picks the storage name
        staged = self.staging_dir / f"{generate_uuid()}.part"
        try:
            return await self._fetch_and_store(event, staged)
        finally:
            await asyncio.to_thread(staged.unlink, missing_ok=True)

    async def _fetch_and_store(self, event: InboundFileEvent, staged: Path) -> IngestionOutcome:
        try:
            await asyncio.wait_for(
                self.client.download_resource(
                    event.message_id, event.resource_key, event.kind, staged
                ),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Download of {event.file_name} exceeded {self.fetch_timeout}s")
            await self.client.send_text(event.chat_id, self._fetch_failure_text(
                event.file_name, UpstreamTimeout("download timed out")
            ))
            return IngestionOutcome.FETCH_FAILED
        except UpstreamFetchFailure as e:
            logger.error(f"Download failed (retryable={e.retryable}): {e}")
            await self.client.send_text(event.chat_id, self._fetch_failure_text(event.file_name, e))
            return IngestionOutcome.FETCH_FAILED
        except IOFailure as e:
            logger.error(f"Staging failed: {e}")
            await self.client.send_text(
                event.chat_id, f"Failed to save file {event.file_name} on the server: {e.message}"
            )
            return IngestionOutcome.STORE_FAILED

        try:
            record = await self.store.add_file(staged, event.file_name)
        except IOFailure as e:
            await self.client.send_text(
                event.chat_id, f"Failed to save file {event.file_name} on the server: {e.message}"
            )
            return IngestionOutcome.STORE_FAILED

        logger.success(f"File {record.file_name} staged as {record.file_key}")
        await self.client.send_text(
            event.chat_id, f"File {record.file_name} was downloaded to the server and is waiting for sync."
        )
        return IngestionOutcome.STORED

    @staticmethod
    def _fetch_failure_text(file_name: str, error: UpstreamFetchFailure) -> str:
        if isinstance(error, UpstreamNotFoundOrExpired):
            return (
                f"Failed to download file {file_name}: the file was not found or its link "
                f"has expired. Please send the file again."
            )
        if isinstance(error, UpstreamTimeout):
            return f"Downloading file {file_name} timed out. Please send the file again."
        if error.retryable:
            return (
                f"Failed to download file {file_name} because Feishu is temporarily "
                f"unavailable. Please send the file again in a moment."
            )
        return f"Failed to download file {file_name}. Error: {error.message}"

    async def handle_unsupported(self, message: UnsupportedMessage) -> IngestionOutcome:
        """Answer a message that carries no file."""
        if self._is_duplicate(message.event_id):
            return IngestionOutcome.DUPLICATE

        await self.client.send_text(
            message.chat_id,
            f"Hello! Please send photos, videos or files directly. Received message: {message.text or ''}",
        )
        return IngestionOutcome.IGNORED

    async def report_error(self, chat_id: str, error: Exception):
        """Tell the sender an event could not be processed at all."""
        logger.error(f"An error occurred while processing an event: {error}")
        await self.client.send_text(
            chat_id, f"Sorry, an unexpected error occurred while processing your request: {error}"
        )
