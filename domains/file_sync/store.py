"""
File record store.

Durable mapping from a generated file key to its lifecycle record, plus the
directory holding one blob per pending file. The store is the single
authority for record status; nothing else writes to the blob directory.

Persistence is a whole-collection JSON rewrite (temp file + atomic replace)
at the end of every mutating operation. Mutations and reloads go through one
asyncio.Lock so read-modify-write cycles never interleave. The API process
owns the store; offline tooling goes through its admin endpoints instead of
opening a second store over the same files.
"""

import asyncio
import json
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from app.models.schemas import FileRecord, FileStatus, StoreStats
from app.utils.errors import InvalidInput, IOFailure
from app.utils.helpers import disambiguate_filename, generate_uuid, now_ms, sanitize_filename


class FileRecordStore:
    """Repository of file records backed by a JSON state file."""

    def __init__(self, media_dir: Path, state_file: Path):
        """
        Initialize file record store.

        Args:
            media_dir: Directory holding the blobs of pending files
            state_file: JSON file holding every record
        """
        self.media_dir = Path(media_dir)
        self.state_file = Path(state_file)
        self._records: List[FileRecord] = []
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Create storage directories and load existing records."""
        await asyncio.to_thread(self._ensure_directories)
        async with self._lock:
            await asyncio.to_thread(self._load)

    def _ensure_directories(self):
        for directory in (self.media_dir, self.state_file.parent):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise IOFailure(f"Failed to create directory {directory}: {e}", cause=e) from e

    # Persistence ---------------------------------------------------------------------

    def _load(self):
        """Replace the working copy with the records on disk."""
        try:
            raw = self.state_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No existing state file found, starting with empty state")
            self._records = []
            return
        except OSError as e:
            logger.error(f"Failed to read state from {self.state_file}: {e}")
            return

        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("state file does not hold a JSON array")
            self._records = [FileRecord.model_validate(item) for item in data]
        except (ValueError, ValidationError) as e:
            logger.error(f"Failed to load state from {self.state_file}: {e}")
            return

        logger.debug(f"Loaded {len(self._records)} file records from disk")

    def _persist(self):
        """Atomically rewrite the state file from the working copy."""
        payload = [record.as_json_ready() for record in self._records]
        tmp_path = self.state_file.with_name(self.state_file.name + ".tmp")
        try:
            tmp_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self.state_file)
        except OSError as e:
            logger.error(f"Failed to save state to {self.state_file}: {e}")
            raise IOFailure(f"Failed to save file state: {e}", cause=e) from e

        logger.debug("File state saved to disk")

    # Helpers -------------------------------------------------------------------------

    def _find(self, file_key: str) -> Optional[FileRecord]:
        for record in self._records:
            if record.file_key == file_key:
                return record
        return None

    def _live_names(self) -> set[str]:
        return {r.file_name for r in self._records if r.status is FileStatus.PENDING}

    def _resolve_name(self, declared_name: str, file_key: str) -> str:
        """Pick a storage name no pending record or existing blob already uses."""
        name = sanitize_filename(declared_name or "") or file_key
        if name in self._live_names() or (self.media_dir / name).exists():
            name = disambiguate_filename(name, file_key)
        return name

    def _delete_blob(self, record: FileRecord):
        """Remove a record's blob unless a pending record still owns that name."""
        if record.file_name in self._live_names():
            logger.warning(
                f"Blob {record.file_name} is owned by another pending record, keeping it"
            )
            return

        blob_path = self.media_dir / record.file_name
        try:
            blob_path.unlink()
            logger.info(f"Cleaned up local file: {blob_path}")
        except FileNotFoundError:
            logger.debug(f"Local file already gone: {blob_path}")
        except OSError as e:
            logger.error(f"Failed to delete local file {blob_path}: {e}")

    # Operations ----------------------------------------------------------------------

    async def add_file(self, source_blob_path: Path, declared_name: str) -> FileRecord:
        """
        Claim a staged blob and create a pending record for it.

        The blob is moved first and the record written second. If the move
        fails no record is created; if the write fails the blob is removed
        again. Either way IOFailure is raised.
        """
        async with self._lock:
            await asyncio.to_thread(self._load)

            file_key = generate_uuid()
            file_name = await asyncio.to_thread(self._resolve_name, declared_name, file_key)
            destination = self.media_dir / file_name

            try:
                await asyncio.to_thread(shutil.move, str(source_blob_path), str(destination))
            except OSError as e:
                logger.error(f"Failed to move file to managed directory: {e}")
                raise IOFailure(f"Failed to move {source_blob_path} into storage: {e}", cause=e) from e

            logger.info(f"File moved to managed directory: {destination}")

            record = FileRecord(
                file_key=file_key,
                file_name=file_name,
                status=FileStatus.PENDING,
                timestamp=now_ms(),
            )
            self._records.append(record)

            try:
                await asyncio.to_thread(self._persist)
            except IOFailure:
                self._records.remove(record)
                await asyncio.to_thread(destination.unlink, missing_ok=True)
                raise

            logger.success(f"Registered file {file_key} as {file_name}")
            return record.model_copy()

    async def get_pending(self) -> List[FileRecord]:
        """Reload from disk and return every pending record."""
        async with self._lock:
            await asyncio.to_thread(self._load)
            return [r.model_copy() for r in self._records if r.status is FileStatus.PENDING]

    def get_blob_path(self, file_key: str) -> Optional[Path]:
        """Return where the blob of a record lives, or None for unknown keys."""
        record = self._find(file_key)
        return self.media_dir / record.file_name if record else None

    def get(self, file_key: str) -> Optional[FileRecord]:
        """Return a copy of one record."""
        record = self._find(file_key)
        return record.model_copy() if record else None

    def list_records(self) -> List[FileRecord]:
        """Return copies of all records, terminal ones included."""
        return [r.model_copy() for r in self._records]

    async def update_status(self, file_key: str, status: FileStatus) -> Optional[FileRecord]:
        """
        Set the status of a record.

        Returns None when the key is unknown. Terminal statuses delete the
        blob after the new status is persisted; a failed delete is only
        logged. Terminal statuses are final: re-applying the same one is a
        no-op cleanup, any other change raises InvalidInput.
        """
        status = FileStatus(status)

        async with self._lock:
            await asyncio.to_thread(self._load)

            record = self._find(file_key)
            if record is None:
                return None

            if record.status.is_terminal:
                if status is not record.status:
                    raise InvalidInput(
                        f"File {file_key} is already {record.status.value} and cannot become {status.value}"
                    )
                await asyncio.to_thread(self._delete_blob, record)
                return record.model_copy()

            previous = record.status
            record.status = status
            try:
                await asyncio.to_thread(self._persist)
            except IOFailure:
                record.status = previous
                raise

            logger.info(f"Status for file {file_key} updated {previous.value} -> {status.value}")

            if status.is_terminal:
                await asyncio.to_thread(self._delete_blob, record)

            return record.model_copy()

    async def expire_stale(self, max_age_seconds: float, now: Optional[int] = None) -> List[FileRecord]:
        """
        Flip pending records older than max_age_seconds to EXPIRED.

        Args:
            max_age_seconds: Age threshold
            now: Reference time in epoch milliseconds (defaults to now)

        Returns:
            The records that expired
        """
        reference = now if now is not None else now_ms()
        cutoff = reference - int(max_age_seconds * 1000)

        async with self._lock:
            await asyncio.to_thread(self._load)

            stale = [
                r for r in self._records
                if r.status is FileStatus.PENDING and r.timestamp < cutoff
            ]
            if not stale:
                return []

            for record in stale:
                record.status = FileStatus.EXPIRED
            try:
                await asyncio.to_thread(self._persist)
            except IOFailure:
                for record in stale:
                    record.status = FileStatus.PENDING
                raise

            for record in stale:
                logger.info(f"File {record.file_key} expired")
                await asyncio.to_thread(self._delete_blob, record)

            return [r.model_copy() for r in stale]

    async def remove_orphan_blobs(self) -> List[str]:
        """Delete files in the blob directory that no pending record owns."""
        async with self._lock:
            await asyncio.to_thread(self._load)
            return await asyncio.to_thread(self._remove_orphans)

    def _remove_orphans(self) -> List[str]:
        live = self._live_names()
        removed = []

        try:
            entries = list(self.media_dir.iterdir())
        except FileNotFoundError:
            return removed

        for path in entries:
            if not path.is_file() or path.name in live:
                continue
            try:
                path.unlink()
                removed.append(path.name)
                logger.warning(f"Removed orphaned blob: {path}")
            except OSError as e:
                logger.error(f"Failed to remove orphaned blob {path}: {e}")

        return removed

    async def stats(self) -> StoreStats:
        """Count records per status and measure pending blob bytes."""
        return await asyncio.to_thread(self._stats)

    def _stats(self) -> StoreStats:
        by_status: Dict[str, int] = {s.value: 0 for s in FileStatus}
        pending_bytes = 0

        for record in self._records:
            by_status[record.status.value] += 1
            if record.status is FileStatus.PENDING:
                try:
                    pending_bytes += (self.media_dir / record.file_name).stat().st_size
                except OSError:
                    pass

        return StoreStats(total=len(self._records), by_status=by_status, pending_bytes=pending_bytes)

    def __len__(self) -> int:
        return len(self._records)
