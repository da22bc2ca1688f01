"""
Storage sweeper.

Housekeeping the request paths never do:
- Pending records older than the expiry threshold become EXPIRED and lose
  their blob
- Blobs no pending record owns (crash between move and record write) are
  deleted
- Leftover staging downloads older than a grace period are deleted
"""

import asyncio
import time
from pathlib import Path
from typing import List, Optional

from loguru import logger

from app.models.schemas import SweepReport
from domains.file_sync.store import FileRecordStore


class StorageSweeper:
    """Periodic expiry and orphan reconciliation for the file store."""

    def __init__(
        self,
        store: FileRecordStore,
        staging_dir: Optional[Path] = None,
        expiry_hours: float = 72.0,
        staging_grace_seconds: float = 3600.0,
    ):
        """
        Initialize storage sweeper.

        Args:
            store: File record store to sweep
            staging_dir: Staging directory of the ingestion pipeline
            expiry_hours: Age after which pending files expire (0 disables)
            staging_grace_seconds: Age after which a staging file is abandoned
        """
        self.store = store
        self.staging_dir = Path(staging_dir) if staging_dir else None
        self.expiry_hours = expiry_hours
        self.staging_grace_seconds = staging_grace_seconds

    async def expire_stale(self, expiry_hours: Optional[float] = None) -> List[str]:
        """Expire stale pending records and return their keys."""
        hours = self.expiry_hours if expiry_hours is None else expiry_hours
        if hours <= 0:
            return []

        expired = await self.store.expire_stale(hours * 3600)
        if expired:
            logger.info(f"Expired {len(expired)} stale pending files")
        return [record.file_key for record in expired]

    async def remove_orphans(self) -> List[str]:
        """Delete unowned blobs and abandoned staging files."""
        removed = await self.store.remove_orphan_blobs()
        if self.staging_dir is not None:
            removed.extend(await asyncio.to_thread(self._purge_staging))
        return removed

    def _purge_staging(self) -> List[str]:
        cutoff = time.time() - self.staging_grace_seconds
        removed = []

        try:
            entries = list(self.staging_dir.iterdir())
        except FileNotFoundError:
            return removed

        for path in entries:
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed.append(path.name)
                    logger.warning(f"Removed abandoned staging file: {path}")
            except OSError as e:
                logger.error(f"Failed to remove staging file {path}: {e}")

        return removed

    async def run_once(self, expiry_hours: Optional[float] = None) -> SweepReport:
        """Run expiry first, then orphan removal."""
        expired = await self.expire_stale(expiry_hours)
        orphans = await self.remove_orphans()
        return SweepReport(expired=expired, orphans_removed=orphans)

    async def run_forever(self, interval_seconds: float):
        """Sweep every interval_seconds until cancelled."""
        logger.info(f"Storage sweeper running every {interval_seconds}s")
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                report = await self.run_once()
                logger.debug(f"Sweep finished: {report.model_dump()}")
            except Exception as e:
                logger.error(f"Storage sweep failed: {e}")
