#!/usr/bin/env python3
"""
Trigger the storage sweep of a running Feishu File Sync service.

The API process is the only writer of the state file and the blob
directory, so this script never opens them itself. It asks the service to
sweep (POST /admin/sweep), which runs under the same store lock as
ingestion and status reports.

Usage:
    python scripts/sweep_storage.py
    python scripts/sweep_storage.py --expiry-hours 24
    python scripts/sweep_storage.py --api-url http://sync-host:8000 --dry-run
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.utils.config import get_settings


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Expire stale pending files and remove orphaned blobs via the running service.",
    )
    parser.add_argument(
        "--api-url",
        default=f"http://localhost:{settings.api_port}",
        help="Base URL of the running service (default: %(default)s).",
    )
    parser.add_argument(
        "--expiry-hours",
        type=float,
        default=None,
        help=f"Age after which pending files expire; 0 skips expiry (service default: {settings.file_expiry_hours}).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="HTTP timeout in seconds.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report what is pending and how old it is.",
    )
    return parser.parse_args(argv)


def report_pending(client: httpx.Client) -> None:
    stats = client.get("/admin/stats")
    stats.raise_for_status()
    records = stats.json()["records"]
    logger.info(f"{records['total']} records: {records['by_status']}")

    pending = client.get("/sync/files")
    pending.raise_for_status()
    for record in pending.json():
        logger.info(f"pending {record['fileKey']} {record['fileName']} (created {record['timestamp']})")


def sweep(client: httpx.Client, expiry_hours: Optional[float]) -> dict:
    params = {} if expiry_hours is None else {"expiry_hours": expiry_hours}
    response = client.post("/admin/sweep", params=params)
    response.raise_for_status()
    report = response.json()
    logger.success(
        f"Sweep complete: {len(report['expired'])} expired, {len(report['orphans_removed'])} orphans removed"
    )
    return report


def run(args: argparse.Namespace, client: httpx.Client) -> int:
    if args.dry_run:
        report_pending(client)
    else:
        sweep(client, args.expiry_hours)
    return 0


def main(argv: Optional[list[str]] = None, client: Optional[httpx.Client] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    try:
        if client is not None:
            return run(args, client)
        with httpx.Client(base_url=args.api_url, timeout=args.timeout) as http:
            return run(args, http)
    except httpx.HTTPError as e:
        logger.error(f"Storage sweep failed: {e}")
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
