"""
Helper utilities for Feishu File Sync.

Common functions used across domains.
"""

import re
import time
from pathlib import Path
from typing import Optional
from uuid import uuid4

# Most filesystems cap a single path component at 255 bytes
MAX_NAME_BYTES = 255
# "-" plus the first 8 characters of a key, see disambiguate_filename()
DISAMBIGUATION_BYTES = 9


def generate_uuid() -> str:
    """Generate a unique identifier."""
    return str(uuid4())


def _truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut text to at most max_bytes of UTF-8 without splitting a character."""
    return text.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")


def sanitize_filename(filename: str, max_bytes: int = MAX_NAME_BYTES - DISAMBIGUATION_BYTES) -> str:
    """
    Sanitize filename by removing invalid characters.

    The result fits in max_bytes of UTF-8; by default that leaves room for
    disambiguate_filename() to tag it without exceeding the filesystem limit.
    Long names are shortened in the stem so the extension survives.
    """
    # Remove invalid filename characters
    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', filename)
    # Remove leading/trailing spaces and dots
    sanitized = sanitized.strip('. ')
    # Limit length
    if len(sanitized.encode("utf-8")) > max_bytes:
        suffix = Path(sanitized).suffix
        if len(suffix.encode("utf-8")) > max_bytes // 2:
            suffix = ""
        stem = sanitized[:-len(suffix)] if suffix else sanitized
        budget = max_bytes - len(suffix.encode("utf-8"))
        sanitized = _truncate_utf8(stem, budget).rstrip('. ') + suffix
    return sanitized


def disambiguate_filename(filename: str, key: str) -> str:
    """
    Make a file name unique by tagging it with the start of a key.

    Example:
        disambiguate_filename("photo.jpg", "0f3c2a9e-...") -> "photo-0f3c2a9e.jpg"
    """
    path = Path(filename)
    suffix = "".join(path.suffixes[-1:])
    stem = filename[:-len(suffix)] if suffix else filename
    return f"{stem}-{key[:8]}{suffix}"


def default_filename(resource_key: str, extension: Optional[str] = None) -> str:
    """Build a storage name from a resource key and an optional extension."""
    if not extension:
        return resource_key
    return f"{resource_key}.{extension.lstrip('.')}"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def format_bytes(bytes_count: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def is_writable_dir(path: Path) -> bool:
    """Check that path is an existing directory we can write into."""
    try:
        if not path.is_dir():
            return False
        probe = path / f".probe-{uuid4().hex}"
        probe.touch()
        probe.unlink()
        return True
    except OSError:
        return False
