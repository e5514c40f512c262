"""Utility functions for pygeelato."""

import hashlib
import logging
import random
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, TypeVar

from .exceptions import NetworkError, ServerError, SyncCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# =============================================================================
# Constants
# =============================================================================

# Timeout for metadata calls (status, file list, conflict check)
DEFAULT_TIMEOUT: float = 30.0

# Timeout for package upload/download
DEFAULT_TRANSFER_TIMEOUT: float = 300.0

# Timeout for the health check
PING_TIMEOUT: float = 10.0

# Read size used for hashing and streaming
CHUNK_SIZE: int = 8192

# Delay before the first whole-command retry
DEFAULT_RETRY_DELAY: float = 2.0


# =============================================================================
# Hashing
# =============================================================================


def sha256_bytes(data: bytes) -> str:
    """Return the hex SHA-256 digest of a byte buffer.

    Examples:
        >>> sha256_bytes(b"")[:16]
        'e3b0c44298fc1c14'
    """
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the hex SHA-256 digest of a file, read in chunks.

    Raises:
        OSError: If the file cannot be opened or read
    """
    sha = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha.update(chunk)
    return sha.hexdigest()


# =============================================================================
# Timestamps
# =============================================================================


def utc_now_rfc3339() -> str:
    """Current UTC time as an RFC 3339 string with second precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def version_token(now: Optional[datetime] = None) -> str:
    """Timestamp-derived version token (``YYYYmmddHHMMSS``)."""
    now = now or datetime.now()
    return now.strftime("%Y%m%d%H%M%S")


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO/RFC 3339 timestamp from the platform.

    Args:
        timestamp_str: Timestamp such as "2025-01-15T10:30:00Z"

    Returns:
        Timezone-aware datetime, or None if parsing fails
    """
    if not timestamp_str:
        return None

    # The 'Z' suffix indicates UTC time
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# Size formatting
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


def short_hash(value: Optional[str], length: int = 8) -> str:
    """Abbreviate a hex digest for display."""
    if not value:
        return "-"
    return value[:length]


# =============================================================================
# Cancellation
# =============================================================================


class CancelToken:
    """Cooperative cancellation signal shared between threads.

    Network-bound operations call :meth:`raise_if_cancelled` at their
    suspension points (before a request, between download chunks).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelledError("Operation cancelled")


# =============================================================================
# Whole-command retries
# =============================================================================


def is_retryable(exception: Exception) -> bool:
    """Network failures and 5xx responses are worth another attempt."""
    if isinstance(exception, NetworkError):
        return True
    if isinstance(exception, ServerError):
        status = exception.status_code or 0
        return 500 <= status < 600
    return False


def calculate_retry_delay(attempt: int, retry_delay: float = DEFAULT_RETRY_DELAY) -> float:
    """Exponential backoff with +/- 25% jitter.

    Args:
        attempt: Current attempt number (0-based)
        retry_delay: Delay for the first retry in seconds

    Returns:
        Delay in seconds
    """
    base_delay = retry_delay * (2**attempt)
    jitter = base_delay * 0.25 * (2 * random.random() - 1)
    return base_delay + jitter


def call_with_retries(
    func: Callable[[], T],
    retries: int = 0,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``func`` and re-run it on retryable failures.

    The sync core itself never retries; this wraps a whole CLI command.

    Args:
        func: Zero-argument callable to run
        retries: Number of extra attempts after the first failure
        retry_delay: Initial delay between attempts in seconds
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``func`` returns
    """
    attempt = 0
    while True:
        try:
            return func()
        except (NetworkError, ServerError) as e:
            if attempt >= retries or not is_retryable(e):
                raise
            delay = calculate_retry_delay(attempt, retry_delay)
            logger.warning(f"Attempt {attempt + 1} failed ({e}), retrying in {delay:.1f}s")
            sleep(delay)
            attempt += 1
