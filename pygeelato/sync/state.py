"""State management for tracking sync history.

The side-file records, per project, the hash of every file as of the last
successful push or pull. Comparing a fresh scan against it tells which files
were added, modified or deleted locally since then.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from ..exceptions import StateError
from ..utils import utc_now_rfc3339
from ..models import FileCategory, FileRecord

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Bookkeeping for the last successful sync of a working tree."""

    version: str = ""
    """Version token assigned by the server (or derived from a timestamp)"""

    last_sync_at: str = ""
    """RFC 3339 timestamp of the last successful sync"""

    files: dict[str, str] = field(default_factory=dict)
    """Relative path -> hash at the last sync"""

    @property
    def is_empty(self) -> bool:
        return not self.version and not self.files

    def records(self) -> list[FileRecord]:
        """The synced files as FileRecords, for diffing."""
        return [
            FileRecord(path=path, hash=file_hash, category=FileCategory.for_path(path))
            for path, file_hash in sorted(self.files.items())
        ]

    def apply_push(
        self,
        updated: dict[str, str],
        deleted: Iterable[str],
        version: str,
        synced_at: Optional[str] = None,
    ) -> None:
        """Record a successful push.

        Args:
            updated: Added/modified paths and their new hashes
            deleted: Paths removed locally
            version: Version token returned by the server
            synced_at: Timestamp (defaults to now)
        """
        self.files.update(updated)
        for path in deleted:
            self.files.pop(path, None)
        self.version = version
        self.last_sync_at = synced_at or utc_now_rfc3339()

    def replace(
        self, files: dict[str, str], version: str, synced_at: Optional[str] = None
    ) -> None:
        """Record a successful pull, replacing all tracked files."""
        self.files = dict(files)
        self.version = version
        self.last_sync_at = synced_at or utc_now_rfc3339()

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "lastSyncAt": self.last_sync_at,
            "files": dict(sorted(self.files.items())),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        """Create SyncState from dictionary."""
        files = data.get("files") or {}
        if not isinstance(files, dict):
            raise ValueError("'files' must be an object")
        return cls(
            version=str(data.get("version") or ""),
            last_sync_at=str(data.get("lastSyncAt") or ""),
            files={str(k): str(v) for k, v in files.items()},
        )


class SyncStateStore:
    """Loads and saves the sync state side-file.

    Only the sync engine writes through a store; two concurrent ``save``
    calls on the same file are not guarded against.
    """

    def __init__(self, state_file: Path):
        """Initialize state store.

        Args:
            state_file: Path of the JSON side-file
                (usually ``<root>/.geelato/sync-state.json``)
        """
        self.state_file = state_file

    def load(self) -> SyncState:
        """Load the sync state.

        A missing or corrupt side-file yields an empty state, so every file
        looks new instead of blocking the sync.

        Returns:
            SyncState (possibly empty)
        """
        if not self.state_file.exists():
            logger.debug(f"No sync state found at {self.state_file}")
            return SyncState()

        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("state must be a JSON object")
            state = SyncState.from_dict(data)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load sync state, starting fresh: {e}")
            return SyncState()

        logger.debug(
            f"Loaded sync state with {len(state.files)} files "
            f"from {state.last_sync_at or 'never'}"
        )
        return state

    def save(self, state: SyncState) -> None:
        """Write the whole state, replacing the previous file.

        The content goes to a temporary file in the same directory which is
        then renamed over the side-file.

        Raises:
            StateError: If the file cannot be written
        """
        content = json.dumps(state.to_dict(), indent=2, ensure_ascii=False) + "\n"
        tmp_name: Optional[str] = None
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.state_file.parent, prefix=".sync-state-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, self.state_file)
            tmp_name = None
        except OSError as e:
            raise StateError(f"Failed to save sync state to {self.state_file}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.debug(f"Saved sync state with {len(state.files)} files to {self.state_file}")

    def clear(self) -> bool:
        """Remove the side-file.

        Returns:
            True if state was cleared, False if no state existed
        """
        if self.state_file.exists():
            self.state_file.unlink()
            logger.debug(f"Cleared sync state at {self.state_file}")
            return True
        return False
