"""File comparison logic for sync operations."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..models import Conflict, FileRecord, records_to_map
from .state import SyncState

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """How a path differs from the side it is compared with."""

    ADDED = "added"
    """Present locally only"""

    MODIFIED = "modified"
    """Present on both sides with different content"""

    DELETED = "deleted"
    """Present on the other side only"""


@dataclass
class DiffResult:
    """Paths classified by change type, each list sorted."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)

    def paths(self) -> set[str]:
        return set(self.added) | set(self.modified) | set(self.deleted)

    def to_dict(self) -> dict:
        return {
            "added": list(self.added),
            "modified": list(self.modified),
            "deleted": list(self.deleted),
        }


@dataclass
class Change:
    """A single local change to be pushed."""

    type: ChangeType
    path: str
    local_hash: str = ""
    """Current hash on disk (empty for deletions)"""

    remote_hash: Optional[str] = None
    """Hash recorded at the last sync, if any"""

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "path": self.path,
            "localHash": self.local_hash,
            "remoteHash": self.remote_hash,
        }


def _diff_maps(local_map: dict[str, str], other_map: dict[str, str]) -> DiffResult:
    result = DiffResult()
    for path in sorted(local_map):
        if path not in other_map:
            result.added.append(path)
        elif local_map[path] != other_map[path]:
            result.modified.append(path)
    for path in sorted(other_map):
        if path not in local_map:
            result.deleted.append(path)
    return result


def diff_records(
    local: Iterable[FileRecord], remote: Iterable[FileRecord]
) -> DiffResult:
    """Compare local records with remote records.

    A local path unknown remotely is *added*, a path on both sides with a
    different hash is *modified*, and a remote path missing locally is
    *deleted*. Paths whose hashes match are left out.

    Args:
        local: Records from the local scan
        remote: Records reported by the server

    Returns:
        DiffResult
    """
    return _diff_maps(records_to_map(local), records_to_map(remote))


def diff_against_state(local: Iterable[FileRecord], state: SyncState) -> DiffResult:
    """Compare a local scan with the hashes recorded at the last sync."""
    return _diff_maps(records_to_map(local), dict(state.files))


def build_changes(local: Iterable[FileRecord], state: SyncState) -> list[Change]:
    """List local changes since the last sync, ordered as in the diff.

    Args:
        local: Records from the local scan
        state: State of the last sync

    Returns:
        List of Change objects (added, then modified, then deleted)
    """
    local_map = records_to_map(local)
    diff = _diff_maps(local_map, dict(state.files))
    changes: list[Change] = []

    for change_type, paths in (
        (ChangeType.ADDED, diff.added),
        (ChangeType.MODIFIED, diff.modified),
    ):
        for path in paths:
            changes.append(
                Change(
                    type=change_type,
                    path=path,
                    local_hash=local_map[path],
                    remote_hash=state.files.get(path),
                )
            )

    for path in diff.deleted:
        changes.append(
            Change(type=ChangeType.DELETED, path=path, remote_hash=state.files[path])
        )

    return changes


def find_conflicts(
    local: Iterable[FileRecord],
    remote: Iterable[FileRecord],
    state: SyncState,
) -> list[Conflict]:
    """Find paths changed on both sides since the last sync.

    A path conflicts when its local hash and its remote hash both differ
    from the synced hash and from each other. Deletions on either side are
    not reported as conflicts.
    """
    local_map = records_to_map(local)
    remote_map = records_to_map(remote)
    conflicts: list[Conflict] = []

    for path in sorted(set(local_map) & set(remote_map)):
        local_hash = local_map[path]
        remote_hash = remote_map[path]
        if local_hash == remote_hash:
            continue
        synced_hash = state.files.get(path)
        if synced_hash is not None and synced_hash in (local_hash, remote_hash):
            continue
        conflicts.append(Conflict(path=path, local_hash=local_hash, remote_hash=remote_hash))

    return conflicts
