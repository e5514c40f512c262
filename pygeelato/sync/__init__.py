"""Sync engine for pygeelato - push, pull, diff and watch operations."""

from .comparator import (
    Change,
    ChangeType,
    DiffResult,
    build_changes,
    diff_against_state,
    diff_records,
    find_conflicts,
)
from .engine import PullResult, PushResult, SyncEngine, SyncPhase, SyncStatusReport
from .packager import (
    create_package,
    extract_package,
    read_package_bytes,
    read_upload_files,
    write_package,
)
from .scanner import DEFAULT_IGNORE_DIRS, PROJECT_DIRS, TreeScanner
from .state import SyncState, SyncStateStore
from .watcher import WatchEvent, WatchEventType, Watcher

__all__ = [
    "SyncEngine",
    "SyncPhase",
    "PushResult",
    "PullResult",
    "SyncStatusReport",
    "TreeScanner",
    "PROJECT_DIRS",
    "DEFAULT_IGNORE_DIRS",
    "SyncState",
    "SyncStateStore",
    "Change",
    "ChangeType",
    "DiffResult",
    "build_changes",
    "diff_against_state",
    "diff_records",
    "find_conflicts",
    "create_package",
    "extract_package",
    "read_package_bytes",
    "read_upload_files",
    "write_package",
    "Watcher",
    "WatchEvent",
    "WatchEventType",
]
