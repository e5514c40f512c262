"""Core sync engine for push, pull and read-only comparisons."""

import logging
import zipfile
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from ..config import write_project_config
from ..context import SyncContext
from ..exceptions import (
    ConfigError,
    ExtractError,
    GeelatoError,
    PackageError,
    RemoteError,
    ScanError,
    StateError,
    SyncConflictError,
)
from ..models import Conflict, FileRecord
from ..utils import CancelToken, version_token
from .comparator import (
    Change,
    ChangeType,
    DiffResult,
    build_changes,
    diff_against_state,
    diff_records,
    find_conflicts,
)
from .packager import create_package, read_package_bytes, read_upload_files
from .scanner import TreeScanner
from .state import SyncState, SyncStateStore

if TYPE_CHECKING:
    from ..api import GeelatoClient

logger = logging.getLogger(__name__)

LATEST_VERSION = "latest"


class SyncPhase(str, Enum):
    """Where a sync operation currently is."""

    IDLE = "idle"
    SCANNING = "scanning"
    COMPARING = "comparing"
    PACKAGING = "packaging"
    TRANSMITTING = "transmitting"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    FAILED = "failed"


@dataclass
class PushResult:
    """Outcome of a push."""

    version: str = ""
    changes: list[Change] = field(default_factory=list)
    dry_run: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def uploaded(self) -> list[str]:
        return [c.path for c in self.changes if c.type != ChangeType.DELETED]

    @property
    def deleted(self) -> list[str]:
        return [c.path for c in self.changes if c.type == ChangeType.DELETED]

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "dryRun": self.dry_run,
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class PullResult:
    """Outcome of a pull: the version fetched and the files written."""

    version: str = ""
    files: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"version": self.version, "files": sorted(self.files)}


@dataclass
class SyncStatusReport:
    """Local and remote position of a working tree.

    ``ahead`` holds local changes since the last sync, ``behind`` remote
    changes since the last sync.
    """

    app_id: str = ""
    local_version: str = ""
    remote_version: str = ""
    last_sync_at: str = ""
    ahead: DiffResult = field(default_factory=DiffResult)
    behind: DiffResult = field(default_factory=DiffResult)
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.ahead.is_empty and self.behind.is_empty

    def to_dict(self) -> dict:
        return {
            "appId": self.app_id,
            "localVersion": self.local_version,
            "remoteVersion": self.remote_version,
            "lastSyncAt": self.last_sync_at,
            "ahead": self.ahead.to_dict(),
            "behind": self.behind.to_dict(),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


class SyncEngine:
    """Orchestrates scanning, packaging, transfer and state bookkeeping.

    Every operation runs to completion on the calling thread. Errors leave
    the engine tagged with the step that failed (see
    :attr:`GeelatoError.step`) and the phase set to ``FAILED``.

    Examples:
        >>> context = SyncContext(root=root, project=load_project_config(root))
        >>> engine = SyncEngine(context, client)
        >>> result = engine.push("add user model")
        >>> print(f"Pushed {len(result.changes)} change(s) as {result.version}")
    """

    def __init__(
        self,
        context: SyncContext,
        client: Optional["GeelatoClient"] = None,
        scanner: Optional[TreeScanner] = None,
        on_phase: Optional[Callable[[SyncPhase], None]] = None,
    ):
        """Initialize sync engine.

        Args:
            context: Project root, configuration and settings
            client: Geelato API client (only the local diff works without one)
            scanner: Tree scanner (defaults to the project directories)
            on_phase: Optional callback invoked on every phase change
        """
        self.context = context
        self.client = client
        self.scanner = scanner or TreeScanner()
        self.state_store = SyncStateStore(context.state_file)
        self.on_phase = on_phase
        self.phase = SyncPhase.IDLE

    @property
    def remote(self) -> "GeelatoClient":
        if self.client is None:
            raise ConfigError("No platform client configured")
        return self.client

    def _set_phase(self, phase: SyncPhase) -> None:
        self.phase = phase
        logger.debug(f"Sync phase: {phase.value}")
        if self.on_phase is not None:
            self.on_phase(phase)

    @contextmanager
    def _step(
        self, step: str, phase: SyncPhase, error_cls: type[GeelatoError]
    ) -> Generator[None, None, None]:
        """Run a block as a named step of the current operation.

        Library errors get ``step`` filled in; ``OSError`` and broken
        archives are wrapped in ``error_cls``.
        """
        self._set_phase(phase)
        try:
            yield
        except GeelatoError as e:
            if e.step is None:
                e.step = step
            self._set_phase(SyncPhase.FAILED)
            raise
        except (OSError, zipfile.BadZipFile) as e:
            self._set_phase(SyncPhase.FAILED)
            raise error_cls(str(e), step=step) from e

    def _require_app_id(self) -> str:
        app_id = self.context.app_id
        if not app_id:
            raise ConfigError("appId is not set in geelato.json")
        return app_id

    def _scan(self) -> tuple[list[FileRecord], SyncState]:
        with self._step("scanning", SyncPhase.SCANNING, ScanError):
            local = self.scanner.scan(self.context.root)
            state = self.state_store.load()
        return local, state

    # =========================
    # Push
    # =========================

    def push(
        self,
        message: str,
        force: bool = False,
        check_conflicts: bool = True,
        dry_run: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> PushResult:
        """Upload local changes made since the last sync.

        Added and modified files are packaged, then sent with their content
        and hash; deleted paths are listed alongside them. The state side-file is only written
        after the platform accepted the upload.

        Args:
            message: Push message
            force: Skip the conflict check
            check_conflicts: Ask the platform for conflicts before uploading
            dry_run: Only compute the changes
            cancel: Optional cancellation token

        Returns:
            PushResult (empty when there was nothing to push)

        Raises:
            SyncConflictError: If the conflict check or the platform reports
                conflicting changes
            GeelatoError: If any step fails
        """
        app_id = self._require_app_id()
        local, state = self._scan()

        with self._step("comparing", SyncPhase.COMPARING, ScanError):
            changes = build_changes(local, state)

        if not changes:
            logger.info("Nothing to push")
            self._set_phase(SyncPhase.IDLE)
            return PushResult(version=state.version)

        if dry_run:
            self._set_phase(SyncPhase.IDLE)
            return PushResult(version=state.version, changes=changes, dry_run=True)

        if check_conflicts and not force:
            with self._step("comparing", SyncPhase.COMPARING, RemoteError):
                conflicts = self._remote_conflicts(app_id, local, state, changes, cancel)
                if conflicts:
                    raise SyncConflictError(
                        f"{len(conflicts)} file(s) changed on both sides; "
                        "pull first or push with --force",
                        conflicts=conflicts,
                    )

        upload_paths = [c.path for c in changes if c.type != ChangeType.DELETED]
        deleted = [c.path for c in changes if c.type == ChangeType.DELETED]
        settings = self.context.settings

        with self._step("packaging", SyncPhase.PACKAGING, PackageError):
            with create_package(self.context.root, upload_paths) as archive:
                upload_files = read_upload_files(archive)

        with self._step("uploading", SyncPhase.TRANSMITTING, RemoteError):
            new_version = self.remote.upload_package(
                app_id=app_id,
                version=version_token(),
                branch=settings.branch,
                message=message,
                author=settings.author,
                files=upload_files,
                deleted=deleted,
                cancel=cancel,
            )

        with self._step("persisting", SyncPhase.PERSISTING, StateError):
            # Record the hashes of the bytes actually sent
            state.apply_push({f.path: f.hash for f in upload_files}, deleted, new_version)
            self.state_store.save(state)

        logger.info(
            f"Pushed {len(upload_paths)} file(s), deleted {len(deleted)} "
            f"as version {new_version}"
        )
        self._set_phase(SyncPhase.IDLE)
        return PushResult(version=new_version, changes=changes)

    def _remote_conflicts(
        self,
        app_id: str,
        local: list[FileRecord],
        state: SyncState,
        changes: list[Change],
        cancel: Optional[CancelToken],
    ) -> list[Conflict]:
        changed = {c.path for c in changes if c.type != ChangeType.DELETED}
        candidates = [record for record in local if record.path in changed]
        if not candidates:
            return []
        result = self.remote.check_conflicts(
            app_id, state.version, candidates, cancel=cancel
        )
        return result.conflicts if result.has_conflict else []

    def check_conflicts(self, cancel: Optional[CancelToken] = None) -> list[Conflict]:
        """Report the local changes the platform considers conflicting.

        Nothing is resolved or written; the caller decides what to do.
        """
        app_id = self._require_app_id()
        local, state = self._scan()
        with self._step("comparing", SyncPhase.COMPARING, RemoteError):
            changes = build_changes(local, state)
            conflicts = self._remote_conflicts(app_id, local, state, changes, cancel)
        self._set_phase(SyncPhase.IDLE)
        return conflicts

    # =========================
    # Pull / clone
    # =========================

    def pull(
        self,
        version: str = LATEST_VERSION,
        cancel: Optional[CancelToken] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> PullResult:
        """Download a version of the application into the working tree.

        Existing files are overwritten. If extraction fails midway, the
        files written before the failure stay on disk and the state
        side-file is left untouched. Only paths the scanner tracks are
        recorded in the state.

        Args:
            version: Version to fetch (``"latest"`` asks the platform)
            cancel: Optional cancellation token
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)

        Returns:
            PullResult with the fetched version and extracted file hashes
        """
        app_id = self._require_app_id()

        with self._step("downloading", SyncPhase.TRANSMITTING, RemoteError):
            if version == LATEST_VERSION:
                remote = self.remote.fetch_status(app_id, cancel=cancel)
                version = remote.version or LATEST_VERSION
            data = self.remote.download_package(
                app_id,
                version,
                cancel=cancel,
                progress_callback=progress_callback,
            )

        with self._step("extracting", SyncPhase.EXTRACTING, ExtractError):
            files = read_package_bytes(data, self.context.root)

        # Paths the scanner never reports would show up as local deletions
        tracked = {
            path: file_hash
            for path, file_hash in files.items()
            if not self.scanner.should_ignore(path)
        }

        with self._step("persisting", SyncPhase.PERSISTING, StateError):
            state = self.state_store.load()
            state.replace(tracked, version)
            self.state_store.save(state)

        logger.info(f"Pulled {len(files)} file(s) at version {version}")
        self._set_phase(SyncPhase.IDLE)
        return PullResult(version=version, files=files)

    def clone(
        self, version: str = LATEST_VERSION, cancel: Optional[CancelToken] = None
    ) -> PullResult:
        """Pull into a new project directory and write its ``geelato.json``.

        Raises:
            ConfigError: If the target exists and is not an empty directory,
                or the project has no repo URL
        """
        root = self.context.root
        if root.exists() and not root.is_dir():
            raise ConfigError(f"Target exists and is not a directory: {root}")
        if root.exists() and any(root.iterdir()):
            raise ConfigError(f"Target directory is not empty: {root}")
        project = self.context.project
        if not project.repo_url:
            raise ConfigError("Cannot clone without a repo URL")

        root.mkdir(parents=True, exist_ok=True)
        result = self.pull(version=version, cancel=cancel)
        with self._step("persisting", SyncPhase.PERSISTING, ConfigError):
            write_project_config(root, project.app_id, project.repo_url, project.name)
        self._set_phase(SyncPhase.IDLE)
        return result

    # =========================
    # Read-only operations
    # =========================

    def diff(
        self, against: str = "remote", cancel: Optional[CancelToken] = None
    ) -> DiffResult:
        """Compare the working tree with the platform or the last sync.

        Args:
            against: ``"remote"`` for the platform's file list, ``"state"``
                for the hashes recorded at the last sync
            cancel: Optional cancellation token

        Raises:
            ValueError: If ``against`` is neither of the above
        """
        if against not in ("remote", "state"):
            raise ValueError(f"Cannot diff against {against!r}")

        local, state = self._scan()
        if against == "state":
            with self._step("comparing", SyncPhase.COMPARING, ScanError):
                result = diff_against_state(local, state)
        else:
            app_id = self._require_app_id()
            with self._step("comparing", SyncPhase.COMPARING, RemoteError):
                remote = self.remote.fetch_remote_files(app_id, cancel=cancel)
                result = diff_records(local, remote)
        self._set_phase(SyncPhase.IDLE)
        return result

    def status(self, cancel: Optional[CancelToken] = None) -> SyncStatusReport:
        """Summarize local and remote changes since the last sync."""
        app_id = self._require_app_id()
        local, state = self._scan()

        with self._step("comparing", SyncPhase.COMPARING, RemoteError):
            remote_status = self.remote.fetch_status(app_id, cancel=cancel)
            remote = self.remote.fetch_remote_files(app_id, cancel=cancel)
            ahead = diff_against_state(local, state)
            behind = diff_against_state(remote, state)
            conflicts = find_conflicts(local, remote, state)

        self._set_phase(SyncPhase.IDLE)
        return SyncStatusReport(
            app_id=app_id,
            local_version=state.version,
            remote_version=remote_status.version,
            last_sync_at=state.last_sync_at,
            ahead=ahead,
            behind=behind,
            conflicts=conflicts,
        )
