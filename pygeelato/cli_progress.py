"""CLI progress display for sync operations.

This module provides a Rich-based spinner that follows the phases reported
by the SyncEngine through its ``on_phase`` callback.
"""

from typing import Optional

from rich.console import Console
from rich.progress import (
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .sync.engine import SyncPhase
from .utils import format_size

PHASE_DESCRIPTIONS: dict[SyncPhase, str] = {
    SyncPhase.IDLE: "Done",
    SyncPhase.SCANNING: "Scanning files...",
    SyncPhase.COMPARING: "Comparing with last sync...",
    SyncPhase.PACKAGING: "Packaging changes...",
    SyncPhase.TRANSMITTING: "Transferring...",
    SyncPhase.EXTRACTING: "Extracting files...",
    SyncPhase.PERSISTING: "Saving sync state...",
    SyncPhase.FAILED: "Failed",
}


class SyncPhaseDisplay:
    """Spinner showing the current sync phase.

    Use :meth:`on_phase` as the engine's callback and
    :meth:`on_download_progress` as the download progress callback.
    When ``enabled`` is False every method is a no-op, so callers do not
    have to branch on quiet or JSON output.
    """

    def __init__(self, enabled: bool = True, console: Optional[Console] = None):
        self.enabled = enabled
        self.console = console
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def on_phase(self, phase: SyncPhase) -> None:
        if self._progress is None or self._task is None:
            return
        self._progress.update(self._task, description=PHASE_DESCRIPTIONS[phase])

    def on_download_progress(self, downloaded: int, total: int) -> None:
        if self._progress is None or self._task is None:
            return
        if total:
            text = f"Downloading {format_size(downloaded)}/{format_size(total)}"
        else:
            text = f"Downloading {format_size(downloaded)}"
        self._progress.update(self._task, description=text)

    def __enter__(self) -> "SyncPhaseDisplay":
        """Enter context manager - start progress display."""
        if not self.enabled:
            return self
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task("Starting...", total=None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
