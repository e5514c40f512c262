"""Polling file watcher for a working tree."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from ..config import DEFAULT_WATCH_INTERVAL
from ..exceptions import GeelatoError
from ..models import records_to_map
from .scanner import TreeScanner

if TYPE_CHECKING:
    from ..api import GeelatoClient

logger = logging.getLogger(__name__)


class WatchEventType(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class WatchEvent:
    """A change seen between two polls."""

    type: WatchEventType
    path: Path
    """Absolute path of the file"""

    relative_path: str


class Watcher:
    """Detects created, modified and deleted files by rescanning on a timer.

    Each tick hashes the tree and compares it with the previous tick, so
    a file changed and changed back within one interval goes unnoticed.

    Examples:
        >>> stop = threading.Event()
        >>> watcher = Watcher(Path("/projects/crm"), on_event=print)
        >>> watcher.run(stop)  # blocks until stop.set()
    """

    def __init__(
        self,
        root: Path,
        interval: float = DEFAULT_WATCH_INTERVAL,
        client: Optional["GeelatoClient"] = None,
        app_id: Optional[str] = None,
        scanner: Optional[TreeScanner] = None,
        on_event: Optional[Callable[[WatchEvent], None]] = None,
    ):
        """Initialize watcher.

        Args:
            root: Working tree root
            interval: Seconds between polls
            client: Optional client notified of every event
            app_id: Application identifier sent with notifications
            scanner: Tree scanner (defaults to every tracked extension in
                the tree)
            on_event: Optional callback for every event
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.root = root
        self.interval = interval
        self.client = client
        self.app_id = app_id or ""
        self.scanner = scanner or TreeScanner(include_dirs=None)
        self.on_event = on_event
        self._snapshot: dict[str, str] = {}

    @property
    def tracked_files(self) -> int:
        return len(self._snapshot)

    def start(self) -> None:
        """Take the baseline snapshot.

        Raises:
            ScanError: If the root cannot be scanned
        """
        self._snapshot = records_to_map(self.scanner.scan(self.root))
        logger.info(f"Watching {len(self._snapshot)} files in {self.root}")

    def poll(self) -> list[WatchEvent]:
        """Rescan once and report what changed since the previous scan.

        Returns:
            Events ordered created, modified, deleted; each group by path
        """
        current = records_to_map(self.scanner.scan(self.root))
        previous = self._snapshot
        events: list[WatchEvent] = []

        for rel_path in sorted(current):
            if rel_path not in previous:
                events.append(self._event(WatchEventType.CREATED, rel_path))
        for rel_path in sorted(current):
            if rel_path in previous and previous[rel_path] != current[rel_path]:
                events.append(self._event(WatchEventType.MODIFIED, rel_path))
        for rel_path in sorted(previous):
            if rel_path not in current:
                events.append(self._event(WatchEventType.DELETED, rel_path))

        self._snapshot = current
        for event in events:
            self._dispatch(event)
        return events

    def _event(self, event_type: WatchEventType, rel_path: str) -> WatchEvent:
        return WatchEvent(
            type=event_type, path=self.root / rel_path, relative_path=rel_path
        )

    def _dispatch(self, event: WatchEvent) -> None:
        logger.info(f"File {event.type.value}: {event.relative_path}")
        if self.on_event is not None:
            self.on_event(event)
        if self.client is not None:
            try:
                self.client.send_event(event, app_id=self.app_id)
            except GeelatoError as e:
                logger.warning(f"Failed to notify platform of {event.relative_path}: {e}")

    def run(self, stop_event: threading.Event) -> None:
        """Poll until ``stop_event`` is set.

        The stop flag is checked once per tick. A failed tick is logged and
        the next one proceeds from the last good snapshot.
        """
        self.start()
        while not stop_event.wait(self.interval):
            try:
                self.poll()
            except GeelatoError as e:
                logger.error(f"Error checking changes: {e}")
        logger.info("Watcher stopped")
