"""Directory scanning utilities for sync operations."""

import logging
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from ..exceptions import ScanError
from ..models import FileCategory, FileRecord
from ..utils import sha256_file

logger = logging.getLogger(__name__)

# Top-level project directories that hold platform artifacts
PROJECT_DIRS: tuple[str, ...] = ("meta", "api", "page", "workflow")

# Extensions tracked when scanning the whole tree (watch mode)
WATCH_EXTENSIONS: frozenset[str] = frozenset(
    {".json", ".js", ".py", ".go", ".xml", ".bpmn"}
)

# Directory names never descended into
DEFAULT_IGNORE_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        ".geelato",
        ".idea",
        ".vscode",
        "__pycache__",
        "node_modules",
        "vendor",
    }
)


class TreeScanner:
    """Walks a working tree and hashes the files that take part in sync.

    Two selection modes exist:

    * project mode (default) - every file below one of ``include_dirs``
    * extension mode (``include_dirs=None``) - every file in the tree whose
      extension is in ``extensions``

    In both modes a path is skipped when any of its directories is named in
    ``ignore_dirs``. Files that cannot be hashed are logged and left out;
    only an unreadable root aborts the scan.

    Examples:
        >>> scanner = TreeScanner()
        >>> records = scanner.scan(Path("/projects/crm"))
        >>> watch_scanner = TreeScanner(include_dirs=None)
    """

    def __init__(
        self,
        include_dirs: Optional[Iterable[str]] = PROJECT_DIRS,
        extensions: Optional[Iterable[str]] = None,
        ignore_dirs: Iterable[str] = DEFAULT_IGNORE_DIRS,
    ):
        """Initialize tree scanner.

        Args:
            include_dirs: Top-level directories to include, or None to scan
                the whole tree
            extensions: Extensions to include (``None`` means all in project
                mode and :data:`WATCH_EXTENSIONS` in extension mode)
            ignore_dirs: Directory names to skip at any depth
        """
        self.include_dirs = tuple(include_dirs) if include_dirs is not None else None
        if extensions is None and self.include_dirs is None:
            extensions = WATCH_EXTENSIONS
        self.extensions = (
            frozenset(ext.lower() for ext in extensions) if extensions is not None else None
        )
        self.ignore_dirs = frozenset(ignore_dirs)

    def should_ignore(self, relative_path: str) -> bool:
        """Check whether a relative file path is excluded from the scan."""
        parts = PurePosixPath(relative_path).parts
        if any(part in self.ignore_dirs for part in parts[:-1]):
            return True
        if self.include_dirs is not None:
            if len(parts) < 2 or parts[0] not in self.include_dirs:
                return True
        if self.extensions is not None:
            if PurePosixPath(relative_path).suffix.lower() not in self.extensions:
                return True
        return False

    def _walk(self, directory: Path) -> Iterable[Path]:
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except PermissionError as e:
            # A subdirectory we cannot list is skipped like a bad file
            logger.warning(f"Skipping unreadable directory {directory}: {e}")
            return
        for item in entries:
            if item.is_dir() and not item.is_symlink():
                if item.name in self.ignore_dirs:
                    continue
                yield from self._walk(item)
            elif item.is_file():
                yield item

    def scan(self, root: Path) -> list[FileRecord]:
        """Scan a project root and return records sorted by path.

        Args:
            root: Working tree root

        Returns:
            List of FileRecord objects

        Raises:
            ScanError: If the root does not exist or cannot be listed
        """
        if not root.is_dir():
            raise ScanError(f"Project directory does not exist: {root}")
        try:
            # Listing the root up front turns an unreadable root into an error
            next(iter(root.iterdir()), None)
        except OSError as e:
            raise ScanError(f"Cannot read project directory {root}: {e}") from e

        records: list[FileRecord] = []
        for file_path in self._walk(root):
            relative_path = file_path.relative_to(root).as_posix()
            if self.should_ignore(relative_path):
                continue
            try:
                file_hash = sha256_file(file_path)
            except OSError as e:
                logger.warning(f"Failed to hash {relative_path}: {e}")
                continue
            records.append(
                FileRecord(
                    path=relative_path,
                    hash=file_hash,
                    category=FileCategory.for_path(relative_path),
                )
            )

        records.sort(key=lambda r: r.path)
        logger.debug(f"Scanned {len(records)} file(s) under {root}")
        return records
