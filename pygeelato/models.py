"""Data models shared by the API client and the sync engine."""

import base64
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Iterable, Optional


class FileCategory(str, Enum):
    """Kind of platform artifact a file holds."""

    MODEL = "model"
    API = "api"
    WORKFLOW = "workflow"
    OTHER = "other"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "FileCategory":
        """Lenient conversion for values reported by the server."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER

    @classmethod
    def for_path(cls, relative_path: str) -> "FileCategory":
        """Classify a project-relative path.

        The top-level directory decides first (``meta/`` holds models,
        ``api/`` scripts, ``workflow/`` definitions, ``page/`` pages); files
        elsewhere fall back to their extension.
        """
        parts = PurePosixPath(relative_path).parts
        top = parts[0] if len(parts) > 1 else ""
        if top == "meta":
            return cls.MODEL
        if top == "api":
            return cls.API
        if top == "workflow":
            return cls.WORKFLOW
        if top == "page":
            return cls.OTHER

        suffix = PurePosixPath(relative_path).suffix.lower()
        if suffix == ".json":
            return cls.MODEL
        if suffix in (".js", ".py", ".go"):
            return cls.API
        if suffix in (".xml", ".bpmn"):
            return cls.WORKFLOW
        return cls.OTHER


@dataclass(frozen=True)
class FileRecord:
    """A file taking part in sync: where it is, what it contains, what it is."""

    path: str
    """Project-relative path using forward slashes"""

    hash: str
    """Hex SHA-256 digest of the content"""

    category: FileCategory = FileCategory.OTHER

    def to_dict(self) -> dict:
        return {"path": self.path, "hash": self.hash, "type": self.category.value}

    @classmethod
    def from_dict(cls, data: dict) -> "FileRecord":
        """Build a record from the server's ``{path, hash, type}`` shape.

        Raises:
            ValueError: If the entry has no path
        """
        path = str(data.get("path") or "").replace("\\", "/").lstrip("/")
        if not path:
            raise ValueError("file record without path")
        category = data.get("type")
        return cls(
            path=path,
            hash=str(data.get("hash") or ""),
            category=(
                FileCategory.from_value(category)
                if category
                else FileCategory.for_path(path)
            ),
        )


def records_to_map(records: Iterable[FileRecord]) -> dict[str, str]:
    """Map relative path to hash."""
    return {record.path: record.hash for record in records}


@dataclass(frozen=True)
class Conflict:
    """A path changed independently on both sides since the last sync."""

    path: str
    local_hash: str
    remote_hash: str

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "localHash": self.local_hash,
            "remoteHash": self.remote_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Conflict":
        return cls(
            path=str(data.get("path") or ""),
            local_hash=str(data.get("localHash") or ""),
            remote_hash=str(data.get("remoteHash") or ""),
        )


@dataclass
class UploadFile:
    """One file of an upload: its path, content and content hash."""

    path: str
    content: bytes
    hash: str

    def to_dict(self) -> dict:
        # Content travels base64-encoded inside the JSON body
        return {
            "path": self.path,
            "content": base64.b64encode(self.content).decode("ascii"),
            "hash": self.hash,
        }


@dataclass
class ConflictCheckResult:
    """Answer of the conflict-check endpoint."""

    has_conflict: bool = False
    conflicts: list[Conflict] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict) -> "ConflictCheckResult":
        conflicts = [
            Conflict.from_dict(item)
            for item in data.get("conflicts") or []
            if isinstance(item, dict)
        ]
        # Identical hashes are not a conflict, whatever the server says
        conflicts = [c for c in conflicts if c.local_hash != c.remote_hash]
        return cls(has_conflict=bool(conflicts), conflicts=conflicts)


@dataclass
class RemoteStatus:
    """Sync status of an application on the platform."""

    app_id: str = ""
    version: str = ""
    branch: str = ""
    status: str = ""
    message: str = ""
    author: str = ""
    created_at: str = ""

    @classmethod
    def from_api_response(cls, data: dict) -> "RemoteStatus":
        return cls(
            app_id=str(data.get("appId") or ""),
            version=str(data.get("version") or ""),
            branch=str(data.get("branch") or ""),
            status=str(data.get("status") or ""),
            message=str(data.get("message") or ""),
            author=str(data.get("author") or ""),
            created_at=str(data.get("createdAt") or ""),
        )
