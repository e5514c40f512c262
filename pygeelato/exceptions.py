"""Exception hierarchy for pygeelato."""

from typing import Optional


class GeelatoError(Exception):
    """Base exception for all pygeelato errors.

    ``step`` names the sync step that failed (``"scanning"``,
    ``"uploading"``, ...). The sync engine fills it in when an error leaves
    one of its steps, so the message shown to the user says where it broke.
    """

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        if self.step:
            return f"{self.step} failed: {self.message}"
        return self.message


class ConfigError(GeelatoError):
    """Project or user configuration is missing or invalid."""


class ScanError(GeelatoError):
    """The project directory could not be read."""


class PackageError(GeelatoError):
    """An archive could not be created."""


class ExtractError(GeelatoError):
    """An archive could not be extracted."""


class StateError(GeelatoError):
    """The sync state side-file could not be written."""


class SyncCancelledError(GeelatoError):
    """The operation was cancelled before it completed."""


class RemoteError(GeelatoError):
    """Error reported by the Geelato platform or the network layer."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        step: Optional[str] = None,
    ):
        super().__init__(message, step=step)
        self.status_code = status_code


class AuthenticationError(RemoteError):
    """HTTP 401 - missing or invalid credentials."""


class PermissionDeniedError(RemoteError):
    """HTTP 403 - the credentials lack access to the resource."""


class NotFoundError(RemoteError):
    """HTTP 404 - application, version or endpoint not found."""


class SyncConflictError(RemoteError):
    """Local and remote changed the same files since the last sync.

    Raised for HTTP 409 responses and by the pre-push conflict check, in
    which case ``conflicts`` lists the offending paths.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 409,
        conflicts: Optional[list] = None,
        step: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code, step=step)
        self.conflicts = conflicts or []


class ServerError(RemoteError):
    """Any other 4xx/5xx response."""


class NetworkError(RemoteError):
    """Connection, DNS or timeout failure before a response arrived."""


class InvalidResponseError(RemoteError):
    """The server answered with a body we could not interpret."""
