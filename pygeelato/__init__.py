"""Geelato CLI - sync Geelato low-code applications with the platform."""

from .api import GeelatoClient
from .exceptions import (
    AuthenticationError,
    ConfigError,
    ExtractError,
    GeelatoError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    PackageError,
    PermissionDeniedError,
    RemoteError,
    ScanError,
    ServerError,
    StateError,
    SyncCancelledError,
    SyncConflictError,
)
from .utils import sha256_bytes, sha256_file

__all__ = [
    "GeelatoClient",
    "GeelatoError",
    "AuthenticationError",
    "ConfigError",
    "ExtractError",
    "InvalidResponseError",
    "NetworkError",
    "NotFoundError",
    "PackageError",
    "PermissionDeniedError",
    "RemoteError",
    "ScanError",
    "ServerError",
    "StateError",
    "SyncCancelledError",
    "SyncConflictError",
    "sha256_bytes",
    "sha256_file",
]
