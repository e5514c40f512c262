"""API client for the Geelato platform."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

import httpx

from .exceptions import (
    AuthenticationError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    ServerError,
    SyncConflictError,
)
from .models import (
    ConflictCheckResult,
    FileRecord,
    RemoteStatus,
    UploadFile,
)
from .utils import (
    CHUNK_SIZE,
    DEFAULT_TIMEOUT,
    DEFAULT_TRANSFER_TIMEOUT,
    PING_TIMEOUT,
    CancelToken,
)

if TYPE_CHECKING:
    from .sync.watcher import WatchEvent

logger = logging.getLogger(__name__)

UPLOAD_ENDPOINT = "/api/cli/app/upload"
DOWNLOAD_ENDPOINT = "/api/cli/app/download"
FILES_ENDPOINT = "/api/cli/app/files"
CONFLICT_ENDPOINT = "/api/cli/app/check-conflict"
STATUS_ENDPOINT = "/api/cli/app/status"
EVENT_ENDPOINT = "/api/cli/app/event"
HEALTH_ENDPOINT = "/health"


class GeelatoClient:
    """Client for the Geelato platform's CLI endpoints.

    Every call has a timeout (``timeout`` for metadata, ``transfer_timeout``
    for package upload/download) and fails fast: HTTP errors are mapped to
    typed exceptions and nothing is retried here.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize Geelato API client.

        Args:
            api_url: Base URL of the platform (``scheme://host[:port]``)
            api_key: Optional API key, sent as a bearer token
            timeout: Timeout for metadata requests in seconds (default: 30)
            transfer_timeout: Timeout for package transfers in seconds
                (default: 300)
            transport: Optional httpx transport (used by tests)
        """
        if not api_url:
            raise ValueError("API URL cannot be empty")
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transfer_timeout = transfer_timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.Client(
                base_url=self.api_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> GeelatoClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # =========================
    # Error handling
    # =========================

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the server-provided message from an error response."""
        try:
            if response.content:
                data = response.json()
                if isinstance(data, dict):
                    msg = data.get("message") or data.get("msg") or data.get("error")
                    if msg:
                        return str(msg)
        except ValueError:
            pass
        text = response.text.strip() if response.content else ""
        return text[:200] or response.reason_phrase or "unknown error"

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map an error status to the matching exception.

        Raises:
            AuthenticationError: 401
            PermissionDeniedError: 403
            NotFoundError: 404
            SyncConflictError: 409
            ServerError: any other status >= 400
        """
        status_code = response.status_code
        if status_code < 400:
            return

        message = self._error_message(response)
        if status_code == 401:
            raise AuthenticationError(f"Authentication failed: {message}", status_code)
        elif status_code == 403:
            raise PermissionDeniedError(f"Permission denied: {message}", status_code)
        elif status_code == 404:
            raise NotFoundError(f"Resource not found: {message}", status_code)
        elif status_code == 409:
            raise SyncConflictError(f"Sync conflict: {message}", status_code)
        raise ServerError(f"Server error {status_code}: {message}", status_code)

    @staticmethod
    def _unwrap(data: Any) -> Any:
        """Strip the ``{code, data}`` envelope some endpoints use."""
        if isinstance(data, dict) and "data" in data and "code" in data:
            return data["data"]
        return data

    def _request(
        self,
        method: str,
        endpoint: str,
        cancel: CancelToken | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        """Make an API request and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            cancel: Optional cancellation token checked before sending
            timeout: Per-request timeout override in seconds
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data (``{}`` for empty bodies)

        Raises:
            RemoteError: If the request fails
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        client = self._get_client()
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)

        logger.debug(f"{method} {endpoint}")
        try:
            response = client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {endpoint} timed out: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: {e}") from e

        self._raise_for_status(response)

        if not response.content:
            return {}
        try:
            return self._unwrap(response.json())
        except ValueError as e:
            content_type = response.headers.get("Content-Type", "")
            raise InvalidResponseError(
                f"Invalid JSON response from server ({content_type or 'no content type'})",
                response.status_code,
            ) from e

    # =========================
    # Package transfer
    # =========================

    def upload_package(
        self,
        app_id: str,
        version: str,
        branch: str,
        message: str,
        author: str,
        files: list[UploadFile],
        deleted: list[str] | None = None,
        cancel: CancelToken | None = None,
    ) -> str:
        """Upload the changed files of an application.

        The body is JSON: push metadata plus a ``files`` list whose entries
        carry path, base64 content and hash. Paths deleted locally are listed
        under ``deleted``.

        Args:
            app_id: Application identifier
            version: Version token proposed by the client
            branch: Branch name
            message: Push message
            author: Author name
            files: Added and modified files with their content
            deleted: Paths deleted locally since the last sync
            cancel: Optional cancellation token

        Returns:
            Version token assigned by the server (``version`` if it returns none)

        Raises:
            SyncConflictError: If the server rejects the push with 409
            RemoteError: For any other failure
        """
        payload = {
            "appId": app_id,
            "version": version,
            "branch": branch,
            "message": message,
            "author": author,
            "files": [f.to_dict() for f in files],
            "deleted": list(deleted or []),
        }
        result = self._request(
            "POST",
            UPLOAD_ENDPOINT,
            cancel=cancel,
            timeout=self.transfer_timeout,
            json=payload,
        )
        new_version = result.get("version") if isinstance(result, dict) else None
        return str(new_version) if new_version else version

    def download_package(
        self,
        app_id: str,
        version: str = "latest",
        cancel: CancelToken | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> bytes:
        """Download the application package as zip bytes.

        The body is streamed; the cancellation token is checked between
        chunks.

        Args:
            app_id: Application identifier
            version: Version to download (default: latest)
            cancel: Optional cancellation token
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)

        Returns:
            Archive content

        Raises:
            RemoteError: If the download fails
            SyncCancelledError: If cancelled mid-transfer
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        client = self._get_client()
        params = {"appId": app_id, "version": version}

        chunks: list[bytes] = []
        try:
            with client.stream(
                "GET",
                DOWNLOAD_ENDPOINT,
                params=params,
                timeout=httpx.Timeout(self.transfer_timeout),
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    self._raise_for_status(response)

                total_size = int(response.headers.get("Content-Length", 0) or 0)
                bytes_downloaded = 0
                for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    chunks.append(chunk)
                    bytes_downloaded += len(chunk)
                    if progress_callback:
                        progress_callback(bytes_downloaded, total_size)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Download timed out: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error during download: {e}") from e

        logger.debug(f"Downloaded {bytes_downloaded} bytes for {app_id}@{version}")
        return b"".join(chunks)

    # =========================
    # Metadata
    # =========================

    def fetch_remote_files(
        self, app_id: str, cancel: CancelToken | None = None
    ) -> list[FileRecord]:
        """List the files the platform holds for an application.

        Returns:
            List of FileRecord sorted by path

        Raises:
            InvalidResponseError: If the body is not a list of file objects
        """
        result = self._request(
            "GET", FILES_ENDPOINT, cancel=cancel, params={"appId": app_id}
        )
        if isinstance(result, dict) and isinstance(result.get("files"), list):
            result = result["files"]
        if not isinstance(result, list):
            raise InvalidResponseError("File list response is not a list")

        records: dict[str, FileRecord] = {}
        for item in result:
            if not isinstance(item, dict):
                continue
            try:
                record = FileRecord.from_dict(item)
            except ValueError:
                logger.debug(f"Skipping malformed remote file entry: {item!r}")
                continue
            records[record.path] = record
        return sorted(records.values(), key=lambda r: r.path)

    def check_conflicts(
        self,
        app_id: str,
        version: str,
        files: list[FileRecord],
        cancel: CancelToken | None = None,
    ) -> ConflictCheckResult:
        """Ask the platform which of ``files`` conflict with its state.

        Args:
            app_id: Application identifier
            version: Version the local tree was last synced with
            files: Local records to check
        """
        payload = {
            "appId": app_id,
            "version": version,
            "files": [{"path": f.path, "hash": f.hash} for f in files],
        }
        result = self._request("POST", CONFLICT_ENDPOINT, cancel=cancel, json=payload)
        if not isinstance(result, dict):
            raise InvalidResponseError("Conflict check response is not an object")
        return ConflictCheckResult.from_api_response(result)

    def fetch_status(
        self, app_id: str, cancel: CancelToken | None = None
    ) -> RemoteStatus:
        """Get the platform-side sync status of an application."""
        result = self._request(
            "GET", STATUS_ENDPOINT, cancel=cancel, params={"appId": app_id}
        )
        if not isinstance(result, dict):
            raise InvalidResponseError("Status response is not an object")
        return RemoteStatus.from_api_response(result)

    def ping(self) -> bool:
        """Check that the platform is reachable.

        Returns:
            True when the health endpoint answers successfully

        Raises:
            RemoteError: If it does not
        """
        self._request("GET", HEALTH_ENDPOINT, timeout=PING_TIMEOUT)
        return True

    def send_event(self, event: WatchEvent, app_id: str = "") -> None:
        """Notify the platform of a local file change seen by the watcher."""
        payload = {
            "appId": app_id,
            "type": event.type.value,
            "path": event.relative_path,
        }
        self._request("POST", EVENT_ENDPOINT, json=payload)

