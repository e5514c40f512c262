"""Unit tests for the Geelato API client."""

import base64
import json

import httpx
import pytest

from pygeelato.api import GeelatoClient
from pygeelato.exceptions import (
    AuthenticationError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    ServerError,
    SyncCancelledError,
    SyncConflictError,
)
from pygeelato.models import FileCategory, FileRecord, UploadFile
from pygeelato.sync.watcher import WatchEvent, WatchEventType
from pygeelato.utils import CHUNK_SIZE, CancelToken

API_URL = "http://geelato.test:8080"


def make_client(handler, api_key=None) -> GeelatoClient:
    """Create a client whose requests are answered by ``handler``."""
    return GeelatoClient(API_URL, api_key=api_key, transport=httpx.MockTransport(handler))


class TestGeelatoClient:
    """Tests for GeelatoClient initialization and basic functionality."""

    def test_init(self):
        client = GeelatoClient(API_URL + "/", api_key="key")
        assert client.api_url == API_URL
        assert client.timeout == 30.0
        assert client.transfer_timeout == 300.0

    def test_empty_url_raises(self):
        with pytest.raises(ValueError):
            GeelatoClient("")

    def test_bearer_header(self):
        """Test that the API key is sent as a bearer token."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "ok"})

        with make_client(handler, api_key="secret") as client:
            assert client.ping() is True
        assert seen["auth"] == "Bearer secret"

    def test_no_header_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200)

        with make_client(handler) as client:
            client.ping()
        assert seen["auth"] is None


class TestErrorMapping:
    """Tests for status code to exception mapping."""

    @pytest.mark.parametrize(
        "status_code, error_cls",
        [
            (401, AuthenticationError),
            (403, PermissionDeniedError),
            (404, NotFoundError),
            (409, SyncConflictError),
            (500, ServerError),
            (418, ServerError),
        ],
    )
    def test_status_mapping(self, status_code, error_cls):
        def handler(request):
            return httpx.Response(status_code, json={"message": "nope"})

        with make_client(handler) as client:
            with pytest.raises(error_cls) as exc_info:
                client.fetch_status("app-1")

        assert exc_info.value.status_code == status_code
        assert "nope" in str(exc_info.value)

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(NetworkError):
                client.ping()

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with make_client(handler) as client:
            with pytest.raises(NetworkError, match="timed out"):
                client.fetch_status("app-1")

    def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        with make_client(handler) as client:
            with pytest.raises(InvalidResponseError):
                client.fetch_status("app-1")

    def test_cancelled_before_request(self):
        """Test that a cancelled token stops the request from being sent."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        token = CancelToken()
        token.cancel()
        with make_client(handler) as client:
            with pytest.raises(SyncCancelledError):
                client.fetch_status("app-1", cancel=token)
        assert calls == []


class TestUpload:
    """Tests for upload_package."""

    def test_json_upload(self):
        """Test the JSON body of an upload, content base64-encoded."""
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["content_type"] = request.headers["Content-Type"]
            seen["payload"] = json.loads(request.read())
            return httpx.Response(200, json={"code": 200, "data": {"version": "v42"}})

        with make_client(handler) as client:
            version = client.upload_package(
                app_id="app-1",
                version="20250115103000",
                branch="main",
                message="add user",
                author="alice",
                files=[UploadFile(path="meta/a.json", content=b'{"a": 1}', hash="h1")],
                deleted=["meta/old.json"],
            )

        assert version == "v42"
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/cli/app/upload"
        assert seen["content_type"] == "application/json"
        assert seen["payload"] == {
            "appId": "app-1",
            "version": "20250115103000",
            "branch": "main",
            "message": "add user",
            "author": "alice",
            "files": [
                {
                    "path": "meta/a.json",
                    "content": base64.b64encode(b'{"a": 1}').decode("ascii"),
                    "hash": "h1",
                }
            ],
            "deleted": ["meta/old.json"],
        }

    def test_version_falls_back_to_proposed(self):
        def handler(request):
            return httpx.Response(200)

        with make_client(handler) as client:
            version = client.upload_package(
                "app-1", "20250115103000", "main", "msg", "alice", files=[]
            )
        assert version == "20250115103000"

    def test_conflict(self):
        def handler(request):
            return httpx.Response(409, json={"message": "remote changed"})

        with make_client(handler) as client:
            with pytest.raises(SyncConflictError, match="remote changed"):
                client.upload_package("app-1", "v", "main", "msg", "alice", files=[])


class TestDownload:
    """Tests for download_package."""

    def test_streamed_download(self):
        payload = b"zip-bytes" * 5000
        seen = {}
        progress = []

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, content=payload)

        with make_client(handler) as client:
            data = client.download_package(
                "app-1",
                "v7",
                progress_callback=lambda done, total: progress.append(done),
            )

        assert data == payload
        assert seen["params"] == {"appId": "app-1", "version": "v7"}
        assert progress[-1] == len(payload)

    def test_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"message": "no such version"})

        with make_client(handler) as client:
            with pytest.raises(NotFoundError, match="no such version"):
                client.download_package("app-1", "v999")

    def test_cancelled_between_chunks(self):
        """Test that cancelling during a download stops reading the body."""
        token = CancelToken()
        progress = []

        def handler(request):
            return httpx.Response(200, content=b"x" * (CHUNK_SIZE * 4))

        def on_progress(done, total):
            progress.append(done)
            token.cancel()

        with make_client(handler) as client:
            with pytest.raises(SyncCancelledError):
                client.download_package(
                    "app-1", "v7", cancel=token, progress_callback=on_progress
                )

        assert progress == [CHUNK_SIZE]


class TestMetadata:
    """Tests for file list, conflict check, status and events."""

    def test_fetch_remote_files(self):
        """Test parsing of the enveloped file list."""

        def handler(request):
            assert request.url.params["appId"] == "app-1"
            return httpx.Response(
                200,
                json={
                    "code": 200,
                    "data": [
                        {"path": "meta/b.json", "hash": "2", "type": "model"},
                        {"path": "/api/a.js", "hash": "1"},
                        {"hash": "no-path"},
                        "garbage",
                    ],
                },
            )

        with make_client(handler) as client:
            files = client.fetch_remote_files("app-1")

        assert files == [
            FileRecord(path="api/a.js", hash="1", category=FileCategory.API),
            FileRecord(path="meta/b.json", hash="2", category=FileCategory.MODEL),
        ]

    def test_fetch_remote_files_object_form(self):
        def handler(request):
            return httpx.Response(200, json={"files": [{"path": "a.json", "hash": "1"}]})

        with make_client(handler) as client:
            assert [f.path for f in client.fetch_remote_files("app-1")] == ["a.json"]

    def test_fetch_remote_files_invalid(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        with make_client(handler) as client:
            with pytest.raises(InvalidResponseError):
                client.fetch_remote_files("app-1")

    def test_check_conflicts(self):
        """Test the conflict check request and response."""
        seen = {}

        def handler(request):
            seen["payload"] = json.loads(request.read())
            return httpx.Response(
                200,
                json={
                    "hasConflict": True,
                    "conflicts": [
                        {"path": "a.json", "localHash": "1", "remoteHash": "2"},
                        {"path": "b.json", "localHash": "3", "remoteHash": "3"},
                    ],
                },
            )

        with make_client(handler) as client:
            result = client.check_conflicts(
                "app-1", "v1", [FileRecord(path="a.json", hash="1")]
            )

        assert seen["payload"] == {
            "appId": "app-1",
            "version": "v1",
            "files": [{"path": "a.json", "hash": "1"}],
        }
        assert result.has_conflict
        assert [c.path for c in result.conflicts] == ["a.json"]

    def test_fetch_status(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "appId": "app-1",
                    "version": "v9",
                    "branch": "main",
                    "status": "synced",
                },
            )

        with make_client(handler) as client:
            status = client.fetch_status("app-1")

        assert status.version == "v9"
        assert status.status == "synced"

    def test_send_event(self, tmp_path):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["payload"] = json.loads(request.read())
            return httpx.Response(200)

        event = WatchEvent(
            type=WatchEventType.MODIFIED,
            path=tmp_path / "meta/a.json",
            relative_path="meta/a.json",
        )
        with make_client(handler) as client:
            client.send_event(event, app_id="app-1")

        assert seen["path"] == "/api/cli/app/event"
        assert seen["payload"] == {
            "appId": "app-1",
            "type": "modified",
            "path": "meta/a.json",
        }
