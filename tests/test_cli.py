"""Unit tests for the Geelato CLI commands."""

import io
import json
import zipfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from pygeelato.api import GeelatoClient
from pygeelato.cli import main
from pygeelato.config import Settings
from pygeelato.exceptions import NetworkError
from pygeelato.models import (
    Conflict,
    ConflictCheckResult,
    FileRecord,
    RemoteStatus,
)

GEELATO_JSON = {
    "meta": {"appId": "crm", "name": "CRM"},
    "config": {"repo": {"url": "http://geelato.test:8080/default/crm"}},
}


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def settings():
    """Keep the user's config file out of the tests."""
    with patch("pygeelato.cli.load_settings", side_effect=lambda: Settings()) as mock:
        yield mock


@pytest.fixture
def client():
    """Mock the API client class and return the instance commands use."""
    with patch("pygeelato.cli.GeelatoClient") as mock_class:
        instance = MagicMock(spec=GeelatoClient)
        instance.__enter__.return_value = instance
        instance.check_conflicts.return_value = ConflictCheckResult()
        instance.upload_package.return_value = "v9"
        mock_class.return_value = instance
        instance.mock_class = mock_class
        yield instance


def init_project(root: Path) -> None:
    (root / "geelato.json").write_text(json.dumps(GEELATO_JSON))


def write(relative_path: str, content: bytes) -> None:
    path = Path(relative_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def make_zip(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Geelato" in result.output
        assert "--api-key" in result.output
        for command in ("push", "pull", "clone", "diff", "status", "watch", "ping"):
            assert command in result.output

    def test_outside_project(self, runner, client):
        """Test that sync commands require geelato.json."""
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["push"])
        assert result.exit_code == 1
        assert "Not a Geelato application" in result.output


class TestPushCommand:
    """Tests for the push command."""

    def test_push(self, runner, client):
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/User/User.columns.json", b"X")
            result = runner.invoke(main, ["push", "add columns"])
            assert Path(".geelato/sync-state.json").exists()

        assert result.exit_code == 0, result.output
        assert "meta/User/User.columns.json" in result.output
        assert "Pushed 1 change(s) as version v9" in result.output
        assert client.upload_package.call_args.kwargs["message"] == "add columns"
        client.mock_class.assert_called_once()
        assert client.mock_class.call_args.kwargs["api_url"] == "http://geelato.test:8080"

    def test_default_message(self, runner, client):
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            runner.invoke(main, ["push"])
        assert (
            client.upload_package.call_args.kwargs["message"]
            == "Update application via CLI"
        )

    def test_nothing_to_push(self, runner, client):
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            result = runner.invoke(main, ["push"])
        assert result.exit_code == 0
        assert "Nothing to push" in result.output
        client.upload_package.assert_not_called()

    def test_conflict(self, runner, client):
        """Test that conflicts are listed and the command fails."""
        client.check_conflicts.return_value = ConflictCheckResult(
            has_conflict=True,
            conflicts=[Conflict(path="meta/a.json", local_hash="aaaa", remote_hash="bbbb")],
        )
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["push"])
        assert result.exit_code == 1
        assert "meta/a.json" in result.output
        client.upload_package.assert_not_called()

    def test_force(self, runner, client):
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["push", "--force"])
        assert result.exit_code == 0
        client.check_conflicts.assert_not_called()

    def test_json_output(self, runner, client):
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["--json", "push", "--dry-run"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["dryRun"] is True
        assert data["changes"][0]["path"] == "meta/a.json"
        client.upload_package.assert_not_called()

    def test_retries_network_errors(self, runner, client):
        """Test that --retries repeats a failed command."""
        client.upload_package.side_effect = [NetworkError("reset"), "v9"]
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            with patch("pygeelato.utils.calculate_retry_delay", return_value=0):
                result = runner.invoke(main, ["--retries", "1", "push"])
        assert result.exit_code == 0, result.output
        assert client.upload_package.call_count == 2

    def test_network_error_without_retries(self, runner, client):
        client.upload_package.side_effect = NetworkError("reset")
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["push"])
        assert result.exit_code == 1
        assert "uploading failed" in result.output

    def test_keyboard_interrupt(self, runner, client):
        client.upload_package.side_effect = KeyboardInterrupt
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["push"])
        assert result.exit_code == 130


class TestPullCommands:
    """Tests for pull and clone."""

    def test_pull(self, runner, client):
        client.fetch_status.return_value = RemoteStatus(version="v4")
        client.download_package.return_value = make_zip({"meta/a.json": b"A"})
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            result = runner.invoke(main, ["pull"])
            assert Path("meta/a.json").read_bytes() == b"A"
        assert result.exit_code == 0, result.output
        assert "Pulled 1 file(s) at version v4" in result.output

    def test_pull_version(self, runner, client):
        client.download_package.return_value = make_zip({"meta/a.json": b"A"})
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            result = runner.invoke(main, ["pull", "--version", "v2"])
        assert result.exit_code == 0
        client.fetch_status.assert_not_called()
        assert client.download_package.call_args.args == ("crm", "v2")

    def test_clone(self, runner, client):
        """Test cloning into a directory named after the app code."""
        client.fetch_status.return_value = RemoteStatus(version="v1")
        client.download_package.return_value = make_zip({"meta/a.json": b"A"})
        with runner.isolated_filesystem():
            result = runner.invoke(
                main, ["clone", "http://geelato.test:8080/default/crm"]
            )
            config = json.loads(Path("crm/geelato.json").read_text())
            assert Path("crm/meta/a.json").exists()
        assert result.exit_code == 0, result.output
        assert config["meta"]["appId"] == "crm"
        assert config["config"]["repo"]["url"] == "http://geelato.test:8080/default/crm"

    def test_clone_invalid_url(self, runner, client):
        result = runner.invoke(main, ["clone", "http://geelato.test:8080/only-tenant"])
        assert result.exit_code == 1
        client.download_package.assert_not_called()


class TestReadOnlyCommands:
    """Tests for diff, status, conflicts and ping."""

    def test_diff_remote(self, runner, client):
        client.fetch_remote_files.return_value = [FileRecord(path="meta/b.json", hash="B")]
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["diff"])
        assert result.exit_code == 0
        assert "meta/a.json" in result.output
        assert "meta/b.json" in result.output
        assert "1 added, 0 modified, 1 deleted" in result.output

    def test_diff_local_needs_no_client(self, runner, client):
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["diff", "--local"])
        assert result.exit_code == 0
        assert "1 added" in result.output
        client.mock_class.assert_not_called()

    def test_status(self, runner, client):
        client.fetch_status.return_value = RemoteStatus(version="v3")
        client.fetch_remote_files.return_value = []
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            result = runner.invoke(main, ["status"])
        assert result.exit_code == 0, result.output
        assert "v3" in result.output
        assert "in sync" in result.output

    def test_status_json(self, runner, client):
        client.fetch_status.return_value = RemoteStatus(version="v3")
        client.fetch_remote_files.return_value = [FileRecord(path="meta/r.json", hash="R")]
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            result = runner.invoke(main, ["--json", "status"])
        data = json.loads(result.output)
        assert data["remoteVersion"] == "v3"
        assert data["behind"]["added"] == ["meta/r.json"]

    def test_conflicts_found(self, runner, client):
        client.check_conflicts.return_value = ConflictCheckResult(
            has_conflict=True,
            conflicts=[Conflict(path="meta/a.json", local_hash="1", remote_hash="2")],
        )
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            write("meta/a.json", b"A")
            result = runner.invoke(main, ["conflicts"])
        assert result.exit_code == 1
        assert "meta/a.json" in result.output

    def test_no_conflicts(self, runner, client):
        with runner.isolated_filesystem():
            init_project(Path.cwd())
            result = runner.invoke(main, ["conflicts"])
        assert result.exit_code == 0
        assert "No conflicts" in result.output

    def test_ping(self, runner, client):
        result = runner.invoke(main, ["--api-url", "http://geelato.test:8080", "ping"])
        assert result.exit_code == 0
        assert "reachable" in result.output
        client.ping.assert_called_once()

    def test_ping_without_url(self, runner, client):
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["ping"], env={"GEELATO_API_URL": ""})
        assert result.exit_code == 1
        assert "No platform URL" in result.output


class TestWatchCommand:
    """Tests for the watch command."""

    def test_watch_until_interrupted(self, runner, client):
        with patch("pygeelato.cli.Watcher") as mock_watcher:
            mock_watcher.return_value.run.side_effect = KeyboardInterrupt
            with runner.isolated_filesystem():
                init_project(Path.cwd())
                result = runner.invoke(main, ["watch", "--interval", "5"])
        assert result.exit_code == 0
        assert "Watcher stopped." in result.output
        kwargs = mock_watcher.call_args.kwargs
        assert kwargs["interval"] == 5.0
        assert kwargs["client"] is client
        assert kwargs["app_id"] == "crm"
        client.close.assert_called_once()

    def test_watch_no_notify(self, runner, client):
        with patch("pygeelato.cli.Watcher") as mock_watcher:
            mock_watcher.return_value.run.side_effect = KeyboardInterrupt
            with runner.isolated_filesystem():
                init_project(Path.cwd())
                result = runner.invoke(main, ["watch", "--no-notify"])
        assert result.exit_code == 0
        assert mock_watcher.call_args.kwargs["client"] is None
        assert mock_watcher.call_args.kwargs["interval"] == 2.0
        client.mock_class.assert_not_called()
