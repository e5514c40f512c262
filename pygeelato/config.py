"""Configuration loading for pygeelato.

Two sources are combined:

* ``Settings`` - per-user values (API key, URL override, timeouts, author)
  from ``~/.config/pygeelato/config.json`` and ``GEELATO_*`` environment
  variables. Environment variables win over the file.
* ``ProjectConfig`` - the project's ``geelato.json`` at the working tree root,
  which names the application and the repository it syncs with.

Nothing here is a module-level singleton; the CLI loads both once and hands
them to the sync engine through :class:`pygeelato.context.SyncContext`.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from .exceptions import ConfigError
from .utils import DEFAULT_TIMEOUT, DEFAULT_TRANSFER_TIMEOUT

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILE = "geelato.json"
STATE_DIR_NAME = ".geelato"

DEFAULT_BRANCH = "main"
DEFAULT_AUTHOR = "Developer"
DEFAULT_WATCH_INTERVAL = 2.0


def get_config_path() -> Path:
    """Location of the user config file."""
    return Path.home() / ".config" / "pygeelato" / "config.json"


@dataclass
class Settings:
    """User-level settings."""

    api_url: Optional[str] = None
    """Overrides the API URL derived from the project's repo URL"""

    api_key: Optional[str] = None
    """Sent as a bearer token when set"""

    timeout: float = DEFAULT_TIMEOUT
    """Timeout for metadata calls in seconds"""

    transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT
    """Timeout for package upload/download in seconds"""

    author: str = DEFAULT_AUTHOR
    branch: str = DEFAULT_BRANCH
    watch_interval: float = DEFAULT_WATCH_INTERVAL


def _as_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{name} must be greater than 0, got {value!r}")
    return number


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[dict] = None,
) -> Settings:
    """Load user settings from the config file and the environment.

    Args:
        config_path: Config file to read (defaults to :func:`get_config_path`)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Settings instance

    Raises:
        ConfigError: If the config file is not valid JSON or a value is invalid
    """
    config_path = config_path or get_config_path()
    environ = os.environ if environ is None else environ
    data: dict = {}

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")
        logger.debug(f"Loaded settings from {config_path}")

    settings = Settings(
        api_url=data.get("api_url"),
        api_key=data.get("api_key"),
        timeout=_as_float(data.get("timeout", DEFAULT_TIMEOUT), "timeout"),
        transfer_timeout=_as_float(
            data.get("transfer_timeout", DEFAULT_TRANSFER_TIMEOUT), "transfer_timeout"
        ),
        author=data.get("author") or DEFAULT_AUTHOR,
        branch=data.get("branch") or DEFAULT_BRANCH,
        watch_interval=_as_float(
            data.get("watch_interval", DEFAULT_WATCH_INTERVAL), "watch_interval"
        ),
    )

    if environ.get("GEELATO_API_URL"):
        settings.api_url = environ["GEELATO_API_URL"]
    if environ.get("GEELATO_API_KEY"):
        settings.api_key = environ["GEELATO_API_KEY"]
    if environ.get("GEELATO_TIMEOUT"):
        settings.timeout = _as_float(environ["GEELATO_TIMEOUT"], "GEELATO_TIMEOUT")
    if environ.get("GEELATO_AUTHOR"):
        settings.author = environ["GEELATO_AUTHOR"]

    return settings


@dataclass(frozen=True)
class RepoLocation:
    """Parsed repository URL ``scheme://host[:port]/tenant/appCode``."""

    tenant: str
    app_code: str
    api_url: str


def parse_repo_url(repo_url: str) -> RepoLocation:
    """Split a repository URL into tenant, app code and API base URL.

    A missing scheme defaults to ``http``.

    Examples:
        >>> parse_repo_url("http://localhost:8080/default/myapp")
        RepoLocation(tenant='default', app_code='myapp', api_url='http://localhost:8080')

    Raises:
        ConfigError: If the URL lacks a host, tenant or app code
    """
    repo_url = repo_url.strip()
    if not repo_url.startswith(("http://", "https://")):
        repo_url = "http://" + repo_url

    parsed = urlparse(repo_url)
    if not parsed.netloc:
        raise ConfigError(f"Repo URL has no host: {repo_url}")

    parts = parsed.path.strip("/").split("/")
    if len(parts) < 2:
        raise ConfigError(
            "Repo URL path should contain tenant and app code "
            "(e.g. http://host:8080/tenant/app-code)"
        )
    tenant, app_code = parts[0], parts[1]
    if not tenant or not app_code:
        raise ConfigError("Tenant and app code cannot be empty")

    return RepoLocation(
        tenant=tenant,
        app_code=app_code,
        api_url=f"{parsed.scheme}://{parsed.netloc}",
    )


@dataclass
class ProjectConfig:
    """Structured view of ``geelato.json``."""

    root: Path
    app_id: str = ""
    name: str = ""
    repo_url: Optional[str] = None

    @property
    def repo(self) -> Optional[RepoLocation]:
        if not self.repo_url:
            return None
        return parse_repo_url(self.repo_url)

    def resolve_api_url(self, settings: Settings) -> str:
        """API base URL: settings override first, then the repo URL.

        Raises:
            ConfigError: If neither is configured
        """
        if settings.api_url:
            return settings.api_url.rstrip("/")
        repo = self.repo
        if repo is None:
            raise ConfigError(
                "Repo URL not configured. Set config.repo.url in geelato.json "
                "or GEELATO_API_URL."
            )
        return repo.api_url


def _get_repo_url(data: dict) -> Optional[str]:
    config_obj = data.get("config")
    if isinstance(config_obj, dict):
        repo = config_obj.get("repo")
        if isinstance(repo, dict) and isinstance(repo.get("url"), str):
            return repo["url"]
    # Older layout keeps the URL at the top level
    if isinstance(data.get("repo"), str):
        return data["repo"]
    return None


def load_project_config(root: Path) -> ProjectConfig:
    """Read ``geelato.json`` from a project root.

    Raises:
        ConfigError: If the file is missing or unparsable
    """
    config_file = root / PROJECT_CONFIG_FILE
    if not config_file.exists():
        raise ConfigError(
            f"Not a Geelato application: {PROJECT_CONFIG_FILE} not found in {root}"
        )
    try:
        with open(config_file, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse {PROJECT_CONFIG_FILE}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{PROJECT_CONFIG_FILE} must contain a JSON object")

    meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
    app_id = meta.get("appId") or data.get("appId") or ""
    name = meta.get("name") or data.get("name") or root.name

    return ProjectConfig(
        root=root,
        app_id=str(app_id),
        name=str(name),
        repo_url=_get_repo_url(data),
    )


def write_project_config(root: Path, app_id: str, repo_url: str, name: str = "") -> Path:
    """Write a minimal ``geelato.json`` for a freshly cloned project."""
    data = {
        "meta": {"appId": app_id, "name": name or root.name},
        "config": {"repo": {"url": repo_url}},
    }
    config_file = root / PROJECT_CONFIG_FILE
    root.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    return config_file
