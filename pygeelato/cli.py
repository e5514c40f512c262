"""CLI interface for the Geelato platform sync tool."""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import click

from .api import GeelatoClient
from .cli_progress import SyncPhaseDisplay
from .config import (
    ProjectConfig,
    load_project_config,
    load_settings,
    parse_repo_url,
)
from .context import SyncContext
from .exceptions import ConfigError, GeelatoError, SyncConflictError
from .models import Conflict
from .output import OutputFormatter
from .sync.comparator import Change, ChangeType, DiffResult
from .sync.engine import SyncEngine
from .sync.watcher import WatchEvent, WatchEventType, Watcher
from .utils import call_with_retries, parse_iso_timestamp, short_hash

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PUSH_MESSAGE = "Update application via CLI"

_CHANGE_STYLES = {
    ChangeType.ADDED: ("+", "green"),
    ChangeType.MODIFIED: ("~", "yellow"),
    ChangeType.DELETED: ("-", "red"),
}

_EVENT_STYLES = {
    WatchEventType.CREATED: "green",
    WatchEventType.MODIFIED: "yellow",
    WatchEventType.DELETED: "red",
}


@click.group()
@click.option("--api-key", "-k", envvar="GEELATO_API_KEY", help="Geelato API key")
@click.option(
    "--api-url",
    envvar="GEELATO_API_URL",
    help="Platform URL (overrides the repo URL in geelato.json)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Retry a command this many times on network or server errors",
)
@click.version_option(package_name="pygeelato")
@click.pass_context
def main(
    ctx: Any,
    api_key: Optional[str],
    api_url: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
    retries: int,
) -> None:
    """Geelato CLI - sync Geelato applications with the platform."""
    # Store settings in context for subcommands to access
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["api_url"] = api_url
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["retries"] = retries
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pygeelato").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


# =============================================================================
# Helpers
# =============================================================================


def _load_context(ctx: Any, root: Path, project: Optional[ProjectConfig] = None) -> SyncContext:
    """Build the run context from user settings, CLI flags and geelato.json."""
    settings = load_settings()
    if ctx.obj.get("api_key"):
        settings.api_key = ctx.obj["api_key"]
    if ctx.obj.get("api_url"):
        settings.api_url = ctx.obj["api_url"]
    if project is None:
        project = load_project_config(root)
    return SyncContext(root=root, project=project, settings=settings)


def _create_client(context: SyncContext) -> GeelatoClient:
    settings = context.settings
    return GeelatoClient(
        api_url=context.project.resolve_api_url(settings),
        api_key=settings.api_key,
        timeout=settings.timeout,
        transfer_timeout=settings.transfer_timeout,
    )


def _show_progress(out: OutputFormatter) -> bool:
    return not (out.quiet or out.json_output)


def _print_conflicts(out: OutputFormatter, conflicts: list[Conflict]) -> None:
    for conflict in conflicts:
        out.warning(
            f"  ! {conflict.path} (local {short_hash(conflict.local_hash)}, "
            f"remote {short_hash(conflict.remote_hash)})"
        )


def _run(ctx: Any, action: Callable[[], T]) -> T:
    """Run a command body, retrying and mapping errors to exit codes."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        return call_with_retries(action, retries=ctx.obj.get("retries", 0))
    except KeyboardInterrupt:
        out.warning("\nCancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
    except SyncConflictError as e:
        out.error(str(e))
        _print_conflicts(out, e.conflicts)
        ctx.exit(1)
    except GeelatoError as e:
        out.error(str(e))
        ctx.exit(1)


def _format_timestamp(value: str) -> str:
    dt = parse_iso_timestamp(value)
    if dt is None:
        return value or "never"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_changes(out: OutputFormatter, changes: list[Change]) -> None:
    for change in changes:
        marker, style = _CHANGE_STYLES[change.type]
        out.print_paths(marker, [change.path], style)


def _print_diff(out: OutputFormatter, diff: DiffResult) -> None:
    out.print_paths("+", diff.added, "green")
    out.print_paths("~", diff.modified, "yellow")
    out.print_paths("-", diff.deleted, "red")


# =============================================================================
# Sync commands
# =============================================================================


@main.command()
@click.argument("message", required=False, default="")
@click.option("--force", "-f", is_flag=True, help="Push without checking for conflicts")
@click.option(
    "--dry-run", is_flag=True, help="Show what would be pushed without pushing"
)
@click.option(
    "--no-conflict-check",
    is_flag=True,
    help="Skip the conflict check before uploading",
)
@click.pass_context
def push(
    ctx: Any, message: str, force: bool, dry_run: bool, no_conflict_check: bool
) -> None:
    """Push local changes to the platform.

    Uploads every file added or modified since the last sync and removes
    files deleted locally. MESSAGE describes the change.

    Examples:
        geelato push "add order model"
        geelato push --dry-run
    """
    out: OutputFormatter = ctx.obj["out"]
    message = message or DEFAULT_PUSH_MESSAGE

    def action():
        context = _load_context(ctx, Path.cwd())
        with _create_client(context) as client, SyncPhaseDisplay(
            enabled=_show_progress(out)
        ) as display:
            engine = SyncEngine(context, client, on_phase=display.on_phase)
            return engine.push(
                message,
                force=force,
                check_conflicts=not no_conflict_check,
                dry_run=dry_run,
            )

    result = _run(ctx, action)

    if out.json_output:
        out.output_json(result.to_dict())
        return
    if result.is_empty:
        out.info("Nothing to push, working tree matches the last sync")
        return

    _print_changes(out, result.changes)
    if dry_run:
        out.info(f"Dry run: {len(result.changes)} change(s) would be pushed")
    else:
        out.success(
            f"Pushed {len(result.changes)} change(s) as version {result.version}"
        )


@main.command()
@click.option(
    "--version",
    "-V",
    "version",
    default="latest",
    show_default=True,
    help="Version to pull",
)
@click.pass_context
def pull(ctx: Any, version: str) -> None:
    """Pull the application from the platform into the current directory.

    Files in the working tree are overwritten with the platform's copy.
    """
    out: OutputFormatter = ctx.obj["out"]

    def action():
        context = _load_context(ctx, Path.cwd())
        with _create_client(context) as client, SyncPhaseDisplay(
            enabled=_show_progress(out)
        ) as display:
            engine = SyncEngine(context, client, on_phase=display.on_phase)
            return engine.pull(
                version=version, progress_callback=display.on_download_progress
            )

    result = _run(ctx, action)

    if out.json_output:
        out.output_json(result.to_dict())
        return
    out.success(f"Pulled {len(result.files)} file(s) at version {result.version}")


@main.command()
@click.argument("url")
@click.option(
    "--output",
    "-o",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Target directory (default: the app code)",
)
@click.option(
    "--version",
    "-V",
    "version",
    default="latest",
    show_default=True,
    help="Version to clone",
)
@click.pass_context
def clone(ctx: Any, url: str, output_dir: Optional[Path], version: str) -> None:
    """Clone an application from the platform.

    URL has the form http://host[:port]/tenant/appCode.

    Examples:
        geelato clone http://localhost:8080/default/crm
        geelato clone http://localhost:8080/default/crm -o ./crm-app
    """
    out: OutputFormatter = ctx.obj["out"]

    def action():
        location = parse_repo_url(url)
        target = (output_dir or Path.cwd() / location.app_code).resolve()
        project = ProjectConfig(
            root=target,
            app_id=location.app_code,
            name=location.app_code,
            repo_url=url,
        )
        context = _load_context(ctx, target, project=project)
        out.info(f"Cloning '{location.app_code}' into {target}")
        with _create_client(context) as client, SyncPhaseDisplay(
            enabled=_show_progress(out)
        ) as display:
            engine = SyncEngine(context, client, on_phase=display.on_phase)
            return target, engine.clone(version=version)

    target, result = _run(ctx, action)

    if out.json_output:
        data = result.to_dict()
        data["path"] = str(target)
        out.output_json(data)
        return
    out.success(
        f"Cloned {len(result.files)} file(s) at version {result.version} into {target}"
    )


@main.command()
@click.option(
    "--local",
    "-l",
    "against_state",
    is_flag=True,
    help="Compare with the last sync instead of the platform",
)
@click.pass_context
def diff(ctx: Any, against_state: bool) -> None:
    """Show differences between the working tree and the platform."""
    out: OutputFormatter = ctx.obj["out"]

    def action():
        context = _load_context(ctx, Path.cwd())
        if against_state:
            # Comparing with the side-file needs no connection
            engine = SyncEngine(context)
            return engine.diff(against="state")
        with _create_client(context) as client:
            return SyncEngine(context, client).diff(against="remote")

    result = _run(ctx, action)

    if out.json_output:
        out.output_json(result.to_dict())
        return
    if result.is_empty:
        out.info("No differences")
        return
    _print_diff(out, result)
    out.info(
        f"{len(result.added)} added, {len(result.modified)} modified, "
        f"{len(result.deleted)} deleted"
    )


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show local and remote changes since the last sync."""
    out: OutputFormatter = ctx.obj["out"]

    def action():
        context = _load_context(ctx, Path.cwd())
        with _create_client(context) as client:
            return SyncEngine(context, client).status()

    report = _run(ctx, action)

    if out.json_output:
        out.output_json(report.to_dict())
        return

    out.print_summary(
        "Sync Status",
        [
            ("App", report.app_id),
            ("Local version", report.local_version or "-"),
            ("Remote version", report.remote_version or "-"),
            ("Last sync", _format_timestamp(report.last_sync_at)),
        ],
    )
    if report.in_sync and not report.conflicts:
        out.success("Working tree is in sync with the platform")
        return
    if not report.ahead.is_empty:
        out.info("Local changes:")
        _print_diff(out, report.ahead)
    if not report.behind.is_empty:
        out.info("Remote changes:")
        _print_diff(out, report.behind)
    if report.conflicts:
        out.warning(f"{len(report.conflicts)} conflicting file(s):")
        _print_conflicts(out, report.conflicts)


@main.command()
@click.pass_context
def conflicts(ctx: Any) -> None:
    """Check local changes for conflicts with the platform.

    Exits with status 1 when conflicts are found.
    """
    out: OutputFormatter = ctx.obj["out"]

    def action():
        context = _load_context(ctx, Path.cwd())
        with _create_client(context) as client:
            return SyncEngine(context, client).check_conflicts()

    found = _run(ctx, action)

    if out.json_output:
        out.output_json({"conflicts": [c.to_dict() for c in found]})
    elif not found:
        out.success("No conflicts")
    else:
        out.warning(f"{len(found)} conflicting file(s):")
        _print_conflicts(out, found)
    if found:
        ctx.exit(1)


@main.command()
@click.option(
    "--interval",
    "-i",
    type=click.FloatRange(min=0.1),
    default=None,
    help="Seconds between scans (default: 2)",
)
@click.option(
    "--no-notify", is_flag=True, help="Do not report changes to the platform"
)
@click.pass_context
def watch(ctx: Any, interval: Optional[float], no_notify: bool) -> None:
    """Watch the working tree and report file changes.

    Runs until interrupted with Ctrl+C.
    """
    out: OutputFormatter = ctx.obj["out"]

    def on_event(event: WatchEvent) -> None:
        if out.json_output:
            out.output_json(
                {"type": event.type.value, "path": event.relative_path}
            )
        else:
            out.print_paths(
                event.type.value, [event.relative_path], _EVENT_STYLES[event.type]
            )

    client: Optional[GeelatoClient] = None
    try:
        context = _load_context(ctx, Path.cwd())
        if not no_notify:
            client = _create_client(context)
        watcher = Watcher(
            context.root,
            interval=interval or context.settings.watch_interval,
            client=client,
            app_id=context.app_id,
            on_event=on_event,
        )
        stop_event = threading.Event()
        out.info("Watching for file changes. Press Ctrl+C to stop.")
        try:
            watcher.run(stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            out.info("Watcher stopped.")
    except GeelatoError as e:
        out.error(str(e))
        ctx.exit(1)
    finally:
        if client is not None:
            client.close()


@main.command()
@click.pass_context
def ping(ctx: Any) -> None:
    """Check that the platform is reachable."""
    out: OutputFormatter = ctx.obj["out"]

    def action():
        settings = load_settings()
        if ctx.obj.get("api_url"):
            settings.api_url = ctx.obj["api_url"]
        if settings.api_url:
            api_url = settings.api_url.rstrip("/")
        else:
            try:
                api_url = load_project_config(Path.cwd()).resolve_api_url(settings)
            except ConfigError as e:
                raise ConfigError(
                    "No platform URL: pass --api-url or run inside a Geelato application"
                ) from e
        with GeelatoClient(api_url, api_key=ctx.obj.get("api_key") or settings.api_key) as client:
            client.ping()
        return api_url

    api_url = _run(ctx, action)

    if out.json_output:
        out.output_json({"url": api_url, "reachable": True})
        return
    out.success(f"Platform at {api_url} is reachable")


if __name__ == "__main__":
    main()
