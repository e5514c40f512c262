"""Console output helpers built on rich."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormatter:
    """Formats CLI output as human-readable text or JSON.

    Informational messages go to stdout and are suppressed by ``quiet`` or
    ``json_output``; warnings and errors go to stderr and are always shown.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False, soft_wrap=True)
        self.err_console = err_console or Console(stderr=True, highlight=False, soft_wrap=True)

    @property
    def _silent(self) -> bool:
        return self.quiet or self.json_output

    def print(self, message: str = "") -> None:
        if not self._silent:
            self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        if not self._silent:
            self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        if not self._silent:
            self.console.print(f"[green]{escape(message)}[/green]")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]{escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        self.err_console.print(f"[bold red]Error:[/bold red] {escape(message)}")

    def output_json(self, data: Any) -> None:
        """Print data as JSON regardless of quiet mode."""
        self.console.print_json(json.dumps(data, default=str))

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a two-column summary table."""
        if self._silent:
            return
        table = Table(title=title, show_header=False, title_justify="left")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in items:
            table.add_row(key, value)
        self.console.print(table)

    def print_paths(self, label: str, paths: list[str], style: str) -> None:
        """Print a labelled list of paths, one per line."""
        if self._silent or not paths:
            return
        for path in paths:
            self.console.print(f"  [{style}]{label}[/{style}] {escape(path)}")
