"""CLI utilities for dual-mode output (human-friendly + machine-readable).

Commands print through Output so that the same code serves both:
- Human mode (default): Rich formatting with colors and tables
- Machine mode (--json): one JSON document on stdout at the end

Example:
    from ..utils import Output, ExitCode

    @app.command()
    def my_command():
        out = Output(console=console, json_mode=get_json_mode())
        out.success("Reset cost", repository="/work/repo")
        raise typer.Exit(out.finish())
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, PrivateAttr
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ..core.errors import (
    ClientNotInitialized,
    InvalidCredential,
    LedgerUnavailable,
    ProviderError,
    UnknownPricing,
    UnsupportedProvider,
)


class ExitCode:
    """Standardized exit codes for CLI commands.

        0 = Success
        1 = Invalid input or configuration
        2 = Missing API key
        3 = Credential rejected by the backend
        4 = Unknown provider or pricing key
        5 = Cost store unavailable
        6 = Backend call failed
    """

    SUCCESS = 0
    VALIDATION_ERROR = 1
    MISSING_CREDENTIAL = 2
    INVALID_CREDENTIAL = 3
    NOT_FOUND = 4
    STORE_ERROR = 5
    PROVIDER_ERROR = 6


def exit_code_for(error: ProviderError) -> int:
    """Map a ProviderError to the exit code a script should see."""
    if isinstance(error, ClientNotInitialized):
        return ExitCode.MISSING_CREDENTIAL
    if isinstance(error, InvalidCredential):
        return ExitCode.INVALID_CREDENTIAL
    if isinstance(error, (UnsupportedProvider, UnknownPricing)):
        return ExitCode.NOT_FOUND
    if isinstance(error, LedgerUnavailable):
        return ExitCode.STORE_ERROR
    return ExitCode.PROVIDER_ERROR


def setup_logging(console: Console, verbose: bool = False, debug: bool = False) -> None:
    """Route genie's loggers through Rich at the requested level."""
    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )
    logging.getLogger("genie").setLevel(level)
    # SDK transports log every request at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


class Output(BaseModel):
    """Dual-mode output handler for CLI commands.

    In human mode: Uses Rich for terminal output.
    In JSON mode: Collects structured data and prints JSON at finish().
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    console: Console
    json_mode: bool = False

    _data: dict[str, Any] = PrivateAttr()
    _exit_code: int = PrivateAttr(default=ExitCode.SUCCESS)

    def model_post_init(self, __context: Any) -> None:
        self._data = {
            "status": "success",
            "warnings": [],
            "errors": [],
        }

    @property
    def exit_code(self) -> int:
        return self._exit_code

    def success(self, message: str, **data: Any) -> None:
        """Output a success message with optional data."""
        if self.json_mode:
            self._data.update(data)
        else:
            self.console.print(f"[green]✓[/green] {escape(message)}")

    def warning(self, message: str, *, suggestion: str | None = None) -> None:
        """Output a warning message."""
        if self.json_mode:
            warning_obj: dict[str, Any] = {"message": message}
            if suggestion:
                warning_obj["suggestion"] = suggestion
            self._data["warnings"].append(warning_obj)
        else:
            self.console.print(f"[yellow]⚠[/yellow] {escape(message)}")
            if suggestion:
                self.console.print(f"  [dim]→ {suggestion}[/dim]")

    def error(
        self,
        message: str,
        *,
        suggestion: str | None = None,
        exit_code: int = ExitCode.VALIDATION_ERROR,
    ) -> None:
        """Output an error message and set exit code."""
        self._exit_code = exit_code
        self._data["status"] = "error"

        if self.json_mode:
            error_obj: dict[str, Any] = {"message": message}
            if suggestion:
                error_obj["suggestion"] = suggestion
            self._data["errors"].append(error_obj)
        else:
            self.console.print(f"[red]✗[/red] {escape(message)}")
            if suggestion:
                self.console.print(f"  [dim]→ {suggestion}[/dim]")

    def provider_error(self, error: ProviderError, *, suggestion: str | None = None) -> None:
        """Report a ProviderError with its mapped exit code."""
        self.error(str(error), suggestion=suggestion, exit_code=exit_code_for(error))
        if self.json_mode:
            self._data["errors"][-1]["type"] = type(error).__name__

    def text(self, message: str) -> None:
        """Output plain text (human mode only)."""
        if not self.json_mode:
            self.console.print(message)

    def table(
        self,
        title: str,
        columns: list[str],
        rows: list[list[str]],
        *,
        data_key: str | None = None,
    ) -> None:
        """Output a formatted table; JSON mode stores rows as dicts."""
        key = data_key or title.lower().replace(" ", "_")

        if self.json_mode:
            self._data[key] = [dict(zip(columns, row)) for row in rows]
        else:
            table = Table(title=title, show_header=True, header_style="bold")
            for i, col in enumerate(columns):
                table.add_column(col, justify="right" if i > 0 else "left")
            for row in rows:
                table.add_row(*(escape(cell) for cell in row))
            self.console.print(table)

    def set_data(self, key: str, value: Any) -> None:
        """Set arbitrary data in JSON output."""
        self._data[key] = value

    def finish(self) -> int:
        """Finalize output and return exit code.

        In JSON mode, prints the accumulated data as JSON to stdout.
        """
        if self.json_mode:
            self._data["exit_code"] = self._exit_code
            print(json.dumps(self._data, indent=2, default=str))

        return self._exit_code
