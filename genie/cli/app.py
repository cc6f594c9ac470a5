"""Core CLI app definition and global state."""

from typing import Annotated

import typer
from rich.console import Console

from .utils import setup_logging

app = typer.Typer(
    name="genie",
    help="Inspect LLM usage cost and check provider credentials.",
    no_args_is_help=True,
)

console = Console()

# Global state for JSON mode (set by callback)
_json_mode = False


def get_json_mode() -> bool:
    """Get current JSON mode state."""
    return _json_mode


def get_service():
    """Build an LLMService from the global config."""
    from ..config import get_config
    from ..core.llm import LLMService

    return LLMService(get_config())


def _version_callback(value: bool) -> None:
    if value:
        from .. import __version__

        print(f"genie {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output machine-readable JSON instead of human-friendly text",
            is_eager=True,
        ),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log provider calls and token usage"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Log everything, including retries and store access"),
    ] = False,
):
    """genie: provider-agnostic LLM invocation with per-repository cost accounting.

    Use --json for machine-readable output suitable for scripting.
    """
    global _json_mode
    _json_mode = json_output
    setup_logging(console, verbose=verbose, debug=debug)


# Import commands to register them with the app
from .commands import cost, models  # noqa: E402, F401
