"""Command-line interface for genie."""

from .app import app

__all__ = ["app"]
