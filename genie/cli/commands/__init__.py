"""CLI commands for genie."""

from . import cost, models

__all__ = [
    "cost",
    "models",
]
