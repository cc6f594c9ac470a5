"""Pydantic models for the invocation layer.

- llm.py: canonical messages, requests, results and usage records
"""

from .llm import (
    Role,
    CanonicalMessage,
    RequestKind,
    ToolSpec,
    ToolOutput,
    CanonicalRequest,
    UsageRecord,
    CanonicalResult,
)

__all__ = [
    "Role",
    "CanonicalMessage",
    "RequestKind",
    "ToolSpec",
    "ToolOutput",
    "CanonicalRequest",
    "UsageRecord",
    "CanonicalResult",
]
