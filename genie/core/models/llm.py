"""Canonical request/result models shared by every provider adapter.

This module contains:
- Messages: Role, CanonicalMessage
- Requests: RequestKind, ToolSpec, ToolOutput, CanonicalRequest
- Results: UsageRecord, CanonicalResult
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..cancellation import CancellationToken


# =============================================================================
# Messages
# =============================================================================


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class CanonicalMessage(BaseModel):
    """One chat turn, in caller order."""

    role: Role
    content: str


# =============================================================================
# Requests
# =============================================================================


class RequestKind(str, Enum):
    """Structured-output schema a call must conform to."""

    COMMIT_MESSAGE = "commit_message"
    STRICT_FIX = "strict_fix"
    ENFORCE_LANGUAGE = "enforce_language"
    FILE_SUMMARY = "file_summary"
    CLASSIFY_AND_DRAFT = "classify_and_draft"
    VALIDATE_AND_FIX = "validate_and_fix"
    COMPRESS_CONTEXT = "compress_context"
    REPO_ANALYSIS = "repo_analysis"
    REPO_ANALYSIS_ACTION = "repo_analysis_action"


class ToolSpec(BaseModel):
    """A callable tool presented to the backend."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(
        description="JSON schema of the tool arguments"
    )


class ToolOutput(BaseModel):
    """Result of a tool the backend asked for on the previous turn.

    `name` and `arguments` echo the original call. Backends without a
    server-side conversation (Anthropic) need them to replay the tool use
    before its result.
    """

    call_id: str
    output: str
    name: str | None = None
    arguments: dict[str, Any] | None = None


class CanonicalRequest(BaseModel):
    """Backend-independent description of one LLM call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: str = ""
    messages: list[CanonicalMessage]
    request_kind: RequestKind
    temperature: float | None = None
    max_output_tokens: int | None = Field(default=None, gt=0)
    tools: list[ToolSpec] | None = None
    previous_response_id: str | None = None
    tool_outputs: list[ToolOutput] = Field(default_factory=list)
    cancellation: CancellationToken = Field(default_factory=CancellationToken)

    # Usage routing
    repository_id: str | None = None
    call_label: str | None = None
    call_index: int | None = None
    thinking: bool = False


# =============================================================================
# Results
# =============================================================================


class UsageRecord(BaseModel):
    """Normalized token usage for one call (or a folded sequence of calls)."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cached_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    def __add__(self, other: "UsageRecord") -> "UsageRecord":
        return UsageRecord(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @property
    def cache_hit_percent(self) -> float:
        if self.input_tokens <= 0:
            return 0.0
        return self.cached_tokens / self.input_tokens * 100


class CanonicalResult(BaseModel):
    """Normalized outcome of a successful call."""

    parsed: Any = Field(description="Instance of the request kind's output model")
    raw_assistant_turn: CanonicalMessage | None = None
    usage: UsageRecord | None = None
    continuation_id: str | None = None
    tool_call_id: str | None = None
    cost: float | None = None
