"""Abstract base class for provider adapters.

An adapter translates a CanonicalRequest into one backend's wire shape and
the backend's response into a CanonicalResult. The shared parts live here:
the attempt loop (via RetryCoordinator), schema validation and correction
turns, usage reporting, credential probing and model discovery.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from ..cost.reporter import Backend, UsageReporter, extract_usage
from ..errors import (
    ClientNotInitialized,
    InvalidCredential,
    ModelNotSelected,
    ParseError,
)
from ..models import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResult,
    RequestKind,
    Role,
)
from ..retry import DEFAULT_RETRY_BUDGET, Outcome, RateLimitNotifier, RetryCoordinator
from ..schemas import get_output_model, json_schema_for
from ..tools import normalize_action
from .logging import extract_error_summary, log_request_response

logger = logging.getLogger(__name__)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

CORRECTION_PROMPT = (
    "The previous response did not conform to the required format ({error}). "
    "Please try again and ensure the response matches the specified JSON format:\n{schema}"
)


@dataclass
class AttemptResult:
    """What a single successful backend attempt produced."""

    parsed: Any
    raw_text: str | None = None
    raw_usage: Any = None
    continuation_id: str | None = None
    tool_call_id: str | None = None


# =============================================================================
# Shared helpers
# =============================================================================


def split_system_messages(
    messages: list[CanonicalMessage],
) -> tuple[str | None, list[CanonicalMessage]]:
    """Separate system turns, joined with a blank line in original order."""
    system = [m.content for m in messages if m.role == Role.SYSTEM]
    rest = [m for m in messages if m.role != Role.SYSTEM]
    return ("\n\n".join(system) if system else None), rest


def parse_json_text(text: str | None) -> Any:
    """Decode model output that should be JSON.

    Tries the whole text, then a fenced ```json block, then the span from the
    first '{' to the last '}'.
    """
    if text is None or not text.strip():
        raise ParseError("Empty response from model", raw_text=text)

    candidates = [text.strip()]
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ParseError("Response is not valid JSON", raw_text=text)


def validate_output(kind: RequestKind, data: Any, raw_text: str | None = None) -> Any:
    """Validate decoded JSON against the request kind's output model."""
    model = get_output_model(kind)
    try:
        parsed = model.model_validate(data)
    except ValidationError as e:
        raise ParseError(
            f"Response does not match the {kind.value} schema: {e.error_count()} error(s)",
            raw_text=raw_text if raw_text is not None else json.dumps(data, default=str),
        )
    if kind == RequestKind.REPO_ANALYSIS_ACTION:
        parsed = normalize_action(parsed)
    return parsed


def correction_messages(kind: RequestKind, error: ParseError) -> list[CanonicalMessage]:
    """Turns appended to the next attempt after an unparseable response."""
    schema = json.dumps(json_schema_for(kind), indent=2)
    turns = []
    if error.raw_text:
        turns.append(CanonicalMessage(role=Role.ASSISTANT, content=error.raw_text))
    turns.append(
        CanonicalMessage(
            role=Role.USER,
            content=CORRECTION_PROMPT.format(error=error.message, schema=schema),
        )
    )
    return turns


# =============================================================================
# Provider base
# =============================================================================


class LLMProvider(ABC):
    """Abstract base class for provider adapters.

    Args:
        api_key: API key for the backend. An empty key is allowed at
            construction; calls then fail with ClientNotInitialized.
        default_model: Model used when a request leaves `model` empty.
        region: Pricing region suffix (Qwen only).
        retry_budget: Retries after the first attempt.
        temperature: Default temperature when the request sets none.
        reporter: Usage reporter; when set, every call with a repository_id
            is costed and added to the ledger.
        notifier: Rate-limit advisory throttle.
        log_requests: Write sanitized request/response dumps.
        logs_dir: Where dumps go.
        sleep: Back-off sleep, injected by tests.
    """

    provider_name: str = "unknown"
    backend: Backend
    api_key_env: str = ""
    SUPPORTED_MODELS: tuple[str, ...] = ()

    def __init__(
        self,
        api_key: str = "",
        *,
        default_model: str = "",
        region: str | None = None,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
        temperature: float | None = None,
        reporter: UsageReporter | None = None,
        notifier: RateLimitNotifier | None = None,
        log_requests: bool = False,
        logs_dir: str = "./logs",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key = api_key
        self._cached_async_client = None
        self.default_model = default_model
        self.region = region or None
        self._temperature = temperature
        self._reporter = reporter
        self._log_requests = log_requests
        self._logs_dir = logs_dir
        self._retry = RetryCoordinator(
            self.label,
            self.classify_error,
            retry_budget=retry_budget,
            notifier=notifier,
            sleep=sleep,
            backend=self.backend.value,
        )

    @property
    def label(self) -> str:
        return self.backend.label

    # ── Client lifecycle ──

    @abstractmethod
    def _create_client(self) -> Any:
        """Build the backend's async SDK client."""
        ...

    def _get_async_client(self) -> Any:
        if not self._api_key:
            raise ClientNotInitialized(
                f"{self.api_key_env or 'API key'} is not set. "
                f"Set it as an environment variable or in a .env file.",
                provider=self.label,
            )
        if self._cached_async_client is None:
            self._cached_async_client = self._create_client()
        return self._cached_async_client

    async def close_async(self) -> None:
        """Close the cached async client to release connections cleanly.

        Must be called before the event loop shuts down to avoid
        'Event loop is closed' errors from orphaned httpx connections.
        """
        if self._cached_async_client is not None:
            await self._cached_async_client.close()
            self._cached_async_client = None

    # ── Backend-specific hooks ──

    @abstractmethod
    def classify_error(self, error: BaseException) -> Outcome:
        """Map an SDK exception to a retry outcome."""
        ...

    @abstractmethod
    async def _attempt(
        self,
        client: Any,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
        attempt: int,
    ) -> AttemptResult:
        """Run one backend call and decode it; raise ParseError on bad output."""
        ...

    @abstractmethod
    async def _probe(self, client: Any, model: str) -> None:
        """Smallest possible call that proves the credential works."""
        ...

    async def _discover_models(self, client: Any) -> list[str] | None:
        """Model ids the backend reports, or None when it has no listing."""
        return None

    # ── Shared helpers for subclasses ──

    def _temperature_for(self, request: CanonicalRequest) -> float | None:
        if request.temperature is not None:
            return request.temperature
        return self._temperature

    def _log_exchange(
        self, request: CanonicalRequest, params: dict, response: Any, attempt: int
    ) -> None:
        if self._log_requests:
            log_request_response(
                self.provider_name,
                request.request_kind.value,
                params,
                response,
                attempt=attempt,
                logs_dir=self._logs_dir,
            )

    # ── Public contract ──

    async def invoke(self, request: CanonicalRequest) -> CanonicalResult:
        """Run a canonical request through the retry loop and normalize it."""
        model = request.model or self.default_model
        if not model:
            raise ModelNotSelected("No model selected", provider=self.label)
        get_output_model(request.request_kind)
        client = self._get_async_client()

        feedback: list[CanonicalMessage] = []

        async def attempt(n: int) -> AttemptResult:
            try:
                return await self._attempt(
                    client, request, model, [*request.messages, *feedback], n
                )
            except ParseError as e:
                e.provider = e.provider or self.label
                feedback[:] = correction_messages(request.request_kind, e)
                raise

        logger.info(
            f"[{self.label}] {request.request_kind.value} starting - model={model}, "
            f"messages={len(request.messages)}"
        )
        outcome = await self._retry.run(attempt, request.cancellation)

        usage = extract_usage(self.backend, outcome.raw_usage)
        cost = None
        if self._reporter is not None and request.repository_id:
            report = await self._reporter.report(
                request.repository_id,
                self.backend,
                outcome.raw_usage,
                model,
                call_label=request.call_label or request.request_kind.value,
                call_index=request.call_index,
                region=self.region,
                thinking=request.thinking,
            )
            cost = report.cost

        raw_turn = None
        if outcome.raw_text is not None:
            raw_turn = CanonicalMessage(role=Role.ASSISTANT, content=outcome.raw_text)

        return CanonicalResult(
            parsed=outcome.parsed,
            raw_assistant_turn=raw_turn,
            usage=usage,
            continuation_id=outcome.continuation_id,
            tool_call_id=outcome.tool_call_id,
            cost=cost,
        )

    async def validate_credential(self, test_model: str | None = None) -> None:
        """Raise InvalidCredential unless a one-token probe succeeds."""
        client = self._get_async_client()
        model = test_model or self.default_model or (
            self.SUPPORTED_MODELS[0] if self.SUPPORTED_MODELS else ""
        )
        if not model:
            raise ModelNotSelected("No model to probe with", provider=self.label)
        try:
            await self._probe(client, model)
        except Exception as e:
            raise InvalidCredential(
                f"Credential check failed: {extract_error_summary(e)}",
                provider=self.label,
            ) from e
        logger.info(f"[{self.label}] Credential verified with {model}")

    async def list_available_models(
        self, preferred: list[str] | None = None
    ) -> list[str]:
        """Preferred models the backend offers, in preferred order.

        Falls back to the whole preferred list when discovery is unsupported,
        fails, or matches nothing; in the first two cases the credential is
        verified with a probe first.
        """
        preferred = list(preferred or self.SUPPORTED_MODELS)
        client = self._get_async_client()

        try:
            available = await self._discover_models(client)
        except Exception as e:
            logger.warning(
                f"[{self.label}] Model listing failed ({extract_error_summary(e)}); "
                f"verifying credential instead"
            )
            available = None

        if available is None:
            await self.validate_credential(preferred[0] if preferred else None)
            return preferred

        matched = [m for m in preferred if m in set(available)]
        return matched or preferred
