"""Usage reporting: raw provider usage -> UsageRecord -> cost -> ledger.

Every backend names its usage fields differently. USAGE_FIELD_MAPS is the
single table of those names; nothing here guesses field names. A backend
without an entry fails at import time.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel

from ..models import UsageRecord
from .ledger import CostLedger
from .pricing import CostCalculator, format_cost

logger = logging.getLogger(__name__)


class Backend(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    QWEN = "qwen"

    @property
    def label(self) -> str:
        return _BACKEND_LABELS[self]


_BACKEND_LABELS = {
    Backend.OPENAI: "OpenAI",
    Backend.ANTHROPIC: "Claude",
    Backend.GEMINI: "Gemini",
    Backend.DEEPSEEK: "DeepSeek",
    Backend.QWEN: "Qwen",
}


@dataclass(frozen=True)
class UsageFieldMap:
    """Dotted attribute paths for each usage field; listed paths are summed.

    An empty ``total`` means the backend reports no total and input + output
    is used.
    """

    input: tuple[str, ...]
    output: tuple[str, ...]
    cached: tuple[str, ...]
    total: tuple[str, ...] = ()


USAGE_FIELD_MAPS: dict[Backend, UsageFieldMap] = {
    # Responses API
    Backend.OPENAI: UsageFieldMap(
        input=("input_tokens",),
        output=("output_tokens",),
        cached=("input_tokens_details.cached_tokens",),
        total=("total_tokens",),
    ),
    # input_tokens excludes cache reads and writes
    Backend.ANTHROPIC: UsageFieldMap(
        input=(
            "input_tokens",
            "cache_read_input_tokens",
            "cache_creation_input_tokens",
        ),
        output=("output_tokens",),
        cached=("cache_read_input_tokens",),
    ),
    # thinking tokens are billed as output
    Backend.GEMINI: UsageFieldMap(
        input=("prompt_token_count",),
        output=("candidates_token_count", "thoughts_token_count"),
        cached=("cached_content_token_count",),
        total=("total_token_count",),
    ),
    Backend.DEEPSEEK: UsageFieldMap(
        input=("prompt_tokens",),
        output=("completion_tokens",),
        cached=("prompt_cache_hit_tokens",),
        total=("total_tokens",),
    ),
    Backend.QWEN: UsageFieldMap(
        input=("prompt_tokens",),
        output=("completion_tokens",),
        cached=("prompt_tokens_details.cached_tokens",),
        total=("total_tokens",),
    ),
}

_unmapped = [backend.value for backend in Backend if backend not in USAGE_FIELD_MAPS]
if _unmapped:
    raise RuntimeError(f"Backends without usage field mappings: {_unmapped}")


def require_usage_mapping(backend: Backend | str) -> Backend:
    """Resolve a backend name, failing if it has no usage mapping."""
    resolved = Backend(backend)
    if resolved not in USAGE_FIELD_MAPS:
        raise RuntimeError(f"Backend {resolved.value!r} has no usage field mapping")
    return resolved


def _lookup(raw: Any, path: str) -> int:
    value = raw
    for part in path.split("."):
        if value is None:
            return 0
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


def _sum(raw: Any, paths: tuple[str, ...]) -> int:
    return sum(_lookup(raw, path) for path in paths)


def extract_usage(backend: Backend | str, raw_usage: Any) -> UsageRecord:
    """Normalize a backend's usage payload (dict or SDK object)."""
    fields = USAGE_FIELD_MAPS[Backend(backend)]
    if raw_usage is None:
        return UsageRecord()

    input_tokens = _sum(raw_usage, fields.input)
    output_tokens = _sum(raw_usage, fields.output)
    total_tokens = (
        _sum(raw_usage, fields.total) if fields.total else input_tokens + output_tokens
    )
    return UsageRecord(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cached_tokens=min(_sum(raw_usage, fields.cached), input_tokens),
        total_tokens=total_tokens,
    )


class UsageReport(BaseModel):
    """What was recorded for one report() call."""

    usage: UsageRecord
    pricing_key: str
    cost: float
    repository_total: float | None = None


class UsageReporter:
    """Turns raw usage into cost and forwards it to the ledger."""

    def __init__(self, calculator: CostCalculator, ledger: CostLedger | None) -> None:
        self._calculator = calculator
        self._ledger = ledger

    @property
    def calculator(self) -> CostCalculator:
        return self._calculator

    @property
    def ledger(self) -> CostLedger | None:
        return self._ledger

    async def report(
        self,
        repository_id: str | None,
        backend: Backend | str,
        raw_usage: Any,
        model: str,
        call_label: str | None = None,
        call_index: int | None = None,
        region: str | None = None,
        thinking: bool = False,
    ) -> UsageReport:
        usage = extract_usage(backend, raw_usage)
        return await self._record(
            repository_id,
            Backend(backend),
            usage,
            model,
            _format_label(call_label, call_index),
            region,
            thinking,
            track_cost=True,
        )

    async def report_summary(
        self,
        repository_id: str | None,
        backend: Backend | str,
        raw_usages: Iterable[Any],
        model: str,
        call_label: str | None = None,
        region: str | None = None,
        thinking: bool = False,
        track_cost: bool = True,
    ) -> UsageReport:
        """Fold several raw usages into one record, then cost it.

        Pass ``track_cost=False`` when each step was already reported, to log
        the combined total without charging the repository twice.
        """
        usage = UsageRecord()
        for raw in raw_usages:
            usage = usage + extract_usage(backend, raw)
        return await self._record(
            repository_id,
            Backend(backend),
            usage,
            model,
            f"{call_label or 'summary'} total",
            region,
            thinking,
            track_cost=track_cost,
        )

    async def _record(
        self,
        repository_id: str | None,
        backend: Backend,
        usage: UsageRecord,
        model: str,
        label: str,
        region: str | None,
        thinking: bool,
        track_cost: bool,
    ) -> UsageReport:
        pricing_key = self._calculator.build_key(model, region, thinking)
        cost = self._calculator.compute_cost(
            pricing_key,
            usage.input_tokens,
            usage.output_tokens,
            usage.cached_tokens,
        )

        logger.info(
            f"[{backend.label}] [{label}] Token usage: input {usage.input_tokens} | "
            f"output {usage.output_tokens} | total {usage.total_tokens} | "
            f"cache {usage.cache_hit_percent:.1f}% | cost {format_cost(cost)} ({pricing_key})"
        )

        repository_total = None
        if track_cost and repository_id and self._ledger is not None:
            repository_total = await self._ledger.add_cost(cost, repository_id)

        return UsageReport(
            usage=usage,
            pricing_key=pricing_key,
            cost=cost,
            repository_total=repository_total,
        )


def _format_label(call_label: str | None, call_index: int | None) -> str:
    label = call_label or "call"
    if call_index is not None:
        return f"{label}-{call_index}"
    return label
