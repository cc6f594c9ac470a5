"""Model pricing table and cost computation.

Rates are USD per million tokens. An entry is either flat (one rate triple)
or tiered by input size: the first tier whose ``max_input_tokens`` bound is
>= the call's input tokens applies, and the last tier is unbounded.

Pricing keys are ``model[:region][:thinking]``, looked up by exact string.
The table is immutable and shared by every caller.
"""

import logging
import math
from types import MappingProxyType
from typing import Mapping, Union

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

TOKENS_PER_UNIT = 1_000_000
THINKING_SUFFIX = "thinking"


class PricingTier(BaseModel, frozen=True):
    """Rates for calls whose input tokens are <= max_input_tokens."""

    max_input_tokens: float
    input: float
    output: float
    cached: float


class FlatPricing(BaseModel, frozen=True):
    """Single rate triple (USD per million tokens)."""

    input: float
    output: float
    cached: float


class TieredPricing(BaseModel, frozen=True):
    """Rates selected by input-size bracket."""

    tiers: tuple[PricingTier, ...]

    @field_validator("tiers")
    @classmethod
    def _check_tiers(cls, tiers: tuple[PricingTier, ...]) -> tuple[PricingTier, ...]:
        if not tiers:
            raise ValueError("tiered pricing needs at least one tier")
        bounds = [tier.max_input_tokens for tier in tiers]
        if any(b >= nxt for b, nxt in zip(bounds, bounds[1:])):
            raise ValueError(f"tier bounds must be strictly ascending: {bounds}")
        if not math.isinf(bounds[-1]):
            raise ValueError("last tier must be unbounded")
        return tiers


ModelPricing = Union[FlatPricing, TieredPricing]


def _flat(input: float, output: float, cached: float) -> FlatPricing:
    return FlatPricing(input=input, output=output, cached=cached)


def _tiered(*tiers: tuple[float, float, float, float]) -> TieredPricing:
    return TieredPricing(
        tiers=tuple(
            PricingTier(max_input_tokens=bound, input=i, output=o, cached=c)
            for bound, i, o, c in tiers
        )
    )


_INF = math.inf

# Sources: provider pricing pages. Qwen prices are per region (intl/china)
# and the plus family has a more expensive thinking-mode output rate.
_PRICING: dict[str, ModelPricing] = {
    # OpenAI
    "gpt-5": _flat(1.25, 10.0, 0.125),
    "gpt-5.2": _flat(1.75, 14.0, 0.175),
    "gpt-5.2-pro": _flat(21.0, 168.0, 0.0),
    "gpt-5-mini": _flat(0.25, 2.0, 0.025),
    "gpt-5-nano": _flat(0.05, 0.4, 0.005),
    "gpt-4.1": _flat(2.0, 8.0, 0.5),
    "gpt-4.1-mini": _flat(0.4, 1.6, 0.1),
    "gpt-4o": _flat(2.5, 10.0, 1.25),
    "gpt-4o-mini": _flat(0.15, 0.6, 0.075),
    "o4-mini": _flat(1.10, 4.40, 0.275),
    # Anthropic
    "claude-opus-4-1-20250805": _flat(15.0, 75.0, 1.5),
    "claude-opus-4-20250514": _flat(15.0, 75.0, 1.5),
    "claude-sonnet-4-20250514": _flat(3.0, 15.0, 0.3),
    "claude-3-7-sonnet-20250219": _flat(3.0, 15.0, 0.3),
    "claude-3-5-sonnet-20241022": _flat(3.0, 15.0, 0.3),
    "claude-3-5-sonnet-20240620": _flat(3.0, 15.0, 0.3),
    "claude-3-5-haiku-20241022": _flat(0.8, 4.0, 0.08),
    "claude-haiku-4-5-20251001": _flat(1.0, 5.0, 0.1),
    "claude-sonnet-4-5-20250929": _flat(3.0, 15.0, 0.3),
    "claude-opus-4-5-20251101": _flat(5.0, 25.0, 0.5),
    # Gemini
    "gemini-2.5-flash": _flat(0.30, 2.50, 0.075),
    "gemini-2.5-flash-preview-09-2025": _flat(0.30, 2.50, 0.075),
    "gemini-3-flash-preview": _flat(0.5, 3.0, 0.05),
    "gemini-2.5-pro": _tiered(
        (200_000, 1.25, 10.0, 0.125),
        (_INF, 2.5, 15.0, 0.25),
    ),
    "gemini-3-pro-preview": _tiered(
        (200_000, 2.0, 12.0, 0.2),
        (_INF, 4.0, 18.0, 0.4),
    ),
    # DeepSeek
    "deepseek-chat": _flat(0.274, 0.411, 0.027),
    "deepseek-reasoner": _flat(0.274, 0.411, 0.027),
}

# ── Qwen (international) ─────────────────────────────────────────────────────

_QWEN_MAX_INTL = _tiered(
    (32_000, 1.2, 6.0, 0.24),
    (128_000, 2.4, 12.0, 0.48),
    (252_000, 3.0, 15.0, 0.6),
    (_INF, 3.0, 15.0, 0.6),
)
_QWEN_PLUS_INTL = _tiered(
    (256_000, 0.4, 1.2, 0.08),
    (1_000_000, 1.2, 3.6, 0.24),
    (_INF, 1.2, 3.6, 0.24),
)
_QWEN_PLUS_INTL_THINKING = _tiered(
    (256_000, 0.4, 4.0, 0.08),
    (1_000_000, 1.2, 12.0, 0.24),
    (_INF, 1.2, 12.0, 0.24),
)

_PRICING.update(
    {
        "qwen3-max:intl": _QWEN_MAX_INTL,
        "qwen3-max-preview:intl": _QWEN_MAX_INTL,
        "qwen-plus:intl": _QWEN_PLUS_INTL,
        "qwen-plus-latest:intl": _QWEN_PLUS_INTL,
        "qwen-plus:intl:thinking": _QWEN_PLUS_INTL_THINKING,
        "qwen-plus-latest:intl:thinking": _QWEN_PLUS_INTL_THINKING,
        "qwen-flash:intl": _tiered(
            (256_000, 0.05, 0.4, 0.01),
            (_INF, 0.25, 2.0, 0.05),
        ),
        "qwen3-coder-plus:intl": _tiered(
            (32_000, 1.0, 5.0, 0.2),
            (128_000, 1.8, 9.0, 0.36),
            (256_000, 3.0, 15.0, 0.6),
            (_INF, 6.0, 60.0, 1.2),
        ),
        "qwen3-coder-flash:intl": _tiered(
            (32_000, 0.3, 1.5, 0.06),
            (128_000, 0.5, 2.5, 0.1),
            (256_000, 0.8, 4.0, 0.16),
            (_INF, 1.6, 9.6, 0.32),
        ),
    }
)

# ── Qwen (mainland China, converted to USD) ──────────────────────────────────

_QWEN_MAX_CHINA = _tiered(
    (32_000, 0.861, 3.441, 0.1722),
    (128_000, 1.434, 5.735, 0.2868),
    (252_000, 2.151, 8.602, 0.4302),
    (_INF, 2.151, 8.602, 0.4302),
)
# The published china plus tiers stop at 1M input tokens; the top tier is
# treated as unbounded.
_QWEN_PLUS_CHINA = _tiered(
    (128_000, 0.115, 0.287, 0.023),
    (256_000, 0.345, 2.868, 0.069),
    (_INF, 0.689, 6.881, 0.1378),
)
_QWEN_PLUS_CHINA_THINKING = _tiered(
    (128_000, 0.115, 1.147, 0.023),
    (256_000, 0.345, 3.441, 0.069),
    (_INF, 0.689, 9.175, 0.1378),
)

_PRICING.update(
    {
        "qwen3-max:china": _QWEN_MAX_CHINA,
        "qwen3-max-preview:china": _QWEN_MAX_CHINA,
        "qwen-plus:china": _QWEN_PLUS_CHINA,
        "qwen-plus-latest:china": _QWEN_PLUS_CHINA,
        "qwen-plus:china:thinking": _QWEN_PLUS_CHINA_THINKING,
        "qwen-plus-latest:china:thinking": _QWEN_PLUS_CHINA_THINKING,
        "qwen-flash:china": _tiered(
            (128_000, 0.022, 0.216, 0.0044),
            (256_000, 0.087, 0.861, 0.0174),
            (_INF, 0.173, 1.721, 0.0346),
        ),
        "qwen3-coder-plus:china": _tiered(
            (32_000, 0.574, 2.294, 0.1148),
            (128_000, 0.861, 3.441, 0.1722),
            (256_000, 1.434, 5.735, 0.2868),
            (_INF, 2.868, 28.671, 0.5736),
        ),
        "qwen3-coder-flash:china": _tiered(
            (32_000, 0.144, 0.574, 0.0288),
            (128_000, 0.216, 0.861, 0.0432),
            (256_000, 0.359, 1.434, 0.0718),
            (_INF, 0.717, 3.584, 0.1434),
        ),
    }
)

PRICING_TABLE: Mapping[str, ModelPricing] = MappingProxyType(_PRICING)


# =============================================================================
# Keys
# =============================================================================


def build_pricing_key(
    model: str,
    region: str | None = None,
    thinking: bool = False,
    table: Mapping[str, ModelPricing] = PRICING_TABLE,
) -> str:
    """Compose ``model[:region][:thinking]``.

    The thinking suffix is only added when the table has a thinking variant
    for the model, so reasoning mode on a model without elevated pricing
    still resolves to its normal entry.
    """
    key = f"{model}:{region}" if region else model
    if thinking and supports_thinking(model, region, table):
        key = f"{key}:{THINKING_SUFFIX}"
    return key


def supports_thinking(
    model: str,
    region: str | None = None,
    table: Mapping[str, ModelPricing] = PRICING_TABLE,
) -> bool:
    base = f"{model}:{region}" if region else model
    return f"{base}:{THINKING_SUFFIX}" in table


def select_tier(pricing: TieredPricing, input_tokens: int) -> PricingTier:
    """First tier whose bound is >= input_tokens (the last tier is unbounded)."""
    for tier in pricing.tiers:
        if input_tokens <= tier.max_input_tokens:
            return tier
    return pricing.tiers[-1]


def format_cost(cost: float) -> str:
    return f"${cost:.6f}"


# =============================================================================
# Calculator
# =============================================================================


class CostCalculator:
    """Computes USD cost for a call from its token counts."""

    def __init__(self, table: Mapping[str, ModelPricing] = PRICING_TABLE) -> None:
        self._table = table

    @property
    def table(self) -> Mapping[str, ModelPricing]:
        return self._table

    def get_pricing(self, pricing_key: str) -> ModelPricing | None:
        return self._table.get(pricing_key)

    def build_key(self, model: str, region: str | None = None, thinking: bool = False) -> str:
        return build_pricing_key(model, region, thinking, self._table)

    def compute_cost(
        self,
        pricing_key: str,
        input_tokens: int,
        output_tokens: int,
        cached_tokens: int = 0,
    ) -> float:
        """Cost in USD, unrounded. Unknown keys cost 0 and log a warning.

        Cached tokens are billed at the cached rate and removed from the
        input count first, so they are never charged twice.
        """
        pricing = self._table.get(pricing_key)
        if pricing is None:
            logger.warning(f"No pricing for model key {pricing_key!r}; recording $0")
            return 0.0

        input_tokens = max(0, input_tokens)
        output_tokens = max(0, output_tokens)
        cached_tokens = min(max(0, cached_tokens), input_tokens)

        if isinstance(pricing, TieredPricing):
            rates = select_tier(pricing, input_tokens)
        else:
            rates = pricing

        return (
            (input_tokens - cached_tokens) * rates.input
            + output_tokens * rates.output
            + cached_tokens * rates.cached
        ) / TOKENS_PER_UNIT
