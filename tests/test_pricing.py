"""Tests for the pricing table and cost calculator."""

import math

import pytest
from pydantic import ValidationError

from genie.core.cost import (
    PRICING_TABLE,
    CostCalculator,
    FlatPricing,
    TieredPricing,
    build_pricing_key,
    format_cost,
    select_tier,
    supports_thinking,
)
from genie.core.cost.pricing import PricingTier


def _calculator(**entries) -> CostCalculator:
    return CostCalculator(entries)


def _two_tier() -> TieredPricing:
    return TieredPricing(
        tiers=(
            PricingTier(max_input_tokens=32_000, input=1.2, output=6.0, cached=0.24),
            PricingTier(max_input_tokens=math.inf, input=3.0, output=15.0, cached=0.6),
        )
    )


class TestFlatPricing:
    def test_flat_cost_bills_cached_tokens_once(self):
        calc = _calculator(**{"model-x": FlatPricing(input=1.0, output=2.0, cached=0.1)})
        cost = calc.compute_cost("model-x", 1_000_000, 500_000, 200_000)
        assert cost == pytest.approx(1.82)

    def test_zero_tokens_cost_nothing(self):
        calc = _calculator(**{"model-x": FlatPricing(input=1.0, output=2.0, cached=0.1)})
        assert calc.compute_cost("model-x", 0, 0, 0) == 0.0

    def test_cached_tokens_clamped_to_input(self):
        calc = _calculator(**{"model-x": FlatPricing(input=1.0, output=2.0, cached=0.1)})
        clamped = calc.compute_cost("model-x", 100_000, 0, 500_000)
        assert clamped == pytest.approx(calc.compute_cost("model-x", 100_000, 0, 100_000))

    def test_unknown_key_costs_zero_and_warns(self, caplog):
        calc = CostCalculator()
        with caplog.at_level("WARNING"):
            assert calc.compute_cost("no-such-model", 1000, 1000, 0) == 0.0
        assert "no-such-model" in caplog.text


class TestTieredPricing:
    def test_input_above_first_bound_selects_second_tier(self):
        pricing = _two_tier()
        tier = select_tier(pricing, 40_000)
        assert tier.input == 3.0
        assert tier.output == 15.0

    def test_input_at_bound_stays_in_lower_tier(self):
        assert select_tier(_two_tier(), 32_000).input == 1.2

    def test_tiered_cost_uses_selected_tier_for_all_tokens(self):
        calc = _calculator(tiered=_two_tier())
        cost = calc.compute_cost("tiered", 40_000, 1_000, 10_000)
        expected = (30_000 * 3.0 + 1_000 * 15.0 + 10_000 * 0.6) / 1_000_000
        assert cost == pytest.approx(expected)

    def test_every_input_size_has_a_tier(self):
        for key, pricing in PRICING_TABLE.items():
            if isinstance(pricing, TieredPricing):
                assert math.isinf(pricing.tiers[-1].max_input_tokens), key
                assert select_tier(pricing, 10**12) is pricing.tiers[-1]

    def test_tier_bounds_must_ascend(self):
        with pytest.raises(ValidationError):
            TieredPricing(
                tiers=(
                    PricingTier(max_input_tokens=64_000, input=1, output=1, cached=0),
                    PricingTier(max_input_tokens=32_000, input=1, output=1, cached=0),
                    PricingTier(max_input_tokens=math.inf, input=1, output=1, cached=0),
                )
            )

    def test_last_tier_must_be_unbounded(self):
        with pytest.raises(ValidationError):
            TieredPricing(
                tiers=(PricingTier(max_input_tokens=32_000, input=1, output=1, cached=0),)
            )


class TestMonotonicity:
    @pytest.mark.parametrize("key", ["gpt-5-mini", "gemini-2.5-pro", "qwen3-max:intl"])
    def test_cost_never_decreases_with_more_output(self, key):
        calc = CostCalculator()
        costs = [calc.compute_cost(key, 50_000, out, 0) for out in (0, 1_000, 10_000, 100_000)]
        assert costs == sorted(costs)

    @pytest.mark.parametrize("key", ["gpt-5-mini", "claude-sonnet-4-20250514", "qwen-flash:china"])
    def test_cost_never_decreases_with_more_input(self, key):
        calc = CostCalculator()
        costs = [calc.compute_cost(key, n, 500, 0) for n in (0, 10_000, 100_000, 1_000_000)]
        assert costs == sorted(costs)


class TestPricingKeys:
    def test_plain_model(self):
        assert build_pricing_key("gpt-5") == "gpt-5"

    def test_region_suffix(self):
        assert build_pricing_key("qwen3-max", "intl") == "qwen3-max:intl"

    def test_thinking_suffix_when_variant_exists(self):
        assert build_pricing_key("qwen-plus", "china", thinking=True) == "qwen-plus:china:thinking"
        assert supports_thinking("qwen-plus", "intl")

    def test_thinking_ignored_without_variant(self):
        assert build_pricing_key("qwen3-max", "intl", thinking=True) == "qwen3-max:intl"
        assert not supports_thinking("qwen3-max", "intl")

    def test_thinking_output_costs_more(self):
        calc = CostCalculator()
        normal = calc.compute_cost(calc.build_key("qwen-plus", "intl"), 1_000, 10_000)
        thinking = calc.compute_cost(calc.build_key("qwen-plus", "intl", True), 1_000, 10_000)
        assert thinking > normal


class TestPricingTable:
    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            PRICING_TABLE["new-model"] = FlatPricing(input=1, output=1, cached=0)  # type: ignore[index]

    def test_rates_are_non_negative(self):
        for pricing in PRICING_TABLE.values():
            rates = pricing.tiers if isinstance(pricing, TieredPricing) else (pricing,)
            for rate in rates:
                assert rate.input >= 0 and rate.output >= 0 and rate.cached >= 0

    def test_format_cost(self):
        assert format_cost(1.82) == "$1.820000"
        assert format_cost(0.0000014) == "$0.000001"
