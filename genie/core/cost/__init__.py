"""Cost accounting: pricing, the per-repository ledger, and usage reporting.

This package provides:
- Pricing: static flat/tiered pricing table and CostCalculator
- Ledger: durable per-repository cost totals (CostLedger)
- Reporter: per-backend usage extraction and cost attribution (UsageReporter)
"""

from .pricing import (
    PricingTier,
    FlatPricing,
    TieredPricing,
    ModelPricing,
    PRICING_TABLE,
    CostCalculator,
    build_pricing_key,
    supports_thinking,
    select_tier,
    format_cost,
)
from .ledger import CostLedger, encode_repository_key, decode_repository_key
from .reporter import (
    Backend,
    UsageFieldMap,
    USAGE_FIELD_MAPS,
    UsageReport,
    UsageReporter,
    extract_usage,
    require_usage_mapping,
)

__all__ = [
    # Pricing
    "PricingTier",
    "FlatPricing",
    "TieredPricing",
    "ModelPricing",
    "PRICING_TABLE",
    "CostCalculator",
    "build_pricing_key",
    "supports_thinking",
    "select_tier",
    "format_cost",
    # Ledger
    "CostLedger",
    "encode_repository_key",
    "decode_repository_key",
    # Reporter
    "Backend",
    "UsageFieldMap",
    "USAGE_FIELD_MAPS",
    "UsageReport",
    "UsageReporter",
    "extract_usage",
    "require_usage_mapping",
]
