"""LLM provider registry and factory.

Provides:
- BUILTIN_PROVIDERS: registry of known provider names -> factory info
- get_provider(): create a provider instance from a provider name

Every registered backend must have a usage field mapping; the check runs at
import so a new backend cannot silently report zero usage.
"""

import importlib

from ...config import GenieConfig, get_api_key_for_provider
from ..cost.reporter import UsageReporter, require_usage_mapping
from ..errors import UnsupportedProvider
from ..retry import RateLimitNotifier
from .base import LLMProvider


# =============================================================================
# Provider Registry
# =============================================================================

QWEN_BASE_URLS = {
    "intl": "https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
    "china": "https://dashscope.aliyuncs.com/compatible-mode/v1",
}

# Each entry: module, class name, backend, default kwargs.
# Lazy-imported to avoid loading all SDKs at startup.
_BUILTIN_REGISTRY: dict[str, dict] = {
    "openai": {
        "module": ".openai",
        "class": "OpenAIProvider",
        "backend": "openai",
    },
    "anthropic": {
        "module": ".anthropic",
        "class": "AnthropicProvider",
        "backend": "anthropic",
    },
    "gemini": {
        "module": ".gemini",
        "class": "GeminiProvider",
        "backend": "gemini",
    },
    "deepseek": {
        "module": ".openai_compat",
        "class": "OpenAICompatProvider",
        "backend": "deepseek",
        "kwargs": {
            "base_url": "https://api.deepseek.com",
            "provider_label": "deepseek",
            "supported_models": ("deepseek-chat", "deepseek-reasoner"),
        },
    },
    "qwen": {
        "module": ".openai_compat",
        "class": "OpenAICompatProvider",
        "backend": "qwen",
        "regional": True,
        "kwargs": {
            "provider_label": "qwen",
            "regional_base_urls": QWEN_BASE_URLS,
            "supported_models": (
                "qwen3-max",
                "qwen3-max-preview",
                "qwen-plus",
                "qwen-plus-latest",
                "qwen3-coder-plus",
                "qwen-flash",
                "qwen3-coder-flash",
            ),
        },
    },
}

for _name, _entry in _BUILTIN_REGISTRY.items():
    require_usage_mapping(_entry["backend"])

BUILTIN_PROVIDERS = tuple(_BUILTIN_REGISTRY)


def get_provider(
    provider_name: str,
    *,
    config: GenieConfig | None = None,
    api_key: str | None = None,
    reporter: UsageReporter | None = None,
    notifier: RateLimitNotifier | None = None,
    **overrides,
) -> LLMProvider:
    """Create a provider instance by name.

    Args:
        provider_name: Registry name ("openai", "anthropic", "gemini",
            "deepseek", "qwen").
        config: Source of model, region, retry and logging settings.
        api_key: Explicit key; defaults to the provider's env var.
        reporter: Usage reporter injected into the adapter.
        notifier: Rate-limit advisory throttle.
        **overrides: Extra constructor kwargs (e.g. `sleep` in tests).

    Raises:
        UnsupportedProvider: If the provider is unknown.
    """
    entry = _BUILTIN_REGISTRY.get(provider_name)
    if entry is None:
        raise UnsupportedProvider(
            f"Unknown provider: {provider_name!r}. "
            f"Available: {', '.join(BUILTIN_PROVIDERS)}"
        )

    config = config or GenieConfig()
    settings = config.provider(provider_name)

    kwargs = dict(entry.get("kwargs", {}))
    kwargs.update(
        default_model=settings.model,
        retry_budget=config.llm.max_retries,
        temperature=config.llm.temperature,
        log_requests=config.logging.log_requests,
        logs_dir=config.logging.logs_dir,
        reporter=reporter,
        notifier=notifier,
    )
    if entry.get("regional"):
        kwargs["region"] = settings.region or "intl"
    if settings.base_url:
        kwargs["base_url"] = settings.base_url
    kwargs.update(overrides)

    module = importlib.import_module(entry["module"], package=__name__)
    cls = getattr(module, entry["class"])
    key = api_key if api_key is not None else get_api_key_for_provider(provider_name)
    return cls(api_key=key, **kwargs)


__all__ = [
    "BUILTIN_PROVIDERS",
    "QWEN_BASE_URLS",
    "LLMProvider",
    "get_provider",
]
