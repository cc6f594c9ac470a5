"""LLM invocation facade for genie.

LLMService is constructed once at process start and owns the collaborators
every call needs: the cost calculator, the durable state store, the cost
ledger, the usage reporter and the rate-limit notifier. Providers are
created lazily per backend and cached so their async clients are reused;
`aclose()` releases them before the event loop shuts down.

Usage:
    service = LLMService(GenieConfig.load())
    result = await service.invoke("anthropic", request)
    await service.aclose()
"""

import logging
from typing import Callable

from ..config import GenieConfig, get_config
from .cost import CostCalculator, CostLedger, UsageReporter
from .models import CanonicalRequest, CanonicalResult
from .providers import get_provider
from .providers.base import LLMProvider
from .retry import RateLimitNotifier
from ..storage import KeyValueStore, MemoryStore, SQLiteStore

logger = logging.getLogger(__name__)


def _default_store(config: GenieConfig) -> KeyValueStore:
    if not config.cost.enabled:
        return MemoryStore()
    return SQLiteStore(config.cost.state_db_resolved)


class LLMService:
    """Caller-facing invocation contract.

    Args:
        config: Settings; defaults to the global config.
        store: Durable key/value store; defaults to SQLite at
            `config.cost.state_db` (in-memory when cost tracking is off).
        calculator: Cost calculator over the static pricing table.
        notify: Delivery callback for throttled rate-limit advisories
            (backend label, message); defaults to a log warning.
    """

    def __init__(
        self,
        config: GenieConfig | None = None,
        *,
        store: KeyValueStore | None = None,
        calculator: CostCalculator | None = None,
        notify: Callable[[str, str], None] | None = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store or _default_store(self.config)
        prefix = self.config.cost.key_prefix
        self.calculator = calculator or CostCalculator()
        self.ledger = CostLedger(self.store, prefix=prefix)
        self.reporter = UsageReporter(
            self.calculator,
            self.ledger if self.config.cost.enabled else None,
        )
        self.notifier = RateLimitNotifier(self.store, prefix=prefix, notify=notify)
        self._providers: dict[str, LLMProvider] = {}

    def provider(self, provider_name: str) -> LLMProvider:
        """Cached provider for a backend, wired to this service's collaborators."""
        if provider_name not in self._providers:
            self._providers[provider_name] = get_provider(
                provider_name,
                config=self.config,
                reporter=self.reporter,
                notifier=self.notifier,
            )
        return self._providers[provider_name]

    def _transient_provider(self, provider_name: str, api_key: str | None) -> LLMProvider:
        if api_key is None:
            return self.provider(provider_name)
        return get_provider(
            provider_name,
            config=self.config,
            api_key=api_key,
            reporter=self.reporter,
            notifier=self.notifier,
        )

    async def invoke(self, provider_name: str, request: CanonicalRequest) -> CanonicalResult:
        """Run one canonical request against a backend."""
        return await self.provider(provider_name).invoke(request)

    async def validate_credential(
        self,
        provider_name: str,
        *,
        api_key: str | None = None,
        test_model: str | None = None,
    ) -> None:
        """Probe a backend credential (the configured one, or `api_key`)."""
        provider = self._transient_provider(provider_name, api_key)
        try:
            await provider.validate_credential(test_model)
        finally:
            if api_key is not None:
                await provider.close_async()

    async def list_available_models(
        self,
        provider_name: str,
        *,
        api_key: str | None = None,
        preferred: list[str] | None = None,
    ) -> list[str]:
        """Preferred models available to the credential."""
        provider = self._transient_provider(provider_name, api_key)
        try:
            return await provider.list_available_models(preferred)
        finally:
            if api_key is not None:
                await provider.close_async()

    async def aclose(self) -> None:
        """Close every cached provider client."""
        for name, provider in list(self._providers.items()):
            try:
                await provider.close_async()
            except Exception as e:
                logger.debug(f"Failed to close {name} client: {e}")
        self._providers.clear()


__all__ = ["LLMService"]
