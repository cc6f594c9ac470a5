"""OpenAI-compatible provider for third-party Chat Completions endpoints.

Serves DeepSeek and Qwen (DashScope compatible mode). These endpoints only
offer JSON-object response mode, so the canonical schema is sent as a system
hint and the returned text is parsed best-effort before validation.
"""

import json
import logging
from typing import Any

from openai import AsyncOpenAI

from ..cost.reporter import Backend
from ..models import CanonicalMessage, CanonicalRequest
from ..retry import Outcome
from ..schemas import json_schema_for
from .base import AttemptResult, LLMProvider, parse_json_text, validate_output
from .openai import classify_openai_error

logger = logging.getLogger(__name__)

SCHEMA_HINT = (
    "Respond only with a single JSON object (no markdown, no commentary) "
    "that conforms to this JSON schema:\n{schema}"
)


class OpenAICompatProvider(LLMProvider):
    """OpenAI-compatible provider for third-party endpoints.

    Args:
        base_url: Endpoint root; overrides the regional endpoint when set.
        provider_label: Registry name (e.g. "deepseek", "qwen").
        supported_models: Preferred models for discovery.
        regional_base_urls: Region -> endpoint, for backends priced and
            served per region.
    """

    def __init__(
        self,
        api_key: str = "",
        *,
        base_url: str = "",
        provider_label: str = "openai_compat",
        supported_models: tuple[str, ...] = (),
        regional_base_urls: dict[str, str] | None = None,
        **kwargs,
    ) -> None:
        self.provider_name = provider_label
        self.backend = Backend(provider_label)
        self.api_key_env = f"{provider_label.upper()}_API_KEY"
        super().__init__(api_key, **kwargs)
        self.SUPPORTED_MODELS = tuple(supported_models)
        regional = regional_base_urls or {}
        if regional and self.region not in regional:
            raise ValueError(
                f"Unknown region {self.region!r} for {provider_label}; "
                f"expected one of {sorted(regional)}"
            )
        self._base_url = base_url or regional.get(self.region or "", "")

    @property
    def base_url(self) -> str:
        return self._base_url

    def _create_client(self) -> AsyncOpenAI:
        kwargs: dict = {"api_key": self._api_key}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        return AsyncOpenAI(**kwargs)

    def classify_error(self, error: BaseException) -> Outcome:
        return classify_openai_error(error)

    def _build_params(
        self,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
    ) -> dict:
        """Build Chat Completions API request parameters."""
        schema = json.dumps(json_schema_for(request.request_kind), indent=2)
        chat: list[dict[str, Any]] = [
            {"role": "system", "content": SCHEMA_HINT.format(schema=schema)}
        ]
        chat.extend({"role": m.role.value, "content": m.content} for m in messages)
        for tool_output in request.tool_outputs:
            chat.append(
                {
                    "role": "user",
                    "content": f"Result of tool call {tool_output.call_id}:\n{tool_output.output}",
                }
            )

        params: dict[str, Any] = {
            "model": model,
            "messages": chat,
            "response_format": {"type": "json_object"},
        }
        temperature = self._temperature_for(request)
        if temperature is not None:
            params["temperature"] = temperature
        if request.max_output_tokens is not None:
            params["max_tokens"] = request.max_output_tokens
        return params

    @staticmethod
    def _extract_text(response) -> str | None:
        """Extract text from Chat Completions response."""
        if response.choices and len(response.choices) > 0:
            content = response.choices[0].message.content
            if content:
                return content
        return None

    async def _attempt(
        self,
        client: AsyncOpenAI,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
        attempt: int,
    ) -> AttemptResult:
        params = self._build_params(request, model, messages)
        response = await client.chat.completions.create(**params)
        self._log_exchange(request, params, response, attempt)

        raw_text = self._extract_text(response)
        parsed = validate_output(request.request_kind, parse_json_text(raw_text), raw_text)
        return AttemptResult(
            parsed=parsed,
            raw_text=raw_text,
            raw_usage=getattr(response, "usage", None),
            continuation_id=getattr(response, "id", None),
        )

    async def _probe(self, client: AsyncOpenAI, model: str) -> None:
        await client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": "ping"}],
            max_tokens=1,
        )

    async def _discover_models(self, client: AsyncOpenAI) -> list[str]:
        page = await client.models.list()
        return [m.id for m in page.data]
