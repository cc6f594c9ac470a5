"""Google Gemini provider (google-genai SDK).

Structured output uses JSON response mode with a response JSON schema.
System turns go to `system_instruction`; assistant turns become `model`
turns. The exploration action kind uses the canonical action schema rather
than function calling.
"""

import logging
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..cost.reporter import Backend
from ..models import CanonicalMessage, CanonicalRequest, Role
from ..retry import Outcome
from ..schemas import json_schema_for, to_gemini_schema
from .base import AttemptResult, LLMProvider, parse_json_text, split_system_messages, validate_output

logger = logging.getLogger(__name__)

_PROBE_MAX_OUTPUT_TOKENS = 10
_MODEL_NAME_PREFIX = "models/"


def classify_gemini_error(error: BaseException) -> Outcome:
    if isinstance(error, genai_errors.APIError):
        if error.code == 429:
            return Outcome.RATE_LIMITED
        if isinstance(error, genai_errors.ServerError):
            return Outcome.TRANSIENT
        return Outcome.FATAL
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return Outcome.TRANSIENT
    return Outcome.FATAL


class GeminiProvider(LLMProvider):
    """Google Gemini provider."""

    provider_name = "gemini"
    backend = Backend.GEMINI
    api_key_env = "GEMINI_API_KEY"
    SUPPORTED_MODELS = (
        "gemini-2.5-flash",
        "gemini-2.5-flash-preview-09-2025",
        "gemini-2.5-pro",
    )

    def _create_client(self) -> genai.Client:
        return genai.Client(api_key=self._api_key)

    async def close_async(self) -> None:
        if self._cached_async_client is not None:
            await self._cached_async_client.aio.aclose()
            self._cached_async_client = None

    def classify_error(self, error: BaseException) -> Outcome:
        return classify_gemini_error(error)

    def _build_contents(
        self, request: CanonicalRequest, turns: list[CanonicalMessage]
    ) -> list[dict[str, Any]]:
        contents = [
            {
                "role": "model" if m.role == Role.ASSISTANT else "user",
                "parts": [{"text": m.content}],
            }
            for m in turns
        ]
        for tool_output in request.tool_outputs:
            contents.append(
                {
                    "role": "user",
                    "parts": [
                        {"text": f"Result of tool call {tool_output.call_id}:\n{tool_output.output}"}
                    ],
                }
            )
        return contents

    def _build_config(self, request: CanonicalRequest, system: str | None) -> types.GenerateContentConfig:
        kwargs: dict[str, Any] = {
            "response_mime_type": "application/json",
            "response_json_schema": to_gemini_schema(json_schema_for(request.request_kind)),
        }
        if system:
            kwargs["system_instruction"] = system
        temperature = self._temperature_for(request)
        if temperature is not None:
            kwargs["temperature"] = temperature
        if request.max_output_tokens is not None:
            kwargs["max_output_tokens"] = request.max_output_tokens
        return types.GenerateContentConfig(**kwargs)

    async def _attempt(
        self,
        client: genai.Client,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
        attempt: int,
    ) -> AttemptResult:
        system, turns = split_system_messages(messages)
        contents = self._build_contents(request, turns)
        config = self._build_config(request, system)

        response = await client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )
        self._log_exchange(
            request,
            {"model": model, "contents": contents, "config": config},
            response,
            attempt,
        )

        raw_text = response.text
        parsed = validate_output(request.request_kind, parse_json_text(raw_text), raw_text)
        return AttemptResult(
            parsed=parsed,
            raw_text=raw_text,
            raw_usage=getattr(response, "usage_metadata", None),
            continuation_id=getattr(response, "response_id", None),
        )

    async def _probe(self, client: genai.Client, model: str) -> None:
        await client.aio.models.generate_content(
            model=model,
            contents="ping",
            config=types.GenerateContentConfig(max_output_tokens=_PROBE_MAX_OUTPUT_TOKENS),
        )

    async def _discover_models(self, client: genai.Client) -> list[str]:
        names = []
        async for model in await client.aio.models.list():
            name = model.name or ""
            names.append(name[len(_MODEL_NAME_PREFIX) :] if name.startswith(_MODEL_NAME_PREFIX) else name)
        return names
