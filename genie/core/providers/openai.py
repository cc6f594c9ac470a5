"""OpenAI provider (Responses API).

Structured output uses strict JSON-schema decoding (`text.format`). The
repository-analysis action kind uses function calling instead: the model must
call exactly one of the exploration tools or `finalize`, and calls chain
through `previous_response_id`.
"""

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from ..cost.reporter import Backend
from ..errors import NoToolCall, ParseError
from ..models import CanonicalMessage, CanonicalRequest, RequestKind
from ..retry import Outcome
from ..schemas import json_schema_for, schema_name, to_openai_strict
from ..tools import decode_tool_call, repo_analysis_tools
from .base import AttemptResult, LLMProvider, parse_json_text, split_system_messages, validate_output

logger = logging.getLogger(__name__)

_TRANSIENT_OPENAI_ERRORS = (
    openai.APIConnectionError,
    openai.InternalServerError,
)

# Reasoning models reject a temperature parameter
_NO_TEMPERATURE_PREFIXES = ("gpt-5", "o1", "o3", "o4")

_PROBE_MAX_OUTPUT_TOKENS = 16


def classify_openai_error(error: BaseException) -> Outcome:
    """Retry outcome for exceptions raised by the openai SDK."""
    if isinstance(error, openai.RateLimitError):
        return Outcome.RATE_LIMITED
    if isinstance(error, openai.APIStatusError) and error.status_code == 429:
        return Outcome.RATE_LIMITED
    if isinstance(error, _TRANSIENT_OPENAI_ERRORS):
        return Outcome.TRANSIENT
    return Outcome.FATAL


def supports_temperature(model: str) -> bool:
    return not model.startswith(_NO_TEMPERATURE_PREFIXES)


class OpenAIProvider(LLMProvider):
    """OpenAI provider using the Responses API."""

    provider_name = "openai"
    backend = Backend.OPENAI
    api_key_env = "OPENAI_API_KEY"
    SUPPORTED_MODELS = (
        "gpt-5",
        "gpt-5-mini",
        "gpt-5-nano",
        "gpt-4.1",
        "gpt-4.1-mini",
        "gpt-4o",
        "gpt-4o-mini",
        "o4-mini",
    )

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=self._api_key)

    def classify_error(self, error: BaseException) -> Outcome:
        return classify_openai_error(error)

    @staticmethod
    def _extract_output_text(response, last: bool = False) -> str | None:
        """Output text of the first (or last) message item in response.output."""
        texts = []
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", None) != "message":
                continue
            for content_item in getattr(item, "content", None) or []:
                if getattr(content_item, "type", None) == "output_text":
                    texts.append(content_item.text)
        if not texts:
            return None
        return texts[-1] if last else texts[0]

    @staticmethod
    def _find_function_call(response):
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", None) == "function_call":
                return item
        return None

    def _build_params(
        self,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
    ) -> dict:
        instructions, turns = split_system_messages(messages)
        params: dict[str, Any] = {
            "model": model,
            "input": [{"role": m.role.value, "content": m.content} for m in turns],
        }
        if instructions:
            params["instructions"] = instructions

        temperature = self._temperature_for(request)
        if temperature is not None and supports_temperature(model):
            params["temperature"] = temperature
        if request.max_output_tokens is not None:
            params["max_output_tokens"] = request.max_output_tokens
        if request.previous_response_id:
            params["previous_response_id"] = request.previous_response_id
        for tool_output in request.tool_outputs:
            params["input"].append(
                {
                    "type": "function_call_output",
                    "call_id": tool_output.call_id,
                    "output": tool_output.output,
                }
            )

        kind = request.request_kind
        if kind == RequestKind.REPO_ANALYSIS_ACTION:
            tools = request.tools or repo_analysis_tools()
            params["tools"] = [
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                    "strict": False,
                }
                for tool in tools
            ]
            params["tool_choice"] = "required"
            params["parallel_tool_calls"] = False
            params["store"] = True
        else:
            params["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": schema_name(kind),
                    "strict": True,
                    "schema": to_openai_strict(json_schema_for(kind)),
                }
            }
        return params

    async def _attempt(
        self,
        client: AsyncOpenAI,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
        attempt: int,
    ) -> AttemptResult:
        params = self._build_params(request, model, messages)
        response = await client.responses.create(**params)
        self._log_exchange(request, params, response, attempt)

        if request.request_kind == RequestKind.REPO_ANALYSIS_ACTION:
            return self._decode_action(response)

        raw_text = self._extract_output_text(response)
        if raw_text is None:
            raise ParseError("Response contained no output text", provider=self.label)
        parsed = validate_output(request.request_kind, parse_json_text(raw_text), raw_text)
        return AttemptResult(
            parsed=parsed,
            raw_text=raw_text,
            raw_usage=getattr(response, "usage", None),
            continuation_id=getattr(response, "id", None),
        )

    def _decode_action(self, response) -> AttemptResult:
        call = self._find_function_call(response)
        if call is None:
            raise NoToolCall(
                "Model returned neither a tool call nor a final answer",
                provider=self.label,
            )
        fallback_reason = self._extract_output_text(response, last=True)
        action = decode_tool_call(call.name, call.arguments, fallback_reason=fallback_reason)
        arguments = call.arguments if isinstance(call.arguments, str) else json.dumps(call.arguments)
        logger.info(f"[{self.label}] Tool call: {call.name} ({action.reason or 'no reason'})")
        return AttemptResult(
            parsed=action,
            raw_text=arguments,
            raw_usage=getattr(response, "usage", None),
            continuation_id=getattr(response, "id", None),
            tool_call_id=getattr(call, "call_id", None) or getattr(call, "id", None),
        )

    async def _probe(self, client: AsyncOpenAI, model: str) -> None:
        await client.responses.create(
            model=model,
            input="ping",
            max_output_tokens=_PROBE_MAX_OUTPUT_TOKENS,
        )

    async def _discover_models(self, client: AsyncOpenAI) -> list[str]:
        page = await client.models.list()
        return [m.id for m in page.data]
