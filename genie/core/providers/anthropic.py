"""Anthropic (Claude) provider.

Uses the tool use pattern for structured output: the canonical schema is
offered as the input schema of a single tool and Claude is forced to call
it, so the tool input is the structured response.

For the repository-analysis action kind the real exploration tools are
offered instead and Claude must pick exactly one (`tool_choice: any` with
parallel tool use disabled).
"""

import json
import logging
from typing import Any

import anthropic

from ..cost.reporter import Backend
from ..errors import NoToolCall, ParseError
from ..models import CanonicalMessage, CanonicalRequest, RequestKind, ToolOutput
from ..retry import Outcome
from ..schemas import json_schema_for, schema_name
from ..tools import decode_tool_call, repo_analysis_tools
from .base import AttemptResult, LLMProvider, split_system_messages, validate_output

_TRANSIENT_ANTHROPIC_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)
_DEFAULT_MAX_TOKENS = 4096


logger = logging.getLogger(__name__)


def classify_anthropic_error(error: BaseException) -> Outcome:
    if isinstance(error, anthropic.RateLimitError):
        return Outcome.RATE_LIMITED
    if isinstance(error, anthropic.APIStatusError) and error.status_code == 429:
        return Outcome.RATE_LIMITED
    if isinstance(error, _TRANSIENT_ANTHROPIC_ERRORS):
        return Outcome.TRANSIENT
    return Outcome.FATAL


def _clean_schema_for_tool(schema: dict) -> dict:
    """Clean a JSON schema for use as a tool input_schema.

    Anthropic accepts `additionalProperties: false` but not schema-valued
    additionalProperties; free-form objects (`true`) are left open by
    dropping the key.
    """
    cleaned = {}
    for key, value in schema.items():
        if key == "additionalProperties":
            if value is False:
                cleaned[key] = value
            elif isinstance(value, dict):
                logger.debug("Stripping schema-valued additionalProperties from tool schema")
            continue
        if key == "properties" and isinstance(value, dict):
            cleaned[key] = {name: _clean_schema_for_tool(prop) for name, prop in value.items()}
        elif isinstance(value, dict):
            cleaned[key] = _clean_schema_for_tool(value)
        elif isinstance(value, list):
            cleaned[key] = [
                _clean_schema_for_tool(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            cleaned[key] = value
    return cleaned


def _make_structured_tool(name: str, schema: dict) -> dict:
    """Create a tool definition that forces structured output."""
    return {
        "name": name,
        "description": (
            "Return your response as structured data. "
            "You MUST call this tool with your complete response."
        ),
        "input_schema": _clean_schema_for_tool(schema),
    }


def _text_of(response) -> str | None:
    texts = [
        block.text
        for block in getattr(response, "content", None) or []
        if getattr(block, "type", None) == "text" and getattr(block, "text", None)
    ]
    return "\n".join(texts) if texts else None


def _first_tool_use(response):
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "tool_use":
            return block
    return None


def _tool_result_turns(outputs: list[ToolOutput]) -> list[dict[str, Any]]:
    """Replay tool calls and their results as Claude message turns.

    Every `tool_result` must answer a `tool_use` in the preceding assistant
    turn, so outputs that carry the original call name are sent as a
    tool_use/tool_result pair. Outputs without it fall back to plain text.
    """
    if not outputs:
        return []
    replayable = [o for o in outputs if o.name]
    plain = [o for o in outputs if not o.name]

    turns: list[dict[str, Any]] = []
    if replayable:
        turns.append(
            {
                "role": "assistant",
                "content": [
                    {
                        "type": "tool_use",
                        "id": o.call_id,
                        "name": o.name,
                        "input": o.arguments or {},
                    }
                    for o in replayable
                ],
            }
        )
    content: list[dict[str, Any]] = [
        {"type": "tool_result", "tool_use_id": o.call_id, "content": o.output}
        for o in replayable
    ]
    if plain:
        content.append(
            {
                "type": "text",
                "text": "\n\n".join(
                    f"Result of tool call {o.call_id}:\n{o.output}" for o in plain
                ),
            }
        )
    turns.append({"role": "user", "content": content})
    return turns


class AnthropicProvider(LLMProvider):
    """Anthropic (Claude) provider."""

    provider_name = "anthropic"
    backend = Backend.ANTHROPIC
    api_key_env = "ANTHROPIC_API_KEY"
    SUPPORTED_MODELS = (
        "claude-3-5-haiku-20241022",
        "claude-sonnet-4-20250514",
        "claude-3-7-sonnet-20250219",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-sonnet-20240620",
        "claude-opus-4-1-20250805",
        "claude-opus-4-20250514",
    )

    def __init__(self, api_key: str = "", *, base_url: str = "", **kwargs) -> None:
        super().__init__(api_key, **kwargs)
        self._base_url = base_url

    def _create_client(self) -> anthropic.AsyncAnthropic:
        kwargs: dict = {"api_key": self._api_key}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        return anthropic.AsyncAnthropic(**kwargs)

    def classify_error(self, error: BaseException) -> Outcome:
        return classify_anthropic_error(error)

    def _build_params(
        self,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
    ) -> dict:
        system, turns = split_system_messages(messages)
        chat: list[dict[str, Any]] = [
            {"role": m.role.value, "content": m.content} for m in turns
        ]
        chat.extend(_tool_result_turns(request.tool_outputs))

        params: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_output_tokens or _DEFAULT_MAX_TOKENS,
            "messages": chat,
        }
        if system:
            params["system"] = system
        temperature = self._temperature_for(request)
        if temperature is not None:
            params["temperature"] = temperature

        kind = request.request_kind
        if kind == RequestKind.REPO_ANALYSIS_ACTION:
            tools = request.tools or repo_analysis_tools()
            params["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": _clean_schema_for_tool(tool.parameters),
                }
                for tool in tools
            ]
            params["tool_choice"] = {"type": "any", "disable_parallel_tool_use": True}
        else:
            name = schema_name(kind)
            params["tools"] = [_make_structured_tool(name, json_schema_for(kind))]
            params["tool_choice"] = {"type": "tool", "name": name}
        return params

    async def _attempt(
        self,
        client: anthropic.AsyncAnthropic,
        request: CanonicalRequest,
        model: str,
        messages: list[CanonicalMessage],
        attempt: int,
    ) -> AttemptResult:
        params = self._build_params(request, model, messages)
        response = await client.messages.create(**params)
        self._log_exchange(request, params, response, attempt)

        block = _first_tool_use(response)
        usage = getattr(response, "usage", None)

        if request.request_kind == RequestKind.REPO_ANALYSIS_ACTION:
            if block is None:
                raise NoToolCall(
                    "Model returned neither a tool call nor a final answer",
                    provider=self.label,
                )
            action = decode_tool_call(block.name, block.input, fallback_reason=_text_of(response))
            logger.info(f"[{self.label}] Tool call: {block.name} ({action.reason or 'no reason'})")
            return AttemptResult(
                parsed=action,
                raw_text=json.dumps(block.input),
                raw_usage=usage,
                continuation_id=getattr(response, "id", None),
                tool_call_id=getattr(block, "id", None),
            )

        if block is None:
            raise ParseError(
                "Claude did not call the structured output tool",
                raw_text=_text_of(response),
                provider=self.label,
            )
        raw_text = json.dumps(block.input)
        return AttemptResult(
            parsed=validate_output(request.request_kind, block.input, raw_text),
            raw_text=raw_text,
            raw_usage=usage,
            continuation_id=getattr(response, "id", None),
        )

    async def _probe(self, client: anthropic.AsyncAnthropic, model: str) -> None:
        await client.messages.create(
            model=model,
            max_tokens=1,
            messages=[{"role": "user", "content": "ping"}],
        )
