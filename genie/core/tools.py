"""Repository-analysis tool surface and tool-call decoding.

The exploration loop offers the model five tools: list a directory, search
files, read a file segment, compress context, and finalize. Executing the
tools is the caller's job; this module only declares them and turns a
backend's tool invocation into a validated RepoAnalysisAction.
"""

import json
import logging
from typing import Any, Literal

from pydantic import Field, ValidationError

from .errors import ParseError
from .models import ToolSpec
from .schemas import RepoAnalysis, RepoAnalysisAction, WireModel, model_json_schema

logger = logging.getLogger(__name__)

FINALIZE_TOOL = "finalize"
_MAX_REASON_CHARS = 500


# =============================================================================
# Tool argument models
# =============================================================================


class ListDirectoryArgs(WireModel):
    dir_path: str = Field(description="Absolute path to directory inside the repository")
    depth: int | None = Field(
        default=None, ge=0, description="Maximum depth to traverse (0 means only dir itself)"
    )
    exclude_patterns: list[str] | None = Field(
        default=None, description="Glob-like patterns to exclude"
    )


class SearchFilesArgs(WireModel):
    query: str
    search_type: Literal["name", "content"]
    use_regex: bool | None = None
    search_path: str | None = None
    max_results: int | None = Field(default=None, ge=1)
    case_sensitive: bool | None = None
    exclude_patterns: list[str] | None = None
    max_matches_per_file: int | None = Field(default=None, ge=1)
    context_lines: int | None = Field(default=None, ge=0)


class ReadFileContentArgs(WireModel):
    file_path: str
    start_line: int | None = Field(default=None, ge=1)
    max_lines: int | None = Field(default=None, ge=1)
    encoding: str | None = None


class CompressContextArgs(WireModel):
    content: str = Field(description="Content to compress")
    target_tokens: int | None = Field(
        default=None, ge=1, description="Target token budget after compression"
    )
    preserve_structure: bool | None = None
    language: str | None = Field(
        default=None, description="Language hint for the compression output"
    )


TOOL_ARG_MODELS: dict[str, type[WireModel]] = {
    "listDirectory": ListDirectoryArgs,
    "searchFiles": SearchFilesArgs,
    "readFileContent": ReadFileContentArgs,
    "compressContext": CompressContextArgs,
}

_TOOL_DESCRIPTIONS = {
    "listDirectory": "List directory entries up to a depth; dirPath must be inside repository.",
    "searchFiles": "Search files by name or content; paths must be inside repository.",
    "readFileContent": "Read a file segment; filePath must be inside repository.",
    "compressContext": "Use LLM summarization to compress long context before continuing exploration.",
    FINALIZE_TOOL: "Return the final structured repository analysis and end the exploration.",
}

_REASON_PROPERTY = {"type": "string", "description": "Brief reason for choosing this tool"}


def _parameters_schema(model: type[WireModel], with_reason: bool) -> dict[str, Any]:
    schema = model_json_schema(model)
    schema["additionalProperties"] = False
    if with_reason:
        schema["properties"]["reason"] = dict(_REASON_PROPERTY)
    return schema


def repo_analysis_tools() -> list[ToolSpec]:
    """The fixed exploration tool surface, finalize last."""
    tools = [
        ToolSpec(
            name=name,
            description=_TOOL_DESCRIPTIONS[name],
            parameters=_parameters_schema(model, with_reason=True),
        )
        for name, model in TOOL_ARG_MODELS.items()
    ]
    tools.append(
        ToolSpec(
            name=FINALIZE_TOOL,
            description=_TOOL_DESCRIPTIONS[FINALIZE_TOOL],
            parameters=_parameters_schema(RepoAnalysis, with_reason=False),
        )
    )
    return tools


def action_args_schema() -> dict[str, Any]:
    """Union of all tool parameters, every one optional (JSON action mode)."""
    properties: dict[str, Any] = {}
    for name, model in TOOL_ARG_MODELS.items():
        for prop_name, prop in model_json_schema(model)["properties"].items():
            if prop_name not in properties:
                prop = dict(prop)
                prop["description"] = f"{prop.get('description', prop_name)} (for {name})"
                properties[prop_name] = prop
    return {"type": "object", "properties": properties}


# =============================================================================
# Decoding
# =============================================================================


def _load_arguments(arguments: Any) -> dict[str, Any]:
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ParseError(f"Tool arguments are not valid JSON: {e}", raw_text=arguments)
    if not isinstance(arguments, dict):
        raise ParseError(f"Tool arguments must be an object, got {type(arguments).__name__}")
    return dict(arguments)


def _clean_reason(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()[:_MAX_REASON_CHARS]
    return None


def decode_tool_call(
    name: str,
    arguments: Any,
    *,
    fallback_reason: str | None = None,
) -> RepoAnalysisAction:
    """Validate one tool invocation and split `reason` out of its arguments.

    Raises:
        ParseError: unknown tool name or arguments that fail validation.
    """
    args = _load_arguments(arguments)
    reason = _clean_reason(args.pop("reason", None)) or _clean_reason(fallback_reason)

    try:
        if name == FINALIZE_TOOL:
            final = RepoAnalysis.model_validate(args)
            return RepoAnalysisAction(action="final", final=final, reason=reason)

        model = TOOL_ARG_MODELS.get(name)
        if model is None:
            raise ParseError(f"Unknown tool requested: {name!r}")
        validated = model.model_validate(args)
    except ValidationError as e:
        raise ParseError(f"Invalid arguments for tool {name!r}: {e}", raw_text=json.dumps(args))

    logger.debug(f"Decoded tool call {name} (reason: {reason or '-'})")
    return RepoAnalysisAction(
        action="tool",
        tool_name=name,
        args=validated.to_wire(),
        reason=reason,
    )


def normalize_action(action: RepoAnalysisAction) -> RepoAnalysisAction:
    """Re-validate an action decoded from a JSON-mode response.

    JSON-mode backends return the whole action object; their `args` still
    need the per-tool validation that native tool calls get.
    """
    if action.action == "final":
        return action
    return decode_tool_call(action.tool_name, action.args, fallback_reason=action.reason)
