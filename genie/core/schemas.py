"""Canonical structured-output schemas, one per RequestKind.

Each request kind maps to a single pydantic model. Wire field names are
camelCase (what the prompts and tools ask the model to produce); Python
attributes are snake_case. Adapters never hand-write JSON schemas: they take
`json_schema_for(kind)` and run it through their dialect translator
(`to_openai_strict`, `to_gemini_schema`, or the Anthropic tool cleaner).
"""

import copy
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .errors import UnsupportedRequestKind
from .models import RequestKind


class WireModel(BaseModel):
    """Base for models exchanged with the LLM (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_null_optionals(cls, data: Any) -> Any:
        """Treat null as absent for fields that have a default.

        OpenAI strict mode lists every property as required and sends null
        for the ones the model leaves out.
        """
        if not isinstance(data, dict):
            return data
        optional = set()
        for name, field in cls.model_fields.items():
            if not field.is_required():
                optional.add(name)
                optional.add(field.alias or name)
        return {k: v for k, v in data.items() if not (v is None and k in optional)}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Output models
# =============================================================================


class CommitMessage(WireModel):
    commit_message: str = Field(min_length=1)


class FileSummary(WireModel):
    """Per-file change summary produced in the summarize step."""

    file: str = Field(min_length=1)
    status: Literal["added", "modified", "deleted", "renamed", "untracked", "ignored"]
    summary: str = Field(min_length=1)
    breaking: bool


class Footer(WireModel):
    token: str | None = None
    value: str | None = None


class ClassifyAndDraft(WireModel):
    """Conventional-commit classification plus a drafted message."""

    type: str = Field(min_length=1)
    scope: str | None = None
    breaking: bool
    description: str = Field(min_length=1)
    body: str | None = None
    footers: list[Footer] | None = None
    commit_message: str = Field(min_length=1)
    notes: str | None = None


class ValidateAndFix(WireModel):
    status: Literal["valid", "fixed"]
    commit_message: str = Field(min_length=1)
    violations: list[str | None] = Field(default_factory=list)
    notes: str | None = None


class CompressedContext(WireModel):
    compressed_content: str = Field(min_length=1, alias="compressed_content")


class RepoAnalysis(WireModel):
    """Final repository analysis."""

    summary: str = Field(
        min_length=1,
        description="Brief but comprehensive summary of the repository purpose and architecture",
    )
    project_type: str = Field(
        min_length=1,
        description="Main project type (e.g., Web App, Library, CLI Tool, etc.)",
    )
    technologies: list[str] = Field(description="Array of main technologies used")
    insights: list[str] = Field(
        description="Key architectural insights about the project"
    )


ToolName = Literal["listDirectory", "searchFiles", "readFileContent", "compressContext"]


class RepoAnalysisAction(WireModel):
    """One step of the repository exploration loop.

    Either a tool request (`action="tool"` with `tool_name` and `args`) or
    the terminal analysis (`action="final"` with `final`). `reason` is the
    model's short justification, kept apart from the tool arguments.
    """

    action: Literal["tool", "final"]
    tool_name: ToolName | None = None
    args: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None
    final: RepoAnalysis | None = None

    @model_validator(mode="after")
    def _check_action_payload(self) -> "RepoAnalysisAction":
        if self.action == "tool" and self.tool_name is None:
            raise ValueError("action 'tool' requires toolName")
        if self.action == "final" and self.final is None:
            raise ValueError("action 'final' requires final")
        return self


OUTPUT_MODELS: dict[RequestKind, type[WireModel]] = {
    RequestKind.COMMIT_MESSAGE: CommitMessage,
    RequestKind.STRICT_FIX: CommitMessage,
    RequestKind.ENFORCE_LANGUAGE: CommitMessage,
    RequestKind.FILE_SUMMARY: FileSummary,
    RequestKind.CLASSIFY_AND_DRAFT: ClassifyAndDraft,
    RequestKind.VALIDATE_AND_FIX: ValidateAndFix,
    RequestKind.COMPRESS_CONTEXT: CompressedContext,
    RequestKind.REPO_ANALYSIS: RepoAnalysis,
    RequestKind.REPO_ANALYSIS_ACTION: RepoAnalysisAction,
}


def get_output_model(kind: RequestKind) -> type[WireModel]:
    try:
        return OUTPUT_MODELS[kind]
    except KeyError:
        raise UnsupportedRequestKind(f"No output schema for request kind {kind!r}")


def schema_name(kind: RequestKind) -> str:
    return kind.value


# =============================================================================
# Canonical JSON schema
# =============================================================================

_DROPPED_KEYS = {"$defs", "title", "default"}


def _inline(node: Any, defs: dict[str, Any]) -> Any:
    """Resolve $ref pointers and drop pydantic-only keys."""
    if isinstance(node, list):
        return [_inline(item, defs) for item in node]
    if not isinstance(node, dict):
        return node
    if "$ref" in node:
        target = defs[node["$ref"].rsplit("/", 1)[-1]]
        merged = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
        return _inline(merged, defs)

    out: dict[str, Any] = {}
    for key, value in node.items():
        if key in _DROPPED_KEYS:
            continue
        if key == "properties":
            out[key] = {name: _inline(prop, defs) for name, prop in value.items()}
        else:
            out[key] = _inline(value, defs)
    return out


def model_json_schema(model: type[BaseModel]) -> dict[str, Any]:
    """Self-contained JSON schema (no $defs) for a pydantic model."""
    raw = model.model_json_schema(by_alias=True)
    return _inline(raw, raw.get("$defs", {}))


def json_schema_for(kind: RequestKind) -> dict[str, Any]:
    """Canonical JSON schema for a request kind.

    The exploration action schema types `args` as the union of every tool's
    parameters (all optional) so JSON-mode backends see the argument names.
    """
    if kind == RequestKind.REPO_ANALYSIS_ACTION:
        from .tools import action_args_schema

        schema = model_json_schema(RepoAnalysisAction)
        schema["properties"]["args"] = action_args_schema()
        return schema
    return model_json_schema(get_output_model(kind))


# =============================================================================
# Dialect translators
# =============================================================================

_STRICT_UNSUPPORTED = {"minLength", "maxLength", "minItems", "maxItems", "minimum", "maximum"}


def to_openai_strict(schema: dict[str, Any]) -> dict[str, Any]:
    """Translate to OpenAI strict structured-output JSON schema.

    Strict mode requires every property listed in `required` and
    `additionalProperties: false` on every object; optional fields stay
    optional by being nullable.
    """
    node = copy.deepcopy(schema)
    return _strictify(node)


def _strictify(node: Any) -> Any:
    if isinstance(node, list):
        return [_strictify(item) for item in node]
    if not isinstance(node, dict):
        return node

    out = {
        k: _strictify(v)
        for k, v in node.items()
        if k not in _STRICT_UNSUPPORTED and k != "properties"
    }
    if "properties" in node:
        properties = node["properties"]
        required = set(node.get("required", []))
        strict_props = {}
        for name, prop in properties.items():
            prop = _strictify(prop)
            if name not in required and not _is_nullable(prop):
                prop = {"anyOf": [prop, {"type": "null"}]}
            strict_props[name] = prop
        out["properties"] = strict_props
        out["required"] = list(properties)
    if out.get("type") == "object":
        out["additionalProperties"] = False
    return out


def _is_nullable(prop: dict[str, Any]) -> bool:
    if prop.get("type") == "null":
        return True
    if isinstance(prop.get("type"), list) and "null" in prop["type"]:
        return True
    return any(_is_nullable(option) for option in prop.get("anyOf", []))


def to_gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Translate to the JSON schema subset Gemini accepts for response_json_schema."""
    if isinstance(schema, list):
        return [to_gemini_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema
    out: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "additionalProperties":
            continue
        if key == "properties":
            out[key] = {name: to_gemini_schema(prop) for name, prop in value.items()}
        else:
            out[key] = to_gemini_schema(value)
    return out
