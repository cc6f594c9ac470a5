"""Debug dumps and error summaries shared by the provider adapters."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SECRET_KEY_MARKERS = ("api_key", "authorization", "secret", "password")
_COUNT_SUFFIXES = ("_tokens", "_token_count")
# Message bodies carry diffs and source code; only their size is kept.
_TEXT_KEYS = {
    "content",
    "text",
    "instructions",
    "system",
    "system_instruction",
    "input",
    "arguments",
    "output",
    "output_text",
}
_MAX_PLAIN_STRING = 200


def get_logs_dir(base: str | Path = "./logs") -> Path:
    """Get logs directory, create if needed."""
    logs_dir = Path(base)
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def _sanitize_for_logs(value: Any, key_hint: str = "") -> Any:
    """Recursively redact secrets and message text before persisting."""
    key = key_hint.lower()
    if key.endswith(_COUNT_SUFFIXES):
        return value
    if any(marker in key for marker in _SECRET_KEY_MARKERS):
        return "[REDACTED_SECRET]"

    if isinstance(value, dict):
        return {str(k): _sanitize_for_logs(v, key_hint=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize_for_logs(item, key_hint=key_hint) for item in value]
    if isinstance(value, str):
        if key in _TEXT_KEYS:
            return f"[REDACTED_TEXT length={len(value)}]"
        if len(value) > _MAX_PLAIN_STRING:
            return value[:_MAX_PLAIN_STRING] + "...[truncated]"
        return value
    if hasattr(value, "model_dump"):
        return _sanitize_for_logs(
            value.model_dump(mode="json", exclude_none=True), key_hint=key_hint
        )
    return value


def _serialize_response(response: Any) -> Any:
    """Convert an SDK response to a sanitized, JSON-friendly structure."""
    if isinstance(response, dict) or hasattr(response, "model_dump"):
        return _sanitize_for_logs(response, key_hint="response")
    return {"type": type(response).__name__}


def log_request_response(
    provider: str,
    request_kind: str,
    request: dict,
    response: Any,
    *,
    attempt: int = 1,
    logs_dir: str | Path = "./logs",
) -> Path | None:
    """Write one sanitized request/response pair to a JSON file."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    log_file = get_logs_dir(logs_dir) / f"{timestamp}_{provider.lower()}_{request_kind}.json"

    log_data = {
        "timestamp": datetime.now().isoformat(),
        "provider": provider,
        "request_kind": request_kind,
        "attempt": attempt,
        "request": _sanitize_for_logs(request, key_hint="request"),
        "response": _serialize_response(response),
    }

    try:
        with open(log_file, "w", encoding="utf-8") as f:
            json.dump(log_data, f, indent=2, default=str)
    except OSError as exc:
        logger.warning("Failed to write provider debug log %s: %s", log_file, exc)
        return None
    return log_file


def extract_error_summary(error: BaseException, limit: int = 120) -> str:
    """One-line summary of a provider exception for logs and CLI output."""
    message = getattr(error, "message", None) or str(error)
    for line in str(message).strip().splitlines():
        line = line.strip()
        if line:
            summary = f"{type(error).__name__}: {line}"
            return summary if len(summary) <= limit else summary[: limit - 3] + "..."
    return type(error).__name__
