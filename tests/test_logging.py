"""Tests for logging hygiene and redaction."""

import json

from genie.core.providers import logging as provider_logging


def test_provider_log_request_response_redacts_secrets_and_prompt_content(tmp_path):
    log_file = provider_logging.log_request_response(
        provider="openai",
        request_kind="commit_message",
        request={
            "model": "gpt-5-mini",
            "api_key": "sk-test-secret",
            "instructions": "You write commit messages for this diff",
            "input": [{"role": "user", "content": "diff --git a/secret.py"}],
            "Authorization": "Bearer abc123",
            "metadata": {"public_note": "ok"},
        },
        response={
            "output_text": "feat: rotate credentials",
            "usage": {"input_tokens": 21, "output_tokens": 9},
        },
        attempt=2,
        logs_dir=tmp_path,
    )

    assert log_file is not None
    assert list(tmp_path.glob("*_openai_commit_message.json")) == [log_file]

    payload = json.loads(log_file.read_text())
    assert payload["attempt"] == 2
    assert payload["request"]["api_key"] == "[REDACTED_SECRET]"
    assert payload["request"]["Authorization"] == "[REDACTED_SECRET]"
    assert payload["request"]["instructions"] == "[REDACTED_TEXT length=39]"
    assert payload["request"]["input"][0]["content"] == "[REDACTED_TEXT length=22]"
    assert payload["request"]["input"][0]["role"] == "user"
    assert payload["request"]["metadata"] == {"public_note": "ok"}
    assert payload["response"]["output_text"] == "[REDACTED_TEXT length=24]"
    assert payload["response"]["usage"]["input_tokens"] == 21


def test_sdk_response_objects_are_dumped_and_redacted():
    class FakeResponse:
        def model_dump(self, **kwargs):
            return {"id": "resp_1", "output": [{"type": "message", "text": "hello"}]}

    sanitized = provider_logging._sanitize_for_logs(FakeResponse(), key_hint="response")

    assert sanitized["id"] == "resp_1"
    assert sanitized["output"][0]["text"] == "[REDACTED_TEXT length=5]"


def test_long_plain_strings_are_truncated():
    sanitized = provider_logging._sanitize_for_logs({"note": "x" * 500})
    assert sanitized["note"].endswith("...[truncated]")
    assert len(sanitized["note"]) < 250


def test_unwritable_logs_dir_returns_none(tmp_path, monkeypatch, caplog):
    def refuse(*args, **kwargs):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr("builtins.open", refuse)
    with caplog.at_level("WARNING", logger="genie.core.providers.logging"):
        result = provider_logging.log_request_response(
            "gemini", "file_summary", {}, {}, logs_dir=tmp_path
        )
    assert result is None
    assert "Failed to write provider debug log" in caplog.text


def test_extract_error_summary_first_line_and_limit():
    error = RuntimeError("\n  upstream timed out\nstack trace follows")
    assert provider_logging.extract_error_summary(error) == "RuntimeError: upstream timed out"

    long_error = ValueError("y" * 500)
    summary = provider_logging.extract_error_summary(long_error, limit=40)
    assert len(summary) == 40
    assert summary.endswith("...")
