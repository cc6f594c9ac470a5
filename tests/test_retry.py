"""Tests for the shared retry coordinator and rate-limit notifier."""

import asyncio
import logging
from types import SimpleNamespace

import pytest

from genie.core.cancellation import CancellationToken
from genie.core.errors import (
    Cancelled,
    InvalidCredential,
    ParseError,
    ProviderError,
    RateLimited,
    RetriesExhausted,
)
from genie.core.providers.anthropic import AnthropicProvider
from genie.core.retry import (
    Outcome,
    RateLimitNotifier,
    RetryCoordinator,
    retry_delay_ms,
)
from genie.storage import MemoryStore


class FakeRateLimit(Exception):
    pass


class FakeTimeout(Exception):
    pass


def _classify(error: BaseException) -> Outcome:
    if isinstance(error, FakeRateLimit):
        return Outcome.RATE_LIMITED
    if isinstance(error, FakeTimeout):
        return Outcome.TRANSIENT
    return Outcome.FATAL


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _coordinator(budget: int = 2, notifier=None):
    sleep = RecordingSleep()
    return RetryCoordinator("Test", _classify, retry_budget=budget, notifier=notifier, sleep=sleep), sleep


def _scripted(failures: list[BaseException], result="ok"):
    """attempt(n) that raises failures[n-1] until they run out."""
    attempts: list[int] = []

    async def attempt(n: int):
        attempts.append(n)
        if n <= len(failures):
            raise failures[n - 1]
        return result

    return attempt, attempts


class TestRateLimitRetries:
    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_k_minus_one_sleeps_before_success(self, k):
        coordinator, sleep = _coordinator(budget=2)
        attempt, attempts = _scripted([FakeRateLimit("slow down")] * (k - 1))

        result = asyncio.run(coordinator.run(attempt, CancellationToken()))

        assert result == "ok"
        assert attempts == list(range(1, k + 1))
        assert len(sleep.calls) == k - 1

    def test_exhausted_rate_limit_raises_retries_exhausted(self):
        coordinator, sleep = _coordinator(budget=1)
        attempt, attempts = _scripted([FakeRateLimit("a"), FakeRateLimit("b")])

        with pytest.raises(RetriesExhausted) as exc_info:
            asyncio.run(coordinator.run(attempt, CancellationToken()))

        assert attempts == [1, 2]
        assert len(sleep.calls) == 1
        assert isinstance(exc_info.value.last_error, FakeRateLimit)
        assert exc_info.value.provider == "Test"

    def test_rate_limited_error_class_is_retried(self):
        coordinator, sleep = _coordinator()
        attempt, _ = _scripted([RateLimited("429")])
        assert asyncio.run(coordinator.run(attempt, CancellationToken())) == "ok"
        assert len(sleep.calls) == 1

    def test_wait_honours_retry_hint(self):
        coordinator, sleep = _coordinator()
        attempt, _ = _scripted([FakeRateLimit("Rate limit reached, please retry in 7s")])
        asyncio.run(coordinator.run(attempt, CancellationToken()))
        assert sleep.calls == [7.0]

    def test_zero_budget_makes_one_attempt(self):
        coordinator, sleep = _coordinator(budget=0)
        attempt, attempts = _scripted([FakeRateLimit("x")])
        with pytest.raises(RetriesExhausted):
            asyncio.run(coordinator.run(attempt, CancellationToken()))
        assert attempts == [1]
        assert sleep.calls == []


class TestOtherOutcomes:
    def test_transient_errors_back_off_exponentially(self):
        coordinator, sleep = _coordinator(budget=2)
        attempt, _ = _scripted([FakeTimeout("t1"), FakeTimeout("t2")])
        assert asyncio.run(coordinator.run(attempt, CancellationToken())) == "ok"
        assert 1 <= sleep.calls[0] < 2
        assert 2 <= sleep.calls[1] < 3

    def test_fatal_error_is_not_retried(self):
        coordinator, sleep = _coordinator()
        attempt, attempts = _scripted([ValueError("bad request")])
        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(coordinator.run(attempt, CancellationToken()))
        assert attempts == [1]
        assert sleep.calls == []
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_provider_errors_pass_through_unwrapped(self):
        coordinator, _ = _coordinator()
        attempt, _ = _scripted([InvalidCredential("nope")])
        with pytest.raises(InvalidCredential) as exc_info:
            asyncio.run(coordinator.run(attempt, CancellationToken()))
        assert exc_info.value.provider == "Test"

    def test_parse_error_retries_without_sleep(self):
        coordinator, sleep = _coordinator()
        attempt, attempts = _scripted([ParseError("not json")])
        assert asyncio.run(coordinator.run(attempt, CancellationToken())) == "ok"
        assert attempts == [1, 2]
        assert sleep.calls == []

    def test_exhausted_parse_error_is_reraised(self):
        coordinator, _ = _coordinator(budget=1)
        attempt, _ = _scripted([ParseError("first"), ParseError("second", raw_text="{")])
        with pytest.raises(ParseError) as exc_info:
            asyncio.run(coordinator.run(attempt, CancellationToken()))
        assert exc_info.value.raw_text == "{"


class TestCancellation:
    def test_cancel_before_start_makes_zero_attempts(self):
        coordinator, _ = _coordinator()
        attempt, attempts = _scripted([])
        token = CancellationToken()
        token.cancel()

        with pytest.raises(Cancelled):
            asyncio.run(coordinator.run(attempt, token))
        assert attempts == []

    def test_cancel_during_back_off_stops_retrying(self):
        token = CancellationToken()

        async def cancelling_sleep(seconds):
            token.cancel()
            await asyncio.sleep(10)

        coordinator = RetryCoordinator("Test", _classify, retry_budget=3, sleep=cancelling_sleep)
        attempt, attempts = _scripted([FakeRateLimit("x")] * 3)

        with pytest.raises(Cancelled):
            asyncio.run(coordinator.run(attempt, token))
        assert attempts == [1]

    def test_cancel_aborts_in_flight_attempt(self):
        token = CancellationToken()
        aborted = []

        async def hanging_attempt(n):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                aborted.append(n)
                raise

        async def run():
            coordinator, _ = _coordinator()
            task = asyncio.create_task(coordinator.run(hanging_attempt, token))
            await asyncio.sleep(0.01)
            token.cancel()
            return await task

        with pytest.raises(Cancelled):
            asyncio.run(run())
        assert aborted == [1]

    def test_cancel_before_back_off_never_starts_the_sleep(self):
        token = CancellationToken()
        notifier = RateLimitNotifier(notify=lambda backend, msg: token.cancel())
        coordinator, sleep = _coordinator(notifier=notifier)
        attempt, attempts = _scripted([FakeRateLimit("x")])

        with pytest.raises(Cancelled):
            asyncio.run(coordinator.run(attempt, token))
        assert attempts == [1]
        assert sleep.calls == []


class TestRetryDelay:
    def test_retry_after_header(self):
        error = FakeRateLimit("x")
        error.response = SimpleNamespace(headers={"retry-after": "12"})
        assert retry_delay_ms(error) == 12_000

    def test_message_hint(self):
        assert retry_delay_ms(FakeRateLimit("Please retry after 3.5 s")) == 3500

    def test_floor_of_one_second(self):
        assert retry_delay_ms(FakeRateLimit("retry in 0.2s")) == 1000

    def test_default_two_seconds(self):
        assert retry_delay_ms(FakeRateLimit("busy")) == 2000


class TestRateLimitNotifier:
    def test_one_notice_per_window(self):
        now = [1000.0]
        shown = []
        notifier = RateLimitNotifier(
            MemoryStore(), notify=lambda backend, msg: shown.append(backend), clock=lambda: now[0]
        )

        async def run():
            first = await notifier.maybe_notify("OpenAI", "wait")
            now[0] += 30
            second = await notifier.maybe_notify("OpenAI", "wait")
            other = await notifier.maybe_notify("Gemini", "wait")
            now[0] += 31
            third = await notifier.maybe_notify("OpenAI", "wait")
            return first, second, other, third

        assert asyncio.run(run()) == (True, False, True, True)
        assert shown == ["OpenAI", "Gemini", "OpenAI"]

    def test_window_persists_in_store(self):
        store = MemoryStore()
        clock = lambda: 5000.0  # noqa: E731
        asyncio.run(RateLimitNotifier(store, notify=lambda *a: None, clock=clock).maybe_notify("Qwen", "x"))

        assert store.get("costTracking.qwenRateLimitWarned") == 5_000_000
        fresh = RateLimitNotifier(store, notify=lambda *a: None, clock=clock)
        assert asyncio.run(fresh.maybe_notify("Qwen", "x")) is False

    def test_notifier_called_on_rate_limit(self):
        shown = []
        notifier = RateLimitNotifier(notify=lambda backend, msg: shown.append(msg))
        coordinator, _ = _coordinator(notifier=notifier)
        attempt, _ = _scripted([FakeRateLimit("a"), FakeRateLimit("b")])

        asyncio.run(coordinator.run(attempt, CancellationToken()))

        assert len(shown) == 1
        assert "Rate limit" in shown[0]

    def test_throttle_key_uses_backend_name(self):
        store = MemoryStore()
        shown = []
        notifier = RateLimitNotifier(store, notify=lambda backend, msg: shown.append(backend))
        coordinator = RetryCoordinator(
            "Claude", _classify, notifier=notifier, sleep=RecordingSleep(), backend="anthropic"
        )
        attempt, _ = _scripted([FakeRateLimit("x")])

        asyncio.run(coordinator.run(attempt, CancellationToken()))

        assert isinstance(store.get("costTracking.anthropicRateLimitWarned"), int)
        assert store.get("costTracking.claudeRateLimitWarned") is None
        assert shown == ["Claude"]

    def test_provider_passes_backend_name(self):
        provider = AnthropicProvider("test-key")
        assert provider._retry.backend == "anthropic"
        assert provider._retry.provider_label == "Claude"


class TestStateTransitions:
    def test_success_after_rate_limit(self, caplog):
        caplog.set_level(logging.DEBUG, logger="genie.core.retry")
        coordinator, _ = _coordinator()
        attempt, _ = _scripted([FakeRateLimit("x")])

        asyncio.run(coordinator.run(attempt, CancellationToken()))

        transitions = [
            r.getMessage() for r in caplog.records if r.levelno == logging.DEBUG and "->" in r.getMessage()
        ]
        assert transitions == [
            "[Test] pending -> attempting (attempt 1/3)",
            "[Test] attempting -> rate_limited (attempt 1/3)",
            "[Test] rate_limited -> attempting (attempt 2/3)",
            "[Test] attempting -> success (attempt 2/3)",
        ]

    def test_fatal_and_cancelled_are_terminal(self, caplog):
        caplog.set_level(logging.DEBUG, logger="genie.core.retry")
        coordinator, _ = _coordinator()
        attempt, _ = _scripted([ValueError("bad request")])
        with pytest.raises(ProviderError):
            asyncio.run(coordinator.run(attempt, CancellationToken()))
        assert "attempting -> fatal (attempt 1/3)" in caplog.text

        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled):
            asyncio.run(coordinator.run(attempt, token))
        assert "pending -> cancelled (attempt 1/3)" in caplog.text
