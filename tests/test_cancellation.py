"""Tests for CancellationToken."""

import asyncio
import inspect

import pytest

from genie.core.cancellation import CancellationToken
from genie.core.errors import Cancelled


def test_cancel_is_idempotent_and_runs_callbacks_once():
    token = CancellationToken()
    calls = []
    token.on_cancel(lambda: calls.append("a"))

    token.cancel()
    token.cancel()

    assert token.is_cancelled
    assert calls == ["a"]


def test_on_cancel_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    calls = []
    token.on_cancel(lambda: calls.append("late"))
    assert calls == ["late"]


def test_raise_if_cancelled_carries_provider():
    token = CancellationToken()
    token.raise_if_cancelled("OpenAI")
    token.cancel()
    with pytest.raises(Cancelled) as exc_info:
        token.raise_if_cancelled("OpenAI")
    assert exc_info.value.status_code == 499
    assert str(exc_info.value) == "[OpenAI] Request cancelled"


def test_guard_returns_result_when_not_cancelled():
    async def work():
        return 42

    assert asyncio.run(CancellationToken().guard(work())) == 42


def test_guard_propagates_errors_from_the_awaitable():
    async def work():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(CancellationToken().guard(work()))


def test_guard_cancels_the_awaitable():
    token = CancellationToken()
    state = {}

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            state["aborted"] = True
            raise

    async def run():
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await token.guard(slow(), provider="Gemini")

    with pytest.raises(Cancelled):
        asyncio.run(run())
    assert state == {"aborted": True}


def test_wait_returns_once_cancelled():
    token = CancellationToken()

    async def run():
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)

    asyncio.run(run())


def test_guard_on_cancelled_token_closes_the_coroutine():
    token = CancellationToken()
    token.cancel()
    started = []

    async def work():
        started.append(True)

    coro = work()

    async def run():
        await token.guard(coro, provider="Qwen")

    with pytest.raises(Cancelled):
        asyncio.run(run())
    assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED
    assert started == []
