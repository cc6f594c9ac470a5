"""Shared attempt loop for every provider adapter.

Each call runs through RetryCoordinator.run(), which owns the per-call state
machine:

    PENDING -> ATTEMPTING(n) -> SUCCESS
                             -> RATE_LIMITED -> ATTEMPTING(n+1)
                             -> CANCELLED
                             -> FATAL

Each transition is logged at DEBUG. Adapters supply a classifier mapping their
SDK exceptions to an Outcome. The coordinator keeps no state between calls;
concurrent calls through the same coordinator are independent.
"""

import asyncio
import logging
import random
import re
import time
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from .cancellation import CancellationToken
from .errors import (
    Cancelled,
    ClientNotInitialized,
    InvalidCredential,
    LedgerUnavailable,
    ModelNotSelected,
    NoToolCall,
    ParseError,
    ProviderError,
    RateLimited,
    RetriesExhausted,
    UnsupportedProvider,
    UnsupportedRequestKind,
    wrap_error,
)
from ..storage import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_BUDGET = 2
DEFAULT_RATE_LIMIT_DELAY_MS = 2000
MIN_RATE_LIMIT_DELAY_MS = 1000
RATE_LIMIT_WARNING_WINDOW_MS = 60_000

_RETRY_HINT_RE = re.compile(r"retry (?:in|after)\s+([0-9]+(?:\.[0-9]+)?)\s*s", re.IGNORECASE)

_FATAL_ERRORS = (
    ClientNotInitialized,
    ModelNotSelected,
    NoToolCall,
    InvalidCredential,
    UnsupportedProvider,
    UnsupportedRequestKind,
)


class Outcome(str, Enum):
    """Classification of a failed attempt."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    CANCELLED = "cancelled"
    FATAL = "fatal"


class CallState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    RATE_LIMITED = "rate_limited"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FATAL = "fatal"


Classifier = Callable[[BaseException], Outcome]


def retry_delay_ms(error: BaseException) -> int:
    """Wait before retrying a rate-limited call.

    Honours a `retry-after` header or a "retry in N s" hint in the error
    message, never less than one second; defaults to two seconds.
    """
    seconds: float | None = None

    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        try:
            value = headers.get("retry-after")
        except (AttributeError, TypeError):
            value = None
        if value is not None:
            try:
                seconds = float(value)
            except (TypeError, ValueError):
                seconds = None

    if seconds is None:
        match = _RETRY_HINT_RE.search(str(error))
        if match:
            seconds = float(match.group(1))

    if seconds is None:
        return DEFAULT_RATE_LIMIT_DELAY_MS
    return max(MIN_RATE_LIMIT_DELAY_MS, int(seconds * 1000))


class RateLimitNotifier:
    """Throttles user-facing rate-limit advisories to one per backend per minute.

    The last-warned timestamp lives in the durable store under
    ``<prefix>.<backend>RateLimitWarned`` so the window survives restarts; an
    in-process copy is used when the store is unavailable.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        prefix: str = "costTracking",
        notify: Callable[[str, str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._notify = notify or self._log_notification
        self._clock = clock
        self._last_warned: dict[str, int] = {}

    @staticmethod
    def _log_notification(backend: str, message: str) -> None:
        logger.warning(f"[{backend}] {message}")

    def key_for(self, backend: str) -> str:
        return f"{self._prefix}.{backend.lower()}RateLimitWarned"

    async def _read_last(self, backend: str) -> int:
        last = self._last_warned.get(backend, 0)
        if self._store is None:
            return last
        try:
            stored = await asyncio.to_thread(self._store.get, self.key_for(backend))
        except LedgerUnavailable as e:
            logger.debug(f"Rate-limit throttle state unavailable: {e}")
            return last
        if isinstance(stored, (int, float)):
            return max(last, int(stored))
        return last

    async def maybe_notify(self, backend: str, message: str, *, label: str | None = None) -> bool:
        """Deliver `message` unless one was shown for `backend` in the window.

        `backend` is the provider name used for the throttle key; `label` is
        the display name handed to the callback (defaults to `backend`).
        """
        now_ms = int(self._clock() * 1000)
        if now_ms - await self._read_last(backend) < RATE_LIMIT_WARNING_WINDOW_MS:
            return False

        self._last_warned[backend] = now_ms
        if self._store is not None:
            try:
                await asyncio.to_thread(self._store.set, self.key_for(backend), now_ms)
            except LedgerUnavailable as e:
                logger.debug(f"Failed to persist rate-limit throttle state: {e}")
        self._notify(label or backend, message)
        return True


class RetryCoordinator:
    """Runs one logical call as a sequence of attempts.

    Args:
        provider_label: Name used in log lines and raised errors.
        classify: Adapter classifier for SDK exceptions.
        retry_budget: Retries after the first attempt (attempts = budget + 1).
        notifier: Rate-limit advisory throttle.
        sleep: Awaitable sleep; injected by tests.
        backend: Provider name for the notifier's throttle key; defaults to
            the label.
    """

    def __init__(
        self,
        provider_label: str,
        classify: Classifier,
        *,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
        notifier: RateLimitNotifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        backend: str | None = None,
    ) -> None:
        self.provider_label = provider_label
        self.backend = backend or provider_label
        self._classify = classify
        self.retry_budget = retry_budget
        self._notifier = notifier
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return max(1, self.retry_budget + 1)

    def classify(self, error: BaseException) -> Outcome:
        if isinstance(error, Cancelled):
            return Outcome.CANCELLED
        if isinstance(error, RateLimited):
            return Outcome.RATE_LIMITED
        if isinstance(error, ParseError):
            return Outcome.TRANSIENT
        if isinstance(error, _FATAL_ERRORS):
            return Outcome.FATAL
        return self._classify(error)

    async def run(
        self,
        attempt: Callable[[int], Awaitable[T]],
        cancellation: CancellationToken,
    ) -> T:
        """Call `attempt(n)` until it succeeds, fails fatally, or the budget is spent."""
        label = self.provider_label
        max_attempts = self.max_attempts
        state = CallState.PENDING

        def move(new: CallState, n: int) -> None:
            nonlocal state
            logger.debug(f"[{label}] {state.value} -> {new.value} (attempt {n}/{max_attempts})")
            state = new

        async def back_off(seconds: float, n: int) -> None:
            try:
                await cancellation.guard(self._sleep(seconds), provider=label)
            except Cancelled:
                move(CallState.CANCELLED, n)
                raise

        for n in range(1, max_attempts + 1):
            if cancellation.is_cancelled:
                logger.info(f"[{label}] Cancelled before attempt {n} ({state.value})")
                move(CallState.CANCELLED, n)
                raise Cancelled(provider=label)

            move(CallState.ATTEMPTING, n)
            try:
                result = await cancellation.guard(attempt(n), provider=label)
            except Exception as e:
                error = e
                outcome = (
                    Outcome.CANCELLED if cancellation.is_cancelled else self.classify(e)
                )
            else:
                move(CallState.SUCCESS, n)
                if n > 1:
                    logger.info(f"[{label}] Succeeded on attempt {n}/{max_attempts}")
                return result

            if outcome == Outcome.CANCELLED:
                move(CallState.CANCELLED, n)
                if isinstance(error, Cancelled):
                    raise error
                raise Cancelled(provider=label) from error

            if outcome == Outcome.FATAL:
                move(CallState.FATAL, n)
                raise wrap_error(error, label)

            if outcome == Outcome.RATE_LIMITED:
                move(CallState.RATE_LIMITED, n)
                if n == max_attempts:
                    move(CallState.FATAL, n)
                    raise RetriesExhausted(
                        f"Rate limited after {max_attempts} attempts: {error}",
                        provider=label,
                        last_error=error,
                    ) from error
                wait = retry_delay_ms(error) / 1000
                logger.warning(
                    f"[{label}] Rate limited (attempt {n}/{max_attempts}). "
                    f"Retrying in {wait:.1f}s"
                )
                if self._notifier is not None:
                    await self._notifier.maybe_notify(
                        self.backend,
                        f"Rate limit reached. Waiting {wait:.0f}s before retrying.",
                        label=label,
                    )
                await back_off(wait, n)
                continue

            # Transient
            if n == max_attempts:
                move(CallState.FATAL, n)
                if isinstance(error, ParseError):
                    raise error
                raise RetriesExhausted(
                    f"Failed after {max_attempts} attempts: {type(error).__name__}: {error}",
                    provider=label,
                    last_error=error,
                ) from error
            if isinstance(error, ParseError):
                logger.warning(
                    f"[{label}] Unparseable response (attempt {n}/{max_attempts}): {error}. "
                    f"Retrying"
                )
                continue
            wait = (2 ** (n - 1)) + random.random()
            logger.warning(
                f"[{label}] Transient error (attempt {n}/{max_attempts}): "
                f"{type(error).__name__}: {error}. Retrying in {wait:.1f}s"
            )
            await back_off(wait, n)

        raise ProviderError(f"No attempts made ({state.value})", provider=label)
