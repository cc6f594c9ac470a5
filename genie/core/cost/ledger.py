"""Persistent per-repository cost ledger.

Accumulates USD cost per repository (absolute path) in the durable state
store under ``<prefix>.repositoryCost.<urlsafe-base64(path)>``.

Cost tracking is best-effort: a failing store turns every operation into a
logged no-op so it can never abort the LLM call that produced the cost.
"""

import asyncio
import base64
import binascii
import logging
from typing import Callable

from ..errors import LedgerUnavailable
from ...storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "costTracking"
_REPOSITORY_SEGMENT = "repositoryCost"

ChangeListener = Callable[[], None]


def encode_repository_key(repository_id: str) -> str:
    return base64.urlsafe_b64encode(repository_id.encode("utf-8")).decode("ascii")


def decode_repository_key(encoded: str) -> str:
    return base64.urlsafe_b64decode(encoded.encode("ascii")).decode("utf-8")


class CostLedger:
    """Durable accumulator of cost by repository.

    Totals only grow between resets. Every add/reset notifies listeners
    registered with on_change(); listeners get no payload and re-query.
    """

    def __init__(self, store: KeyValueStore, *, prefix: str = DEFAULT_PREFIX) -> None:
        self._store = store
        self._namespace = f"{prefix}.{_REPOSITORY_SEGMENT}."
        self._listeners: list[ChangeListener] = []
        self._locks: dict[str, asyncio.Lock] = {}

    def key_for(self, repository_id: str) -> str:
        return self._namespace + encode_repository_key(repository_id)

    def _lock_for(self, repository_id: str) -> asyncio.Lock:
        lock = self._locks.get(repository_id)
        if lock is None:
            lock = self._locks[repository_id] = asyncio.Lock()
        return lock

    # ── Observers ──

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit_change(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(f"Cost change listener failed: {e}")

    # ── Store access ──

    async def _read_total(self, repository_id: str) -> float:
        value = await asyncio.to_thread(self._store.get, self.key_for(repository_id))
        if isinstance(value, (int, float)) and value > 0:
            return float(value)
        return 0.0

    async def _write_total(self, repository_id: str, total: float) -> None:
        await asyncio.to_thread(self._store.set, self.key_for(repository_id), total)

    # ── Operations ──

    async def add_cost(self, amount: float, repository_id: str) -> float:
        """Add `amount` USD to the repository total and return the new total.

        Returns 0.0 when the store is unavailable.
        """
        if amount < 0:
            raise ValueError(f"Cost amount must be non-negative, got {amount}")

        async with self._lock_for(repository_id):
            try:
                total = await self._read_total(repository_id) + amount
                await self._write_total(repository_id, total)
            except LedgerUnavailable as e:
                logger.warning(f"Failed to record cost for {repository_id}: {e}")
                return 0.0

        logger.debug(f"Repository {repository_id} cost total: ${total:.6f}")
        self._emit_change()
        return total

    async def get_cost(self, repository_id: str) -> float:
        try:
            return await self._read_total(repository_id)
        except LedgerUnavailable as e:
            logger.warning(f"Failed to read cost for {repository_id}: {e}")
            return 0.0

    async def reset_cost(self, repository_id: str) -> None:
        async with self._lock_for(repository_id):
            try:
                await self._write_total(repository_id, 0.0)
            except LedgerUnavailable as e:
                logger.warning(f"Failed to reset cost for {repository_id}: {e}")
                return

        logger.info(f"Reset cost tracking for {repository_id}")
        self._emit_change()

    async def list_all(self) -> dict[str, float]:
        """All tracked repositories and their totals."""
        try:
            keys = await asyncio.to_thread(self._store.keys, self._namespace)
        except LedgerUnavailable as e:
            logger.warning(f"Failed to list repository costs: {e}")
            return {}

        totals: dict[str, float] = {}
        for key in keys:
            encoded = key[len(self._namespace) :]
            try:
                repository_id = decode_repository_key(encoded)
            except (binascii.Error, UnicodeDecodeError, ValueError):
                logger.debug(f"Skipping undecodable ledger key {key!r}")
                continue
            totals[repository_id] = await self.get_cost(repository_id)
        return totals
