"""
TTL cache with in-flight deduplication (single-flight).

At most one computation runs per key: concurrent callers for the same key
await the same task and receive the same value or the same exception.
Successful values are stored for ``ttl`` seconds; failures are never stored,
so a retry re-attempts the computation. Callers on disjoint keys never wait
on each other.

Designed for a single asyncio event loop; all bookkeeping happens between
awaits, so no lock is needed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable, Union

from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ENTRIES = 10_000

Ttl = Union[float, Callable[[Any], float]]
"""Seconds, or a function of the computed value returning seconds."""


@dataclass(frozen=True)
class CacheTtls:
    """TTL seconds per result family. Pending transactions get a short TTL since they may be superseded."""

    confirmed_tx_sec: float = 3600.0
    pending_tx_sec: float = 15.0
    reputation_sec: float = 300.0
    trace_sec: float = 120.0

    def for_status(self, pending: bool) -> float:
        return self.pending_tx_sec if pending else self.confirmed_tx_sec


@dataclass
class CacheStats:
    hits: int = 0
    joins: int = 0
    misses: int = 0
    failures: int = 0
    evictions: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "joins": self.joins,
            "misses": self.misses,
            "failures": self.failures,
            "evictions": self.evictions,
        }


@dataclass
class _Entry:
    value: Any
    expires_at: float


class _Flight:
    """One in-flight computation; identity marks whether it is still attached to its key."""

    __slots__ = ("task",)

    def __init__(self) -> None:
        self.task: asyncio.Task | None = None


class SingleFlightCache:
    """
    get_or_compute(key, ttl, compute_fn) with at most one concurrent computation per key.

    invalidate(key) drops the stored value and detaches any in-flight
    computation: its awaiters still get the result, but it is not stored.
    """

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[Hashable, _Entry] = {}
        self._inflight: dict[Hashable, _Flight] = {}
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: Hashable) -> Any | None:
        """Return the stored, unexpired value for key without computing; None if absent."""
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.value

    def is_inflight(self, key: Hashable) -> bool:
        return key in self._inflight

    def invalidate(self, key: Hashable) -> bool:
        """Remove key's stored value and detach its in-flight computation. Returns True if anything was dropped."""
        dropped = self._entries.pop(key, None) is not None
        if self._inflight.pop(key, None) is not None:
            dropped = True
        return dropped

    def invalidate_prefix(self, prefix: tuple) -> int:
        """Invalidate every tuple key starting with ``prefix``; returns count dropped."""
        n = len(prefix)
        keys = [
            k for k in list(self._entries) + list(self._inflight)
            if isinstance(k, tuple) and k[:n] == prefix
        ]
        return sum(1 for k in set(keys) if self.invalidate(k))

    async def get_or_compute(
        self,
        key: Hashable,
        ttl: Ttl,
        compute_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        value, _ = await self.get_or_compute_with_status(key, ttl, compute_fn)
        return value

    async def get_or_compute_with_status(
        self,
        key: Hashable,
        ttl: Ttl,
        compute_fn: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, bool]:
        """
        Return (value, cached). cached is True when this caller did not trigger a
        fresh computation: a stored hit, or a join onto an in-flight computation.
        """
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None:
            if entry.expires_at > now:
                self.stats.hits += 1
                return entry.value, True
            del self._entries[key]

        flight = self._inflight.get(key)
        if flight is not None and flight.task is not None:
            self.stats.joins += 1
            return await asyncio.shield(flight.task), True

        self.stats.misses += 1
        flight = _Flight()
        self._inflight[key] = flight
        flight.task = asyncio.ensure_future(self._run(key, ttl, compute_fn, flight))
        flight.task.add_done_callback(_consume_exception)
        return await asyncio.shield(flight.task), False

    async def _run(
        self,
        key: Hashable,
        ttl: Ttl,
        compute_fn: Callable[[], Awaitable[Any]],
        flight: _Flight,
    ) -> Any:
        try:
            value = await compute_fn()
        except BaseException as e:
            if self._inflight.get(key) is flight:
                del self._inflight[key]
            self.stats.failures += 1
            logger.debug("cache_compute_failed", key=str(key), error=str(e))
            raise
        if self._inflight.get(key) is flight:
            del self._inflight[key]
            seconds = ttl(value) if callable(ttl) else ttl
            if seconds > 0:
                self._store(key, value, seconds)
        return value

    def _store(self, key: Hashable, value: Any, ttl: float) -> None:
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self._max_entries:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in expired:
                del self._entries[k]
            self.stats.evictions += len(expired)
            while len(self._entries) >= self._max_entries:
                # dicts keep insertion order; first key is the oldest write
                del self._entries[next(iter(self._entries))]
                self.stats.evictions += 1
        self._entries[key] = _Entry(value=value, expires_at=now + ttl)


def _consume_exception(task: asyncio.Task) -> None:
    """Mark a failed computation's exception as retrieved when every awaiter has gone away."""
    if not task.cancelled():
        task.exception()
