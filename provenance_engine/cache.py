"""
Snapshot Cache - Time-boxed, single-flight cache of derived snapshots.

Features:
- TTL expiry checked lazily on read
- At most one in-flight computation per key; concurrent readers share it
- invalidate() detaches the in-flight computation so the next read starts
  a fresh one; the detached result goes only to its own callers
- Writes are ordered by computation start: a write never replaces a value
  produced by a strictly newer computation
- Size bound enforced on write (expired entries first, then oldest)
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry:
    """Cached snapshot. Internal to SnapshotCache."""
    value: Any
    produced_at: float
    ttl: float
    sequence: int
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.produced_at >= self.ttl

    def age_seconds(self, now: float) -> float:
        return now - self.produced_at


class SnapshotCache:
    """
    Process-local snapshot cache keyed by string.

    Usage:
        cache = SnapshotCache(default_ttl=300)
        history = await cache.get_or_compute("history:7", lambda: build(7))
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock

        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, tuple[int, asyncio.Task]] = {}
        # key -> first sequence allowed to write after the last invalidation
        self._invalidated: dict[str, int] = {}
        self._sequence = itertools.count(1)

        self._hits = 0
        self._misses = 0
        self._computations = 0
        self._coalesced = 0
        self._rejected_writes = 0
        self._evictions = 0

    # ─────────────────────────────────────────────────────────────
    # Basic operations
    # ─────────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or None on miss/expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            logger.debug(f"[cache] Expired {key}")
            return None

        entry.hits += 1
        self._hits += 1
        return entry.value

    def put(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        sequence: Optional[int] = None,
    ) -> bool:
        """
        Store ``value`` under ``key``.

        Returns:
            False if a strictly newer computation already wrote this key,
            or the write comes from a computation detached by invalidate()
        """
        if sequence is None:
            sequence = next(self._sequence)
        elif sequence < self._invalidated.get(key, 0):
            self._rejected_writes += 1
            logger.debug(f"[cache] Ignoring detached write for {key}")
            return False

        now = self._clock()
        existing = self._entries.get(key)
        if existing is not None and existing.sequence > sequence and not existing.is_expired(now):
            self._rejected_writes += 1
            logger.debug(f"[cache] Ignoring superseded write for {key}")
            return False

        self._entries[key] = CacheEntry(
            value=value,
            produced_at=now,
            ttl=self._default_ttl if ttl is None else ttl,
            sequence=sequence,
        )

        if len(self._entries) > self._max_entries:
            self._enforce_size()
        return True

    def invalidate(self, key: str) -> bool:
        """
        Drop ``key`` and detach its in-flight computation.

        A detached computation still runs to completion and returns its
        result to the callers already waiting on it, but never writes it.
        """
        removed = self._entries.pop(key, None) is not None
        detached = self._inflight.pop(key, None) is not None
        if detached:
            self._invalidated[key] = next(self._sequence)
        if removed or detached:
            logger.debug(f"[cache] Invalidated {key}")
        return removed or detached

    def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate every key starting with ``prefix``. Returns the count."""
        keys = {k for k in self._entries if k.startswith(prefix)}
        keys.update(k for k in self._inflight if k.startswith(prefix))
        for key in keys:
            self.invalidate(key)
        return len(keys)

    def clear(self) -> None:
        """Clear all cache entries."""
        self._entries.clear()
        for key in self._inflight:
            self._invalidated[key] = next(self._sequence)
        self._inflight.clear()
        logger.info("[cache] Cache cleared")

    # ─────────────────────────────────────────────────────────────
    # Single-flight computation
    # ─────────────────────────────────────────────────────────────

    async def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """
        Return the cached value or compute it once for all concurrent callers.

        The computation runs in its own task, so a caller that stops waiting
        (cancellation) does not abort it for the others.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        inflight = self._inflight.get(key)
        if inflight is not None:
            self._coalesced += 1
            return await asyncio.shield(inflight[1])

        sequence = next(self._sequence)
        task = asyncio.ensure_future(self._compute(key, sequence, factory, ttl))
        task.add_done_callback(_consume_exception)
        self._inflight[key] = (sequence, task)
        self._computations += 1
        return await asyncio.shield(task)

    async def _compute(
        self,
        key: str,
        sequence: int,
        factory: Callable[[], Awaitable[T]],
        ttl: Optional[float],
    ) -> T:
        try:
            value = await factory()
            self.put(key, value, ttl, sequence=sequence)
            return value
        finally:
            current = self._inflight.get(key)
            if current is not None and current[0] == sequence:
                del self._inflight[key]

    # ─────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────

    def purge_expired(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"[cache] Purged {len(expired)} expired entries")
        return len(expired)

    def _enforce_size(self) -> None:
        self.purge_expired()
        overflow = len(self._entries) - self._max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k].produced_at)[:overflow]
        for key in oldest:
            del self._entries[key]
        self._evictions += overflow

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "entries": len(self._entries),
            "in_flight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate_percent": round(hit_rate, 2),
            "computations": self._computations,
            "coalesced": self._coalesced,
            "rejected_writes": self._rejected_writes,
            "evictions": self._evictions,
        }


def _consume_exception(task: asyncio.Task) -> None:
    # Detached computations may fail with nobody awaiting them
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"[cache] Computation failed: {task.exception()}")
