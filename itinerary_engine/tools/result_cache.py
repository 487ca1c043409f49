"""In-process TTL cache with single-flight get-or-compute."""
from __future__ import annotations

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from itinerary_engine.logging_setup import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
CacheKey = Tuple[str, str, str]


def content_hash(value: Any) -> str:
    """Stable sha256 over canonical JSON (sorted keys, compact separators)."""
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def cache_key(trip_id: str, places: Any, settings: Any) -> CacheKey:
    return (trip_id, content_hash(places), content_hash(settings))


class _ComputationAbandoned(Exception):
    """The caller computing a key was cancelled before it finished."""


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


class ResultCache(Generic[T]):
    """Disposable result store: losing it costs speed, never correctness.

    Concurrent callers asking for the same key share one in-flight
    computation. Failed computations are not stored.
    """

    def __init__(self, ttl_seconds: float = 1800.0, *, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, _Entry[T]] = {}
        self._inflight: Dict[CacheKey, "asyncio.Future[T]"] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    def _fresh(self, key: CacheKey) -> Optional[_Entry[T]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _purge_expired(self) -> int:
        now = self._clock()
        stale = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in stale:
            del self._entries[key]
        return len(stale)

    async def get(self, key: CacheKey) -> Optional[T]:
        async with self._lock:
            entry = self._fresh(key)
            return entry.value if entry else None

    async def get_or_compute(self, key: CacheKey, factory: Callable[[], Awaitable[T]]) -> Tuple[T, bool]:
        """Return ``(value, was_cached)``, computing at most once per key at a time.

        If the caller computing a key is cancelled (for example by its own
        request timeout), callers waiting on that key retry and one of them
        takes over the computation.
        """
        while True:
            async with self._lock:
                purged = self._purge_expired()
                if purged:
                    logger.debug("Dropped %d expired cache entries", purged)
                entry = self._entries.get(key)
                if entry is not None:
                    self.hits += 1
                    return entry.value, True
                pending = self._inflight.get(key)
                if pending is None:
                    self.misses += 1
                    pending = asyncio.get_running_loop().create_future()
                    self._inflight[key] = pending
                    owner = True
                else:
                    self.hits += 1
                    owner = False

            if owner:
                break
            try:
                return await asyncio.shield(pending), True
            except _ComputationAbandoned:
                logger.debug("In-flight computation for trip %s was cancelled; retrying", key[0])

        try:
            value = await factory()
        except BaseException as exc:
            async with self._lock:
                self._inflight.pop(key, None)
            if not pending.done():
                if isinstance(exc, asyncio.CancelledError):
                    pending.set_exception(_ComputationAbandoned())
                else:
                    pending.set_exception(exc)
                # mark retrieved; waiters re-raise it on their own
                pending.exception()
            raise

        async with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)
            self._inflight.pop(key, None)
        if not pending.done():
            pending.set_result(value)
        logger.debug("Cached result for trip %s (ttl %.0fs)", key[0], self.ttl_seconds)
        return value, False

    async def invalidate(self, key: CacheKey) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def invalidate_trip(self, trip_id: str) -> int:
        async with self._lock:
            stale = [key for key in self._entries if key[0] == trip_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
