from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float

    def is_live(self, now: float) -> bool:
        return self.expires_at > now


class SingleFlightCache(Generic[K, V]):
    """
    TTL cache that runs at most one fetch per key at a time.

    Expired entries are not evicted; they are skipped on lookup and replaced by the next
    successful fetch. Failed fetches are never stored.
    """

    def __init__(self, *, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[K, CacheEntry[V]] = {}
        self._inflight: Dict[K, asyncio.Task[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_inflight(self, key: K) -> bool:
        return key in self._inflight

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get(self, key: K, fetch: Callable[[K], Awaitable[V]]) -> V:
        # No await between the lookups and the registration below.
        entry = self._entries.get(key)
        if entry is not None and entry.is_live(self._clock()):
            logger.debug("Cache hit. key=%s", key)
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            logger.debug("Cache miss, starting fetch. key=%s", key)
            task = asyncio.ensure_future(self._fetch_and_store(key, fetch))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task
        else:
            logger.debug("Joining in-flight fetch. key=%s", key)

        # A cancelled waiter must not cancel the fetch other callers are sharing.
        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: K, fetch: Callable[[K], Awaitable[V]]) -> V:
        try:
            value = await fetch(key)
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self._ttl_seconds)
            return value
        finally:
            self._inflight.pop(key, None)


def _retrieve_exception(task: asyncio.Task) -> None:
    # Marks the exception as retrieved when every waiter was cancelled before it settled.
    if not task.cancelled():
        task.exception()
