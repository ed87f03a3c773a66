"""Burst filter for duplicate confirmations.

This only saves work when the same delivery arrives several times in a short
window. It is per-process (memory) or shared (redis) but it is never the
idempotency guarantee: the ledger's compare-and-swap commit is.
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Protocol

import redis

from turnstile.core.config import settings


class DedupCache(Protocol):
    def seen(self, key: str) -> bool: ...

    def mark(self, key: str) -> None: ...


def dedup_key(provider_payment_id: str, order_id: str) -> str:
    return f"{provider_payment_id}-{order_id}"


class MemoryDedupCache:
    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 500,
        max_age_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def seen(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            marked = self._entries.get(key)
            return marked is not None and now - marked < self.ttl_seconds

    def mark(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = now
            self._evict(now)

    def _evict(self, now: float) -> None:
        # oldest first; entries are kept in insertion order
        while self._entries:
            key, marked = next(iter(self._entries.items()))
            if now - marked > self.max_age_seconds or len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            else:
                break


class RedisDedupCache:
    """Shared variant for multi-instance deployments. Keys expire on their own."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 300, prefix: str = "turnstile:confirm:"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def seen(self, key: str) -> bool:
        return bool(self.client.exists(self.prefix + key))

    def mark(self, key: str) -> None:
        self.client.set(self.prefix + key, "1", ex=self.ttl_seconds, nx=True)


def build_dedup_cache() -> DedupCache:
    if settings.DEDUP_BACKEND.lower() == "redis":
        return RedisDedupCache(redis.Redis.from_url(settings.REDIS_URL), ttl_seconds=settings.DEDUP_TTL_SECONDS)
    return MemoryDedupCache(
        ttl_seconds=settings.DEDUP_TTL_SECONDS,
        max_entries=settings.DEDUP_MAX_ENTRIES,
        max_age_seconds=settings.DEDUP_MAX_AGE_SECONDS,
    )
