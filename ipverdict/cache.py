"""Verdict cache contract and the default in-process implementation."""
from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from .signals import VerdictResult


def cache_key(ip: str) -> str:
    return f"verdict:{ip}"


class CacheStore(Protocol):
    """Key-value store with per-entry TTL.

    Implementations may raise on failure; callers treat any error as a miss.
    """

    async def get(self, key: str) -> Optional[VerdictResult]:
        ...

    async def set(self, key: str, value: VerdictResult, ttl_seconds: int) -> None:
        ...


class MemoryCache:
    """TTL dictionary. Concurrent writers for one key simply overwrite each other."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, max_entries: int = 10_000) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._entries: Dict[str, Tuple[float, dict]] = {}

    async def get(self, key: str) -> Optional[VerdictResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return VerdictResult.from_dict(payload)

    async def set(self, key: str, value: VerdictResult, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        if len(self._entries) >= self._max_entries and key not in self._entries:
            self._evict()
        self._entries[key] = (self._clock() + ttl_seconds, value.as_dict())

    def _evict(self) -> None:
        now = self._clock()
        for key in [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        while len(self._entries) >= self._max_entries:
            oldest = min(self._entries, key=lambda item: self._entries[item][0])
            del self._entries[oldest]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["CacheStore", "MemoryCache", "cache_key"]
