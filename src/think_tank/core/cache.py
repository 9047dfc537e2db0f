"""Bounded in-process key-value cache with per-entry expiry."""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

DEFAULT_TTL_SECONDS = 15 * 60


@dataclass(slots=True)
class CacheEntry:
    value: Any
    expires_at: float


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    keys: list[str]
    memory_usage: int  # approximate, serialized length of the stored values

    def to_dict(self) -> dict[str, Any]:
        return {"size": self.size, "keys": self.keys, "memoryUsage": self.memory_usage}


class TTLCache:
    """Process-wide cache shared by reference.

    Every public method sweeps expired entries before doing its work, and a
    read of an expired key removes it. Methods never await, so each call is
    atomic with respect to other coroutines on the same loop. When the cache
    is full, the entry written least recently is evicted.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        self._sweep()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        self._sweep()
        entry = self._entries.get(key)
        if entry is None:
            return default
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return default
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> float:
        """Store ``value`` and return the TTL applied, in seconds."""
        self._sweep()
        ttl = ttl if ttl and ttl > 0 else self.default_ttl
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return ttl

    def delete(self, key: str) -> bool:
        self._sweep()
        return self._entries.pop(key, None) is not None

    def delete_matching(self, pattern: str) -> int:
        """Delete keys that start with or contain ``pattern``. A trailing ``*`` is ignored."""
        self._sweep()
        prefix = pattern.rstrip("*")
        doomed = [k for k in self._entries if k.startswith(prefix) or pattern in k]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def delete_prefix(self, prefix: str) -> int:
        self._sweep()
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> int:
        self._sweep()
        size = len(self._entries)
        self._entries.clear()
        return size

    def keys(self) -> list[str]:
        self._sweep()
        return list(self._entries.keys())

    def stats(self, sample: int = 100) -> CacheStats:
        self._sweep()
        memory = sum(len(json.dumps(e.value, default=str)) for e in self._entries.values())
        return CacheStats(size=len(self._entries), keys=list(self._entries)[:sample], memory_usage=memory)

    def _sweep(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
