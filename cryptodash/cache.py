"""
In-process TTL cache for provider responses.

Entries expire lazily: a lookup past the TTL deletes the entry and reports a
miss. Nothing sweeps the store in the background; the key space is bounded
by the distinct endpoint + parameter combinations a provider is asked for.
"""
from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize(v) for v in value]
        # order of list parameters carries no meaning for the upstream queries
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    return value


def make_cache_key(method: str, **params: Any) -> str:
    """Deterministic key from a method name and its (normalized) parameters.

    ``None`` parameters are dropped so ``f(limit=5)`` and ``f(limit=5, kind=None)``
    share an entry.
    """
    kept = {k: _normalize(v) for k, v in params.items() if v is not None}
    if not kept:
        return method
    return f"{method}:{json.dumps(kept, sort_keys=True, separators=(',', ':'), default=str)}"


class TTLCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "expired": 0}

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if not entry.is_valid(now):
                del self._data[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._data[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=float(ttl))
            self._stats["sets"] += 1

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._data),
                "keys": list(self._data.keys()),
                "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
            }


__all__ = ["CacheEntry", "TTLCache", "make_cache_key"]
