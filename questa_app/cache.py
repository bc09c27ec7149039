from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

_MISSING = object()


class TTLCache:
    """
    Small time-to-live cache handed to whoever needs one.

    Entries older than ``ttl_seconds`` are treated as misses and dropped.
    Writers are expected to call :meth:`invalidate` / :meth:`invalidate_prefix`
    for the keys they make stale; nothing is invalidated implicitly.
    """

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.RLock()

    def _lookup(self, key: Hashable) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return _MISSING
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._data[key]
                return _MISSING
            return value

    def get(self, key: Hashable, default: Any = None) -> Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._data[key] = (self._clock(), value)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any], force: bool = False) -> Any:
        if not force:
            value = self._lookup(key)
            if value is not _MISSING:
                return value
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._data if isinstance(k, str) and k.startswith(prefix)]:
                del self._data[key]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class NullCache(TTLCache):
    """Cache that never stores anything; used when no cache is injected."""

    def __init__(self) -> None:
        super().__init__(ttl_seconds=0)

    def set(self, key: Hashable, value: Any) -> None:
        return None


def ensure_cache(cache: Optional[TTLCache]) -> TTLCache:
    return cache if cache is not None else NullCache()
