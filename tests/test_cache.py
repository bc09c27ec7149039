# tests/test_cache.py

from __future__ import annotations

from questa_app.cache import NullCache, TTLCache, ensure_cache


class Tick:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


def test_entries_expire_after_ttl() -> None:
    tick = Tick()
    cache = TTLCache(ttl_seconds=30, clock=tick)
    cache.set("tasks", [1, 2])
    tick.t = 29.9
    assert cache.get("tasks") == [1, 2]
    tick.t = 30.0
    assert cache.get("tasks") is None
    assert "tasks" not in cache
    assert len(cache) == 0


def test_get_or_load_calls_loader_once_until_expiry() -> None:
    tick = Tick()
    cache = TTLCache(ttl_seconds=10, clock=tick)
    calls: list[int] = []

    def load() -> int:
        calls.append(1)
        return len(calls)

    assert cache.get_or_load("k", load) == 1
    assert cache.get_or_load("k", load) == 1
    assert cache.get_or_load("k", load, force=True) == 2
    tick.t = 11
    assert cache.get_or_load("k", load) == 3


def test_invalidate_and_prefix() -> None:
    cache = TTLCache()
    cache.set("notifications:u1", [])
    cache.set("notifications:u2", [])
    cache.set("tasks", [])
    cache.invalidate("tasks")
    assert "tasks" not in cache
    cache.invalidate_prefix("notifications:")
    assert len(cache) == 0
    cache.invalidate("missing")  # no error


def test_null_cache_never_stores() -> None:
    cache = ensure_cache(None)
    assert isinstance(cache, NullCache)
    cache.set("a", 1)
    assert cache.get("a", "default") == "default"
    calls: list[int] = []
    cache.get_or_load("a", lambda: calls.append(1))
    cache.get_or_load("a", lambda: calls.append(1))
    assert len(calls) == 2


def test_ensure_cache_keeps_injected_instance() -> None:
    mine = TTLCache(ttl_seconds=5)
    assert ensure_cache(mine) is mine
