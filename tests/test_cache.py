"""Tests for the TTL + LRU tool result cache."""

from praxis.core.cache import (
    ToolResultCache,
    cache_key,
)
from praxis.core.schema import ToolResult


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_cache_key_ignores_parameter_order() -> None:
    assert cache_key("search", {"q": "x", "limit": 3}) == cache_key("search", {"limit": 3, "q": "x"})
    assert cache_key("search", {"q": "x"}) != cache_key("lookup", {"q": "x"})


def test_hit_is_flagged_and_stored_entry_untouched() -> None:
    cache = ToolResultCache()
    cache.put("echo", {"text": "a"}, ToolResult.ok({"value": 1}))

    hit = cache.get("echo", {"text": "a"})
    assert hit is not None
    assert hit.metadata.cached is True
    hit.data["value"] = 2

    again = cache.get("echo", {"text": "a"})
    assert again is not None
    assert again.data == {"value": 1}


def test_failures_are_never_stored() -> None:
    cache = ToolResultCache()
    cache.put("echo", {}, ToolResult.failure("network", "reset", retriable=True))

    assert cache.get("echo", {}) is None
    assert len(cache) == 0


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = ToolResultCache(ttl_seconds=10, clock=clock)
    cache.put("echo", {}, ToolResult.ok("x"))

    clock.now = 10.0
    assert cache.get("echo", {}) is not None
    clock.now = 10.5
    assert cache.get("echo", {}) is None
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted() -> None:
    cache = ToolResultCache(max_entries=2)
    cache.put("t", {"n": 1}, ToolResult.ok(1))
    cache.put("t", {"n": 2}, ToolResult.ok(2))
    assert cache.get("t", {"n": 1}) is not None  # 1 is now the most recent

    cache.put("t", {"n": 3}, ToolResult.ok(3))

    assert cache.get("t", {"n": 2}) is None
    assert cache.get("t", {"n": 1}) is not None
    assert cache.get("t", {"n": 3}) is not None


def test_clear() -> None:
    cache = ToolResultCache()
    cache.put("t", {}, ToolResult.ok(1))
    cache.clear()
    assert len(cache) == 0
