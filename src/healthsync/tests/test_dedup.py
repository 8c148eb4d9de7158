"""Tests for record dedup keys and the in-memory cache."""

from src.healthsync.dedup import InMemoryDedupCache, key_for, record_key
from src.healthsync.models import DataType
from src.healthsync.tests.fakes import at, hr, steps


def test_key_includes_type_and_id() -> None:
    assert record_key(DataType.HEART_RATE, "abc") == "heart_rate:abc"
    assert key_for(hr("x", at(8))) != key_for(steps("x", at(8)))


def test_cache_marks_and_clears() -> None:
    cache = InMemoryDedupCache()
    assert not cache.is_seen("heart_rate:a")
    cache.mark_seen("heart_rate:a")
    assert cache.is_seen("heart_rate:a")
    cache.clear()
    assert len(cache) == 0


def test_cache_evicts_oldest() -> None:
    cache = InMemoryDedupCache(max_entries=2)
    for key in ("a", "b", "c"):
        cache.mark_seen(key)
    assert not cache.is_seen("a")
    assert cache.is_seen("b") and cache.is_seen("c")
