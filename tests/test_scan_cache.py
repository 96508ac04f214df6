from skillgraph.core.cache import ScanCache, scan_cache_key
from skillgraph.core.models import ScanCacheEntry


def _entry(token: str) -> ScanCacheEntry:
    return ScanCacheEntry(manifest_signals=(token,), scan_text=token)


def test_key_includes_revision_marker() -> None:
    assert scan_cache_key("alice", "dash", "main", "2026-01-01T00:00:00Z") == (
        "alice/dash:main:2026-01-01T00:00:00Z"
    )
    assert scan_cache_key("", "dash", None, None) == "unknown/dash:main:"
    assert scan_cache_key("alice", "dash", "main", "a") != scan_cache_key("alice", "dash", "main", "b")


def test_get_put_and_miss() -> None:
    cache = ScanCache(capacity=4)
    cache.put("k1", _entry("react"))
    assert cache.get("k1") == _entry("react")
    assert cache.get("missing") is None
    assert "k1" in cache
    assert len(cache) == 1


def test_evicts_oldest_inserted_entry() -> None:
    cache = ScanCache(capacity=2)
    cache.put("a", _entry("a"))
    cache.put("b", _entry("b"))
    cache.get("a")
    cache.put("c", _entry("c"))

    assert "a" not in cache
    assert "b" in cache
    assert "c" in cache
    assert len(cache) == 2


def test_existing_and_empty_keys_are_ignored() -> None:
    cache = ScanCache(capacity=2)
    cache.put("a", _entry("first"))
    cache.put("a", _entry("second"))
    cache.put("", _entry("blank"))

    assert cache.get("a") == _entry("first")
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0
