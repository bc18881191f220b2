# tests/test_cache.py
"""Tests for the content-addressed artifact cache."""

import itertools
import math

import pytest

from pipedag.cache import ArtifactCache, CacheStats, canonicalize, compute_cache_key, stable_hash
from pipedag.context import Artifact


@pytest.fixture
def clock():
    """Strictly increasing fake clock."""
    counter = itertools.count(1)
    return lambda: float(next(counter))


@pytest.fixture
def cache(clock):
    """Create cache instance."""
    return ArtifactCache(max_size=10, clock=clock)


def artifact(step_id, value=None):
    return Artifact(id=step_id, step_id=step_id, value=value if value is not None else {"step": step_id})


class TestCacheKey:
    """Test cache key computation."""

    def test_key_order_independent(self):
        """Test reordering mapping keys at any depth keeps the key."""
        a = compute_cache_key("imageGen.flux", "generate",
                              {"prompt": "cat", "size": {"w": 512, "h": 512}, "tags": ["a", "b"]})
        b = compute_cache_key("imageGen.flux", "generate",
                              {"tags": ["a", "b"], "size": {"h": 512, "w": 512}, "prompt": "cat"})
        assert a == b

    def test_key_sensitive_to_values(self):
        """Test any input value change changes the key."""
        base = {"prompt": "cat", "size": {"w": 512}, "tags": ["a", "b"]}
        key = compute_cache_key("imageGen.flux", "generate", base)

        assert compute_cache_key("imageGen.flux", "generate", dict(base, prompt="dog")) != key
        assert compute_cache_key("imageGen.flux", "generate", dict(base, size={"w": 513})) != key
        assert compute_cache_key("imageGen.flux", "generate", dict(base, tags=["b", "a"])) != key

    def test_key_covers_provider_operation_model_seed(self):
        """Test provider, operation, model version and seed are part of the key."""
        inputs = {"prompt": "cat"}
        key = compute_cache_key("imageGen.flux", "generate", inputs)

        assert compute_cache_key("imageGen.sdxl", "generate", inputs) != key
        assert compute_cache_key("imageGen.flux", "edit", inputs) != key
        assert compute_cache_key("imageGen.flux", "generate", inputs, model_version="2") != key
        assert compute_cache_key("imageGen.flux", "generate", inputs, seed=7) != key

    def test_missing_seed_is_default(self):
        """Test no seed hashes like the literal "default"."""
        inputs = {"prompt": "cat"}
        assert compute_cache_key("p.x", "op", inputs) == compute_cache_key("p.x", "op", inputs, seed="default")

    def test_stable_hash(self):
        """Test sha3-256 hex digests."""
        digest = stable_hash({"b": 1, "a": [1, 2]})
        assert len(digest) == 64
        assert digest == stable_hash({"a": [1, 2], "b": 1})

    def test_canonicalize(self):
        """Test canonical form sorts keys and normalises tuples."""
        assert canonicalize({"b": (1, 2), "a": {"d": 1, "c": 2}}) == {"a": {"c": 2, "d": 1}, "b": [1, 2]}
        assert list(canonicalize({"b": 1, "a": 2})) == ["a", "b"]


class TestArtifactCache:
    """Test ArtifactCache class."""

    def test_put_and_get(self, cache):
        """Test putting and getting from cache."""
        cache.put("abc123", artifact("A"), provider="data.echo")

        assert cache.has("abc123")
        assert cache.get("abc123").step_id == "A"
        assert cache.get_entry("abc123").provider == "data.echo"
        assert len(cache) == 1

    def test_cache_miss(self, cache):
        """Test cache miss returns None."""
        assert cache.get("nonexistent") is None

    def test_cache_stats_hit_miss(self, cache):
        """Test cache hit/miss stats."""
        cache.put("abc123", artifact("A"))

        cache.get("nonexistent")
        cache.get("abc123")
        cache.get("abc123")

        stats = cache.get_stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.total_entries == 1

    def test_has_does_not_touch_stats(self, cache):
        """Test has() is not a lookup."""
        cache.has("abc123")
        assert cache.get_stats().misses == 0

    def test_remove(self, cache):
        """Test removing entries."""
        cache.put("abc123", artifact("A"))

        assert cache.remove("abc123") is True
        assert cache.remove("abc123") is False
        assert not cache.has("abc123")

    def test_clear(self, cache):
        """Test clearing cache."""
        cache.put("a", artifact("A"))
        cache.put("b", artifact("B"))
        cache.get("a")

        cache.clear()

        assert len(cache) == 0
        assert cache.get_stats().to_dict() == CacheStats().to_dict()

    def test_invalid_size(self):
        """Test capacity must be positive."""
        with pytest.raises(ValueError):
            ArtifactCache(max_size=0)


class TestEviction:
    """Test bounded capacity."""

    @pytest.mark.parametrize("capacity", [1, 3, 5, 10])
    def test_overflow_shrinks_to_eighty_percent(self, clock, capacity):
        """Test overflow leaves at most ceil(0.8 * capacity) entries, newest kept."""
        cache = ArtifactCache(max_size=capacity, clock=clock)
        for i in range(capacity + 1):
            cache.put(f"key-{i}", artifact(f"step-{i}"))

        assert len(cache) <= math.ceil(0.8 * capacity)
        assert cache.has(f"key-{capacity}")

    def test_oldest_evicted_first(self, cache):
        """Test eviction removes the oldest entries."""
        for i in range(11):
            cache.put(f"key-{i}", artifact(f"step-{i}"))

        keys = [e.key for e in cache.list_entries()]
        assert keys == [f"key-{i}" for i in range(3, 11)]
        assert cache.get_stats().evictions == 3

    def test_put_reports_evictions(self, cache):
        """Test put returns how many entries were evicted."""
        results = [cache.put(f"key-{i}", artifact(f"step-{i}")) for i in range(11)]
        assert results[:10] == [0] * 10
        assert results[10] == 3

    def test_reinsert_refreshes_age(self, cache):
        """Test re-putting a key makes it the newest entry."""
        for i in range(10):
            cache.put(f"key-{i}", artifact(f"step-{i}"))
        cache.put("key-0", artifact("step-0"))
        cache.put("key-10", artifact("step-10"))

        assert cache.has("key-0")
        assert not cache.has("key-1")

    def test_prune(self, clock):
        """Test removing entries older than a maximum age."""
        now = {"t": 0.0}
        cache = ArtifactCache(max_size=10, clock=lambda: now["t"])
        cache.put("old", artifact("A"))
        now["t"] = 100.0
        cache.put("new", artifact("B"))

        assert cache.prune(max_age_seconds=50) == 1
        assert not cache.has("old")
        assert cache.has("new")
