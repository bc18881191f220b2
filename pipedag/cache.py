# pipedag/cache.py
"""
Content-addressed artifact cache.

Artifacts are keyed by a hash of the step's semantic inputs:

    key = SHA3-256(provider + operation + model version + seed + canonical inputs)

so identical requests reuse earlier results. The cache is bounded: once it
grows past max_size the oldest 20% of entries are evicted.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .context import Artifact

logger = logging.getLogger(__name__)

EVICT_FRACTION = 0.2


def canonicalize(data: Any) -> Any:
    """
    Recursively normalise data for hashing.

    Mapping keys are sorted (as strings), tuples become lists, and anything
    JSON cannot represent is replaced by its repr.
    """
    if isinstance(data, dict):
        return {str(k): canonicalize(data[k]) for k in sorted(data, key=str)}
    if isinstance(data, (list, tuple)):
        return [canonicalize(v) for v in data]
    if data is None or isinstance(data, (str, int, float, bool)):
        return data
    return repr(data)


def stable_hash(data: Any, algorithm: str = "sha3_256") -> str:
    """
    Create stable hash from arbitrary data.

    Args:
        data: Data to hash (canonicalized, then JSON serialized)
        algorithm: Hash algorithm (default: sha3_256)

    Returns:
        Full hex digest
    """
    json_str = json.dumps(canonicalize(data), sort_keys=True, separators=(",", ":"))
    hasher = hashlib.new(algorithm)
    hasher.update(json_str.encode())
    return hasher.hexdigest()


def compute_cache_key(
    provider: str,
    operation: str,
    inputs: Dict[str, Any],
    model_version: Optional[str] = None,
    seed: Any = None,
) -> str:
    """Cache key for one provider invocation."""
    content = {
        "provider": provider,
        "operation": operation,
        "model_version": model_version,
        "seed": "default" if seed is None else seed,
        "inputs": inputs,
    }
    return stable_hash(content)


@dataclass
class CacheEntry:
    """A cached artifact."""
    key: str
    artifact: Artifact
    created_at: float
    provider: str = ""

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "step_id": self.artifact.step_id,
            "provider": self.provider,
            "created_at": self.created_at,
        }


@dataclass
class CacheStats:
    """Statistics about cache usage."""
    total_entries: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    hit_rate: float = 0.0

    def record_hit(self):
        self.hits += 1
        self._update_rate()

    def record_miss(self):
        self.misses += 1
        self._update_rate()

    def _update_rate(self):
        total = self.hits + self.misses
        self.hit_rate = self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict:
        return {
            "total_entries": self.total_entries,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hit_rate,
        }


class ArtifactCache:
    """
    Bounded in-memory artifact store.

    A single instance may be shared by several executors; it is only ever
    touched from the event loop thread.
    """

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.time):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self.stats = CacheStats()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Artifact]:
        """
        Get a cached artifact.

        Returns the artifact if cached, None otherwise.
        """
        entry = self._entries.get(key)
        if entry is None:
            self.stats.record_miss()
            return None

        self.stats.record_hit()
        logger.debug(f"Cache hit: {key[:16]}")
        return entry.artifact

    def put(self, key: str, artifact: Artifact, provider: str = "") -> int:
        """
        Store an artifact.

        Returns:
            Number of entries evicted to make room
        """
        # Re-inserting moves the entry to the young end
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            key=key,
            artifact=artifact,
            created_at=self._clock(),
            provider=provider,
        )
        evicted = self._evict_if_needed()
        self.stats.total_entries = len(self._entries)
        logger.debug(f"Cached: {key[:16]} ({artifact.step_id})")
        return evicted

    def has(self, key: str) -> bool:
        """Check if a key is cached (without affecting stats)."""
        return key in self._entries

    def remove(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self.stats.total_entries = len(self._entries)
        return True

    def clear(self):
        """Clear all cached entries."""
        self._entries.clear()
        self.stats = CacheStats()

    def get_stats(self) -> CacheStats:
        return self.stats

    def list_entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Get cache entry metadata (without affecting stats)."""
        return self._entries.get(key)

    def _evict_if_needed(self) -> int:
        if len(self._entries) <= self.max_size:
            return 0

        # Shrink to 80% of capacity, oldest first
        target = max(1, int(self.max_size * (1 - EVICT_FRACTION)))
        by_age = sorted(self._entries.values(), key=lambda e: e.created_at)
        to_remove = by_age[:len(self._entries) - target]
        for entry in to_remove:
            del self._entries[entry.key]

        self.stats.evictions += len(to_remove)
        logger.info(f"Cache evicted {len(to_remove)} entries ({len(self._entries)} remain)")
        return len(to_remove)

    def prune(self, max_age_seconds: float) -> int:
        """
        Remove entries older than max_age_seconds.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        for key, entry in list(self._entries.items()):
            if now - entry.created_at > max_age_seconds:
                del self._entries[key]
                removed += 1
        self.stats.total_entries = len(self._entries)
        return removed
