# pipedag/logs.py
"""
Structured step logs.

One record per step outcome, kept in a bounded buffer for observability
tooling and mirrored to the standard logging module.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

EVICT_FRACTION = 0.2


@dataclass
class StructuredLog:
    """
    A structured log record.

    Attributes:
        trace: "<plan_id>:<step_id>"
        op: Operation name
        adapter: Provider id
        model_used: Model actually sent to the provider, if any
        duration_ms: Wall time of the step (0 for cache hits)
        status: Step status after the outcome
        artifacts: Artifact ids produced, keyed by step id
        cache_hit: Whether the result came from the cache
        error: Error message for failures
        timestamp: Record creation time (seconds since epoch)
    """
    trace: str
    op: str
    adapter: str
    duration_ms: float
    status: str
    model_used: Optional[str] = None
    artifacts: Optional[Dict[str, str]] = None
    cache_hit: Optional[bool] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "trace": self.trace,
            "op": self.op,
            "adapter": self.adapter,
            "model_used": self.model_used,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "timestamp": self.timestamp,
        }
        for key in ("artifacts", "cache_hit", "error"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class LogBuffer:
    """Bounded buffer of structured records, appended in completion order."""

    def __init__(self, max_entries: int = 1000):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._records: List[StructuredLog] = []

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: StructuredLog) -> None:
        self._records.append(record)
        level = logging.ERROR if record.status == "failed" else logging.INFO
        logger.log(level, "step %s", record.to_dict())

        if len(self._records) > self.max_entries:
            keep = max(1, int(self.max_entries * (1 - EVICT_FRACTION)))
            del self._records[:len(self._records) - keep]

    def records(self, prefix: Optional[str] = None) -> List[StructuredLog]:
        """All records, or those whose trace starts with prefix."""
        if prefix is None:
            return list(self._records)
        return [r for r in self._records if r.trace.startswith(prefix)]

    def clear(self) -> None:
        self._records.clear()
