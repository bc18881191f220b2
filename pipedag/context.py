# pipedag/context.py
"""
Per-run execution state.

An ExecutionContext is created by each execute_plan call and is owned
exclusively by that run. Artifacts are written once per step per run.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .draft import DraftOptions


class ArtifactType(Enum):
    ASSET = "asset"
    DATA = "data"
    INTERMEDIATE = "intermediate"


def infer_artifact_type(value: Any) -> ArtifactType:
    """Media-like results ({src, type, ...}) are assets, everything else data."""
    if isinstance(value, dict) and value.get("src") and value.get("type"):
        return ArtifactType.ASSET
    return ArtifactType.DATA


@dataclass
class Artifact:
    """
    The result of one step's execution.

    Attributes:
        id: Artifact id (equal to the producing step id)
        step_id: Producing step
        type: asset, data or intermediate
        value: Whatever the provider operation returned
        metadata: provider_used, timestamp, cache_hit, cost, model_used...
        created_at: Creation time (seconds since epoch)
    """
    id: str
    step_id: str
    value: Any
    type: ArtifactType = ArtifactType.DATA
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    def copy_for(self, step_id: str, **metadata: Any) -> "Artifact":
        """Copy this artifact under another step id (used for cache hits)."""
        meta = dict(self.metadata)
        meta.update(metadata)
        return Artifact(
            id=step_id,
            step_id=step_id,
            value=self.value,
            type=self.type,
            metadata=meta,
            created_at=time.time(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "step_id": self.step_id,
            "type": self.type.value,
            "value": self.value,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass
class ExecutionError:
    """A per-step runtime failure, as reported in results."""
    step_id: str
    message: str
    timestamp: float = field(default_factory=time.time)
    retryable: bool = False
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "message": self.message,
            "timestamp": self.timestamp,
            "retryable": self.retryable,
            "retry_count": self.retry_count,
        }


@dataclass
class ExecutionProgress:
    """Live progress of a run."""
    total_steps: int
    completed_steps: int = 0
    current_step_id: Optional[str] = None
    errors: List[ExecutionError] = field(default_factory=list)

    @property
    def fraction(self) -> float:
        return self.completed_steps / self.total_steps if self.total_steps else 1.0


@dataclass
class ExecutionContext:
    """State of a single run: artifacts, variables and progress."""
    plan_id: str
    progress: ExecutionProgress
    artifacts: Dict[str, Artifact] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    draft_options: Optional[DraftOptions] = None
    current_step: Optional[str] = None
    cancelled: bool = False
    start_time: float = field(default_factory=time.time)
    cache_hits: int = 0
    provider_usage: Dict[str, int] = field(default_factory=dict)

    def add_artifact(self, artifact: Artifact) -> None:
        if artifact.step_id in self.artifacts:
            raise ValueError(f"Artifact for step {artifact.step_id} already written")
        self.artifacts[artifact.step_id] = artifact

    def latest_artifact(self) -> Optional[Artifact]:
        """Most recently created artifact; later insertion wins ties."""
        latest = None
        for artifact in self.artifacts.values():
            if latest is None or artifact.created_at >= latest.created_at:
                latest = artifact
        return latest
