# pipedag/planning/schema.py
"""
Data structures for execution plans.

A Plan holds the executable steps of one recipe run together with a
precomputed batch order: steps in the same batch may run concurrently,
and every step's dependencies lie in a strictly earlier batch.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class StepStatus(Enum):
    """Status of an execution step."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)


@dataclass
class ExecutableStep:
    """
    A single step in the execution plan.

    Attributes:
        id: Step id (unique within the plan)
        provider: Provider id, "<category>.<name>"
        operation: Operation name on the provider
        resolved_inputs: Step inputs as declared (references resolved at run time)
        dependencies: Step ids that must be terminal before this step starts
        status: Current status
        retry_count: Index of the last attempt made (0 = first attempt)
        max_retries: Retries allowed after the first attempt
        timeout: Per-attempt timeout in milliseconds, None for no limit
        cache: Whether the cache may serve/store this step
        condition: Optional skip condition (see PipelineExecutor.skip_condition)
        name: Optional human-readable name
    """
    id: str
    provider: str
    operation: str
    resolved_inputs: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    retry_count: int = 0
    max_retries: int = 0
    timeout: Optional[int] = None
    cache: bool = True
    condition: Optional[str] = None
    name: Optional[str] = None

    @property
    def category(self) -> str:
        return self.provider.partition(".")[0]

    def set_status(self, status: StepStatus) -> None:
        """Move to status; terminal states are final."""
        if self.status.is_terminal:
            raise ValueError(
                f"Step {self.id} is already {self.status.value}, cannot become {status.value}"
            )
        if self.status is StepStatus.RUNNING and status is StepStatus.PENDING:
            raise ValueError(f"Step {self.id} cannot go from running back to pending")
        self.status = status

    def reset(self) -> None:
        self.status = StepStatus.PENDING
        self.retry_count = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "operation": self.operation,
            "resolved_inputs": self.resolved_inputs,
            "dependencies": self.dependencies,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "timeout": self.timeout,
            "cache": self.cache,
            "condition": self.condition,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutableStep":
        return cls(
            id=data["id"],
            provider=data["provider"],
            operation=data["operation"],
            resolved_inputs=data.get("resolved_inputs", {}),
            dependencies=data.get("dependencies", []),
            status=StepStatus(data.get("status", "pending")),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 0),
            timeout=data.get("timeout"),
            cache=data.get("cache", True),
            condition=data.get("condition"),
            name=data.get("name"),
        )


@dataclass
class DependencyGraph:
    """
    Step dependency graph.

    Attributes:
        nodes: Step ids
        edges: (from, to) pairs; "from" must finish before "to" starts
        execution_order: Batches of step ids, in execution order
    """
    nodes: List[str] = field(default_factory=list)
    edges: List[Tuple[str, str]] = field(default_factory=list)
    execution_order: List[List[str]] = field(default_factory=list)

    def batch_of(self, step_id: str) -> int:
        for index, batch in enumerate(self.execution_order):
            if step_id in batch:
                return index
        raise KeyError(f"Step {step_id} not scheduled")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": self.nodes,
            "edges": [list(e) for e in self.edges],
            "execution_order": self.execution_order,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DependencyGraph":
        return cls(
            nodes=data.get("nodes", []),
            edges=[tuple(e) for e in data.get("edges", [])],
            execution_order=data.get("execution_order", []),
        )


@dataclass
class Plan:
    """
    Complete execution plan for one recipe run.

    Attributes:
        id: Unique plan id (also the key of the run while active)
        recipe_id: Source recipe identifier
        steps: Executable steps in declaration order
        dependencies: Graph with the batch schedule
        outputs: Recipe output id -> source reference
        created_at: When the plan was generated
        metadata: Optional additional metadata
    """
    id: str
    recipe_id: str
    steps: List[ExecutableStep]
    dependencies: DependencyGraph
    outputs: Dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_step(self, step_id: str) -> Optional[ExecutableStep]:
        """Get step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recipe_id": self.recipe_id,
            "steps": [s.to_dict() for s in self.steps],
            "dependencies": self.dependencies.to_dict(),
            "outputs": self.outputs,
            "created_at": self.created_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        return cls(
            id=data["id"],
            recipe_id=data["recipe_id"],
            steps=[ExecutableStep.from_dict(s) for s in data.get("steps", [])],
            dependencies=DependencyGraph.from_dict(data.get("dependencies", {})),
            outputs=data.get("outputs", {}),
            created_at=data.get("created_at", time.time()),
            metadata=data.get("metadata", {}),
        )

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> "Plan":
        return cls.from_dict(json.loads(json_str))

    def summary(self) -> str:
        """Get a human-readable summary of the plan."""
        order = self.dependencies.execution_order
        lines = [
            f"Execution Plan: {self.id}",
            f"Recipe: {self.recipe_id}",
            f"Steps: {len(self.steps)}",
            f"Batches: {len(order)}",
            "",
        ]

        for index, batch in enumerate(order):
            lines.append(f"Batch {index}: ({len(batch)} steps, can run in parallel)")
            for step_id in batch:
                step = self.get_step(step_id)
                deps = f" <- {', '.join(step.dependencies)}" if step.dependencies else ""
                lines.append(f"  - {step_id}: {step.provider}.{step.operation}{deps}")

        return "\n".join(lines)
