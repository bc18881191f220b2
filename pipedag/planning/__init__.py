# pipedag/planning - Execution plan generation
#
# Turns a validated recipe into a Plan: executable steps plus a batch
# schedule in which every step's dependencies run in an earlier batch.

from .schema import DependencyGraph, ExecutableStep, Plan, StepStatus
from .planner import RecipePlanner, build_execution_order, compute_dependencies, compute_levels

__all__ = [
    "DependencyGraph",
    "ExecutableStep",
    "Plan",
    "StepStatus",
    "RecipePlanner",
    "build_execution_order",
    "compute_dependencies",
    "compute_levels",
]
