# pipedag/planning/planner.py
"""
Recipe planner - converts recipes into execution plans.

The planner:
1. Validates the recipe (optional but on by default)
2. Resolves every step's provider operation against the registry
3. Derives step dependencies from embedded references
4. Computes dependency levels and groups them into batches
"""

import logging
import uuid
from typing import Dict, List, Optional

from ..config import EngineConfig
from ..errors import RecipeValidationError
from ..recipe import Recipe, RecipeStep
from ..refs import referenced_steps, uses_prev
from ..validation import RecipeValidator
from .schema import DependencyGraph, ExecutableStep, Plan

logger = logging.getLogger(__name__)


def compute_dependencies(recipe: Recipe) -> Dict[str, List[str]]:
    """
    Step id -> ids of the steps it depends on.

    $stepId references create an edge to that step. $prev creates an edge
    to the step declared immediately before, so the previous artifact
    exists when the step runs.
    """
    step_ids = set(recipe.step_ids())
    deps: Dict[str, List[str]] = {}
    previous: Optional[RecipeStep] = None

    for step in recipe.steps:
        step_deps = [s for s in referenced_steps(step.inputs) if s in step_ids and s != step.id]
        if previous is not None and uses_prev(step.inputs) and previous.id not in step_deps:
            step_deps.append(previous.id)
        deps[step.id] = step_deps
        previous = step

    return deps


def compute_levels(deps: Dict[str, List[str]]) -> Dict[str, int]:
    """
    Dependency level for every step.

    Level 0 = no dependencies (can start immediately)
    Level N = 1 + highest level among dependencies

    Raises:
        ValueError: if the dependencies contain a cycle
    """
    levels: Dict[str, int] = {}
    visiting = set()

    def compute_level(step_id: str) -> int:
        if step_id in levels:
            return levels[step_id]
        if step_id in visiting:
            raise ValueError(f"Dependency cycle through step {step_id}")
        visiting.add(step_id)

        step_deps = deps.get(step_id, [])
        level = 1 + max(compute_level(d) for d in step_deps) if step_deps else 0

        visiting.discard(step_id)
        levels[step_id] = level
        return level

    for step_id in deps:
        compute_level(step_id)

    return levels


def build_execution_order(deps: Dict[str, List[str]]) -> List[List[str]]:
    """Group steps into batches by level, keeping declaration order within a batch."""
    levels = compute_levels(deps)
    order: List[List[str]] = [[] for _ in range(max(levels.values()) + 1)] if levels else []
    for step_id in deps:
        order[levels[step_id]].append(step_id)
    return order


class RecipePlanner:
    """Generates execution plans from recipes."""

    def __init__(self, registry=None, config: Optional[EngineConfig] = None):
        """
        Initialize the planner.

        Args:
            registry: ProviderRegistry used to resolve providers at plan time
            config: Engine config supplying retry/timeout defaults
        """
        self.registry = registry
        self.config = config or EngineConfig()

    def plan(self, recipe: Recipe, validate: bool = True) -> Plan:
        """
        Generate an execution plan from a recipe.

        Args:
            recipe: The recipe
            validate: Run the validator first

        Returns:
            Plan with a topological batch order

        Raises:
            RecipeValidationError: invalid recipe or unresolvable provider
        """
        logger.info(f"Planning recipe: {recipe.id}")

        if validate:
            result = RecipeValidator(self.registry).validate(recipe)
            if not result.valid:
                messages = "; ".join(str(e) for e in result.errors)
                raise RecipeValidationError(f"Invalid recipe {recipe.id}: {messages}", result)

        self._resolve_providers(recipe)

        deps = compute_dependencies(recipe)
        try:
            execution_order = build_execution_order(deps)
        except ValueError as e:
            raise RecipeValidationError(f"Invalid recipe {recipe.id}: {e}") from e

        steps = [self._make_step(step, deps[step.id]) for step in recipe.steps]
        graph = DependencyGraph(
            nodes=[s.id for s in steps],
            edges=[(dep, step_id) for step_id, step_deps in deps.items() for dep in step_deps],
            execution_order=execution_order,
        )

        plan = Plan(
            id=f"{recipe.id}-{uuid.uuid4().hex[:12]}",
            recipe_id=recipe.id,
            steps=steps,
            dependencies=graph,
            outputs={o.id: o.source for o in recipe.outputs},
            metadata={
                "recipe_name": recipe.name,
                "recipe_version": recipe.version,
                "recipe_hash": recipe.recipe_hash,
            },
        )

        logger.info(f"Generated plan {plan.id} with {len(steps)} steps in {len(execution_order)} batches")
        return plan

    def _resolve_providers(self, recipe: Recipe) -> None:
        if self.registry is None:
            return
        for step in recipe.steps:
            if self.registry.get_operation(step.provider, step.operation) is None:
                if not self.registry.has(step.provider):
                    message = f"Unknown provider: {step.provider}"
                else:
                    message = f"Provider {step.provider} has no operation '{step.operation}'"
                raise RecipeValidationError(f"Step {step.id}: {message}")

    def _make_step(self, step: RecipeStep, deps: List[str]) -> ExecutableStep:
        max_retries = step.retries if step.retries is not None else self.config.default_max_retries
        timeout = step.timeout if step.timeout is not None else self.config.default_timeout_ms
        return ExecutableStep(
            id=step.id,
            provider=step.provider,
            operation=step.operation,
            resolved_inputs=dict(step.inputs),
            dependencies=list(deps),
            max_retries=max(0, max_retries),
            timeout=timeout,
            cache=step.cache,
            condition=step.condition,
            name=step.name,
        )
