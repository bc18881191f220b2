#!/usr/bin/env python3
"""
Plan and run a recipe locally.

Shows the batch schedule, then executes the recipe twice: a draft run
and a full run, printing the named outputs and cache statistics.
"""

import asyncio
import json
import sys
from pathlib import Path

from pipedag import ExecutionOptions, PipelineExecutor, Recipe, RecipePlanner, default_registry


async def run(recipe_path: Path, who: str) -> int:
    recipe = Recipe.from_file(recipe_path)
    print(f"Recipe: {recipe.name} v{recipe.version}")
    print(f"Steps: {len(recipe.steps)}")
    print()

    registry = default_registry()
    plan = RecipePlanner(registry).plan(recipe)
    print(plan.summary())
    print()

    executor = PipelineExecutor(registry)
    for label, draft in (("draft", True), ("full", False)):
        result = await executor.run_recipe(recipe, {"who": who}, ExecutionOptions(draft=draft))
        print(f"=== {label} run: {result.status} ({result.duration:.1f}ms) ===")
        print(json.dumps(result.named_outputs, indent=2))
        for error in result.errors:
            print(f"  ERROR {error.step_id}: {error.message}")
        print()

    print(f"Cache: {executor.get_cache_stats().to_dict()}")
    return 0


def main():
    recipe_path = Path(__file__).parent / "greeting.yaml"
    if not recipe_path.exists():
        print(f"Recipe not found: {recipe_path}")
        return 1
    who = sys.argv[1] if len(sys.argv) > 1 else "world"
    return asyncio.run(run(recipe_path, who))


if __name__ == "__main__":
    sys.exit(main())
