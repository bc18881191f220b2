#!/usr/bin/env python3
"""
pipedag CLI

Command-line interface for recipes:
  pipedag validate - Check a recipe, optionally writing the auto-fixed version
  pipedag plan - Generate an execution plan
  pipedag run - Plan and execute a recipe with the built-in providers

Usage:
  pipedag validate <recipe> [--fix] [-o <fixed.yaml>]
  pipedag plan <recipe> [-o <plan.json>]
  pipedag run <recipe> -i <name>=<value> ... [--draft] [--config <cfg.yaml>] [--logs]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


def parse_input(input_str: str) -> Tuple[str, Any]:
    """
    Parse input specification: name=value

    The value is read as a YAML scalar, so numbers and booleans keep their type.
    """
    if "=" not in input_str:
        raise ValueError(f"Invalid input format: {input_str}. Expected name=value")

    name, raw = input_str.split("=", 1)
    if not name:
        raise ValueError(f"Invalid input format: {input_str}. Missing name")
    try:
        value = yaml.safe_load(raw) if raw else ""
    except yaml.YAMLError:
        value = raw
    return name, value


def parse_inputs(input_list: Optional[List[str]]) -> Dict[str, Any]:
    """Parse list of input specifications."""
    inputs = {}
    for input_str in input_list or []:
        name, value = parse_input(input_str)
        inputs[name] = value
    return inputs


def _write_recipe(recipe, output_path: Path) -> None:
    with open(output_path, "w") as f:
        if output_path.suffix == ".json":
            f.write(recipe.to_json())
        else:
            yaml.safe_dump(recipe.to_dict(), f, sort_keys=False)


def cmd_validate(args) -> int:
    """Validate a recipe."""
    from .providers import default_registry
    from .recipe import Recipe
    from .validation import apply_auto_fixes, validate_recipe

    recipe = Recipe.from_file(Path(args.recipe))
    print(f"Recipe: {recipe.name or recipe.id} v{recipe.version}")

    result = validate_recipe(recipe, default_registry())
    print(result.summary())

    if args.fix and result.fixes:
        fixed = apply_auto_fixes(recipe, result.fixes)
        output_path = Path(args.output) if args.output else Path(args.recipe)
        _write_recipe(fixed, output_path)
        print(f"\nApplied {len(result.fixes)} fixes, saved to: {output_path}")

        result = validate_recipe(fixed, default_registry())
        print(result.summary())

    return 0 if result.valid else 1


def cmd_plan(args) -> int:
    """Generate an execution plan."""
    from .config import load_config
    from .planning import RecipePlanner
    from .providers import default_registry
    from .recipe import Recipe

    recipe = Recipe.from_file(Path(args.recipe))
    print(f"Recipe: {recipe.name or recipe.id} v{recipe.version}")

    planner = RecipePlanner(default_registry(), load_config(args.config))
    plan = planner.plan(recipe)

    print()
    print(plan.summary())

    output_path = Path(args.output) if args.output else Path("plan.json")
    with open(output_path, "w") as f:
        f.write(plan.to_json())

    print(f"\nPlan saved to: {output_path}")
    return 0


def cmd_run(args) -> int:
    """Plan and execute a recipe."""
    from .config import load_config
    from .engine import ExecutionOptions, PipelineExecutor
    from .providers import default_registry
    from .recipe import Recipe

    recipe = Recipe.from_file(Path(args.recipe))
    print(f"Recipe: {recipe.name or recipe.id} v{recipe.version}")

    executor = PipelineExecutor(default_registry(), load_config(args.config))
    options = ExecutionOptions(draft=args.draft)
    result = asyncio.run(executor.run_recipe(recipe, parse_inputs(args.input), options))

    print(f"\n=== {result.status.upper()} ===")
    for step_id, status in result.step_statuses.items():
        print(f"  [{status.upper()}] {step_id}")
    for error in result.errors:
        print(f"  ERROR {error.step_id}: {error.message}")
    print(f"Duration: {result.duration:.0f}ms, cache hits: {result.stats.cache_hits}")

    if result.named_outputs:
        print("\nOutputs:")
        print(json.dumps(result.named_outputs, indent=2, default=str))

    if args.logs:
        print("\nLogs:")
        for record in executor.get_structured_logs(result.plan_id):
            print(json.dumps(record.to_dict(), default=str))

    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pipedag",
        description="pipedag - Recipe pipelines over pluggable providers",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a recipe")
    validate_parser.add_argument("recipe", help="Recipe YAML or JSON file")
    validate_parser.add_argument("--fix", action="store_true",
                                 help="Apply suggested auto-fixes")
    validate_parser.add_argument("-o", "--output",
                                 help="Where to write the fixed recipe (default: in place)")

    # plan command
    plan_parser = subparsers.add_parser("plan", help="Generate execution plan")
    plan_parser.add_argument("recipe", help="Recipe YAML or JSON file")
    plan_parser.add_argument("-o", "--output", help="Output file (default: plan.json)")
    plan_parser.add_argument("--config", help="Engine config YAML file")

    # run command
    run_parser = subparsers.add_parser("run", help="Plan and execute a recipe")
    run_parser.add_argument("recipe", help="Recipe YAML or JSON file")
    run_parser.add_argument("-i", "--input", action="append",
                            help="Input: name=value")
    run_parser.add_argument("--draft", action="store_true",
                            help="Draft mode: smaller, faster, cheaper")
    run_parser.add_argument("--config", help="Engine config YAML file")
    run_parser.add_argument("--logs", action="store_true",
                            help="Print structured step logs")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "validate": cmd_validate,
        "plan": cmd_plan,
        "run": cmd_run,
    }
    if args.command not in commands:
        parser.print_help()
        return 1

    from .errors import PipedagError

    try:
        return commands[args.command](args)
    except (PipedagError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
