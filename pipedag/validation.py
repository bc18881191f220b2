# pipedag/validation.py
"""
Recipe validation.

Checks run in order: structure, inputs, steps, providers, references,
cycles, reachability. The validator reports problems and suggested fixes;
it never modifies the recipe. apply_auto_fixes() applies fixes to a copy.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ReferenceSyntaxError
from .recipe import Recipe
from .refs import (
    ReferenceType,
    extract_references,
    has_variable_root,
    is_identifier,
    is_reserved_root,
    parse_reference,
    referenced_steps,
)

logger = logging.getLogger(__name__)

MAX_SUGGESTION_DISTANCE = 3


@dataclass
class ValidationIssue:
    """An error that blocks planning."""
    path: str
    message: str
    code: str
    severity: str = "error"
    cycle: Optional[List[str]] = None

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class ValidationWarning:
    """A problem worth reporting that does not block planning."""
    path: str
    message: str
    code: str
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class AutoFix:
    """A suggested edit, applied only through apply_auto_fixes()."""
    path: str
    description: str
    action: str  # "add", "remove", "modify"
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "description": self.description,
            "action": self.action,
            "value": self.value,
        }


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    fixes: List[AutoFix] = field(default_factory=list)

    def error_codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def warning_codes(self) -> List[str]:
        return [w.code for w in self.warnings]

    def summary(self) -> str:
        lines = [f"valid: {self.valid}"]
        lines += [f"  error   {e}" for e in self.errors]
        lines += [f"  warning {w}" for w in self.warnings]
        lines += [f"  fix     {f.path}: {f.description}" for f in self.fixes]
        return "\n".join(lines)


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                current[j - 1] + 1,
                previous[j] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def suggest_similar(name: str, candidates: List[str]) -> Optional[str]:
    """Closest candidate within MAX_SUGGESTION_DISTANCE, case-insensitive."""
    best = None
    best_distance = MAX_SUGGESTION_DISTANCE + 1
    for candidate in candidates:
        distance = levenshtein_distance(name.lower(), candidate.lower())
        if distance < best_distance:
            best, best_distance = candidate, distance
    return best


class RecipeValidator:
    """
    Validates recipes against a provider registry.

    Any object with has(provider_id) and list_providers() works as the
    registry. Without one, provider checks are skipped.
    """

    def __init__(self, registry=None):
        self.registry = registry

    def validate(self, recipe: Recipe) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []
        fixes: List[AutoFix] = []

        self._check_structure(recipe, errors)
        self._check_inputs(recipe, errors, fixes)
        for index, step in enumerate(recipe.steps):
            self._check_step(step, index, recipe, errors, warnings, fixes)
        self._check_outputs(recipe, errors, warnings)

        cycle = find_cycle(recipe)
        if cycle:
            errors.append(ValidationIssue(
                path="steps",
                message=f"Circular dependencies detected: {' -> '.join(cycle)}",
                code="CIRCULAR_DEPENDENCY",
                cycle=cycle,
            ))

        for step_id in find_unreachable_steps(recipe):
            warnings.append(ValidationWarning(
                path="steps",
                message=f'Step "{step_id}" may be unreachable',
                code="UNREACHABLE_STEP",
                suggestion="Ensure this step is referenced by an output or another step",
            ))

        result = ValidationResult(
            valid=not errors, errors=errors, warnings=warnings, fixes=fixes,
        )
        logger.debug(
            f"Validated recipe {recipe.id!r}: {len(errors)} errors, {len(warnings)} warnings"
        )
        return result

    def _check_structure(self, recipe: Recipe, errors: List[ValidationIssue]) -> None:
        if not recipe.id:
            errors.append(ValidationIssue("id", "Recipe must have an ID", "MISSING_ID"))
        if not recipe.name:
            errors.append(ValidationIssue("name", "Recipe must have a name", "MISSING_NAME"))
        if not recipe.steps:
            errors.append(ValidationIssue(
                "steps", "Recipe must have at least one step", "NO_STEPS",
            ))

    def _check_inputs(self, recipe: Recipe, errors, fixes) -> None:
        seen = set()
        for index, recipe_input in enumerate(recipe.inputs):
            path = f"inputs[{index}]"
            if not recipe_input.id:
                errors.append(ValidationIssue(
                    f"{path}.id", "Input must have an ID", "MISSING_INPUT_ID",
                ))
            elif recipe_input.id in seen:
                errors.append(ValidationIssue(
                    f"{path}.id", f"Duplicate input ID: {recipe_input.id}", "DUPLICATE_INPUT_ID",
                ))
            elif not is_identifier(recipe_input.id):
                errors.append(ValidationIssue(
                    f"{path}.id",
                    f"Input ID cannot be referenced: {recipe_input.id}",
                    "INVALID_INPUT_ID",
                ))
            seen.add(recipe_input.id)

            if not recipe_input.type:
                errors.append(ValidationIssue(
                    f"{path}.type", "Input must have a type", "MISSING_INPUT_TYPE",
                ))
                fixes.append(AutoFix(
                    path=f"{path}.type",
                    description='Set default input type to "text"',
                    action="add",
                    value="text",
                ))

    def _check_step(self, step, index: int, recipe: Recipe, errors, warnings, fixes) -> None:
        path = f"steps[{index}]"

        if not step.id:
            errors.append(ValidationIssue(f"{path}.id", "Step must have an ID", "MISSING_STEP_ID"))
        elif recipe.step_ids().count(step.id) > 1 and recipe.step_ids().index(step.id) != index:
            errors.append(ValidationIssue(
                f"{path}.id", f"Duplicate step ID: {step.id}", "DUPLICATE_STEP_ID",
            ))
        elif not is_identifier(step.id):
            errors.append(ValidationIssue(
                f"{path}.id", f"Step ID cannot be referenced: {step.id}", "INVALID_STEP_ID",
            ))
        elif is_reserved_root(step.id):
            errors.append(ValidationIssue(
                f"{path}.id", f"Step ID is a reserved reference name: {step.id}", "RESERVED_STEP_ID",
            ))

        if not step.provider:
            errors.append(ValidationIssue(
                f"{path}.provider", "Step must have a provider", "MISSING_PROVIDER",
            ))
        if not step.operation:
            errors.append(ValidationIssue(
                f"{path}.operation", "Step must have an operation", "MISSING_OPERATION",
            ))

        if step.provider and self.registry is not None and not self.registry.has(step.provider):
            errors.append(ValidationIssue(
                f"{path}.provider", f"Unknown provider: {step.provider}", "UNKNOWN_PROVIDER",
            ))
            suggestion = suggest_similar(step.provider, self.registry.list_providers())
            if suggestion:
                fixes.append(AutoFix(
                    path=f"{path}.provider",
                    description=f'Did you mean "{suggestion}"?',
                    action="modify",
                    value=suggestion,
                ))

        for ref in extract_references(step.inputs):
            self._check_reference(ref, f"{path}.inputs", recipe, errors, warnings, "INVALID_REFERENCE")
            if step.id and step.id in referenced_steps(ref):
                errors.append(ValidationIssue(
                    f"{path}.inputs", f"Step references itself: {ref}", "SELF_REFERENCE",
                ))

        if step.retries is not None and not 0 <= step.retries <= 10:
            warnings.append(ValidationWarning(
                f"{path}.retries",
                "Retry count should be between 0 and 10",
                "INVALID_RETRY_COUNT",
                "Use a reasonable retry count (0-3 for most cases)",
            ))

        if step.timeout is not None and step.timeout < 1000:
            warnings.append(ValidationWarning(
                f"{path}.timeout",
                "Timeout should be at least 1000ms",
                "SHORT_TIMEOUT",
                "Use a longer timeout for reliable execution",
            ))

    def _check_outputs(self, recipe: Recipe, errors, warnings) -> None:
        for index, output in enumerate(recipe.outputs):
            path = f"outputs[{index}]"
            if not output.id:
                errors.append(ValidationIssue(
                    f"{path}.id", "Output must have an ID", "MISSING_OUTPUT_ID",
                ))
            if not output.source:
                errors.append(ValidationIssue(
                    f"{path}.source", "Output must have a source reference", "MISSING_OUTPUT_SOURCE",
                ))
            elif not output.source.startswith("$"):
                errors.append(ValidationIssue(
                    f"{path}.source",
                    f"Output source must be a reference: {output.source}",
                    "INVALID_OUTPUT_REFERENCE",
                ))
            else:
                self._check_reference(
                    output.source, f"{path}.source", recipe, errors, warnings,
                    "INVALID_OUTPUT_REFERENCE",
                )

    def _check_reference(self, ref: str, path: str, recipe: Recipe, errors, warnings, code) -> None:
        try:
            reference = parse_reference(ref)
        except ReferenceSyntaxError as e:
            if has_variable_root(ref):
                errors.append(ValidationIssue(path, f"Invalid reference: {ref} ({e.reason})", code))
                return
            # Passed through verbatim at runtime, e.g. "$5 off"
            warnings.append(ValidationWarning(
                path, f"Not a valid reference, will be used literally: {ref}",
                "MALFORMED_REFERENCE", e.reason,
            ))
            return

        if reference.type is ReferenceType.INPUT:
            if reference.source not in recipe.input_ids():
                errors.append(ValidationIssue(path, f"Invalid reference: {ref}", code))
        elif reference.type is ReferenceType.STEP:
            if reference.source not in recipe.step_ids():
                errors.append(ValidationIssue(path, f"Invalid reference: {ref}", code))


def find_cycle(recipe: Recipe) -> List[str]:
    """
    Find a circular step dependency.

    DFS with an explicit recursion stack over step -> referenced-step edges.

    Returns:
        The cycle path (first and last element equal), or [] if acyclic
    """
    step_map = {s.id: s for s in recipe.steps if s.id}
    visited = set()
    stack: List[str] = []
    on_stack = set()

    def visit(step_id: str) -> Optional[List[str]]:
        if step_id in on_stack:
            return stack[stack.index(step_id):] + [step_id]
        if step_id in visited:
            return None

        visited.add(step_id)
        stack.append(step_id)
        on_stack.add(step_id)

        for dep in referenced_steps(step_map[step_id].inputs):
            if dep in step_map:
                cycle = visit(dep)
                if cycle:
                    return cycle

        stack.pop()
        on_stack.discard(step_id)
        return None

    for step_id in step_map:
        cycle = visit(step_id)
        if cycle:
            return cycle
    return []


def find_unreachable_steps(recipe: Recipe) -> List[str]:
    """Steps referenced neither by an output nor by another step."""
    referenced = set()
    for output in recipe.outputs:
        referenced.update(referenced_steps(output.source))
    for step in recipe.steps:
        referenced.update(s for s in referenced_steps(step.inputs) if s != step.id)
    return [s.id for s in recipe.steps if s.id and s.id not in referenced]


def validate_recipe(recipe: Recipe, registry=None) -> ValidationResult:
    """Validate a recipe. See RecipeValidator."""
    return RecipeValidator(registry).validate(recipe)


_PATH_PART = re.compile(r"^(\w+)\[(\d+)\]$")


def apply_auto_fixes(recipe: Recipe, fixes: List[AutoFix]) -> Recipe:
    """
    Apply fixes to a deep copy of recipe.

    Paths use the validator's notation, e.g. "steps[0].provider".
    """
    data = copy.deepcopy(recipe.to_dict())

    for fix in fixes:
        parts = fix.path.split(".")
        target = data
        for part in parts[:-1]:
            target = _step_into(target, part)

        last = parts[-1]
        match = _PATH_PART.match(last)
        if match:
            container, index = target[match.group(1)], int(match.group(2))
            if fix.action == "remove":
                del container[index]
            else:
                container[index] = fix.value
        elif fix.action == "remove":
            target.pop(last, None)
        else:
            target[last] = fix.value
        logger.info(f"Applied fix {fix.action} {fix.path}: {fix.description}")

    return Recipe.from_dict(data)


def _step_into(target: Any, part: str) -> Any:
    match = _PATH_PART.match(part)
    if match:
        return target[match.group(1)][int(match.group(2))]
    return target[part]
