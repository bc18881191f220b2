# pipedag/recipe.py
"""
Recipe data structures.

A recipe is a declarative, serializable workflow definition:

    id: product-shot
    name: Product shot
    version: "1.0"
    inputs:
      - id: prompt
        type: text
    steps:
      - id: base
        provider: imageGen.flux
        operation: generate
        inputs:
          prompt: $input.prompt
          width: 1024
      - id: upscaled
        provider: imageEdit.upscaler
        operation: upscale
        inputs:
          image: $base.url
    outputs:
      - id: image
        source: $upscaled.url

Recipes are data only. Validation lives in pipedag.validation and planning
in pipedag.planning.
"""

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .cache import stable_hash

INPUT_TYPES = ("asset", "text", "number", "boolean", "object")


@dataclass
class RecipeInput:
    """A caller-supplied recipe input."""
    id: str
    type: Optional[str] = None
    name: Optional[str] = None
    required: bool = False
    default: Any = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "type": self.type, "required": self.required}
        if self.name is not None:
            data["name"] = self.name
        if self.default is not None:
            data["default"] = self.default
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecipeInput":
        return cls(
            id=data.get("id", ""),
            type=data.get("type"),
            name=data.get("name"),
            required=data.get("required", False),
            default=data.get("default", data.get("defaultValue")),
            description=data.get("description"),
        )


@dataclass
class RecipeStep:
    """
    A single provider invocation in a recipe.

    Attributes:
        id: Unique step id (also the name other steps reference it by)
        provider: Provider id, "<category>.<name>"
        operation: Operation name exposed by the provider
        inputs: Operation inputs; strings starting with $ are references
        name: Optional human-readable name
        condition: Optional skip condition expression (interpreted by the executor's hook)
        retries: Max retries (None = engine default)
        timeout: Timeout in milliseconds (None = engine default)
        cache: Whether results may be served from / stored in the cache
    """
    id: str
    provider: str = ""
    operation: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None
    condition: Optional[str] = None
    retries: Optional[int] = None
    timeout: Optional[int] = None
    cache: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "provider": self.provider,
            "operation": self.operation,
            "inputs": self.inputs,
            "cache": self.cache,
        }
        for key in ("name", "condition", "retries", "timeout"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecipeStep":
        return cls(
            id=data.get("id", ""),
            provider=data.get("provider", ""),
            operation=data.get("operation", ""),
            inputs=data.get("inputs") or {},
            name=data.get("name"),
            condition=data.get("condition"),
            retries=data.get("retries"),
            timeout=data.get("timeout"),
            cache=data.get("cache", True),
        )


@dataclass
class RecipeOutput:
    """A named recipe result, pointing at a step artifact via a reference."""
    id: str
    source: str = ""
    name: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "source": self.source}
        if self.name is not None:
            data["name"] = self.name
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecipeOutput":
        return cls(
            id=data.get("id", ""),
            source=data.get("source", ""),
            name=data.get("name"),
            description=data.get("description"),
        )


@dataclass
class Recipe:
    """A declarative multi-step workflow."""
    id: str
    name: str
    version: str = "1.0"
    inputs: List[RecipeInput] = field(default_factory=list)
    steps: List[RecipeStep] = field(default_factory=list)
    outputs: List[RecipeOutput] = field(default_factory=list)
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def recipe_hash(self) -> str:
        """Content hash of the recipe definition."""
        return stable_hash(self.to_dict())

    def get_step(self, step_id: str) -> Optional[RecipeStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def input_ids(self) -> List[str]:
        return [i.id for i in self.inputs]

    def copy(self) -> "Recipe":
        """Deep copy (recipes are treated as immutable once validated)."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "inputs": [i.to_dict() for i in self.inputs],
            "steps": [s.to_dict() for s in self.steps],
            "outputs": [o.to_dict() for o in self.outputs],
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recipe":
        # Tolerate outputs written as {id: source}
        outputs = data.get("outputs") or []
        if isinstance(outputs, dict):
            outputs = [{"id": k, "source": v} for k, v in outputs.items()]

        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            version=str(data.get("version", "1.0")),
            inputs=[RecipeInput.from_dict(i) for i in data.get("inputs") or []],
            steps=[RecipeStep.from_dict(s) for s in data.get("steps") or []],
            outputs=[RecipeOutput.from_dict(o) for o in outputs],
            description=data.get("description", ""),
            metadata=data.get("metadata") or {},
        )

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> "Recipe":
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "Recipe":
        """Parse recipe from YAML string."""
        data = yaml.safe_load(yaml_content)
        if not isinstance(data, dict):
            raise ValueError("Recipe YAML must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> "Recipe":
        """Load recipe from a .json, .yaml or .yml file."""
        path = Path(path)
        with open(path, "r") as f:
            content = f.read()
        if path.suffix == ".json":
            return cls.from_json(content)
        return cls.from_yaml(content)
