# pipedag/providers/builtin.py
"""
Built-in local providers.

These need no network access, so recipes wiring data between steps can
run from the CLI and in tests:

    data.echo       echo      returns its inputs
    data.merge      merge     shallow-merges the mappings under "items"
    data.pick       pick      returns inputs["value"][inputs["key"]]
    text.template   render    str.format(template, **values)
"""

import logging
from typing import Any, Dict

from ..errors import PermanentError
from .registry import Provider, ProviderRegistry, operation

logger = logging.getLogger(__name__)


class EchoProvider(Provider):
    """Identity provider: echo(x) = x."""

    @operation
    def echo(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        return dict(inputs)


class DataProvider(Provider):
    """Structural helpers for reshaping step outputs."""

    @operation
    def merge(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        items = inputs.get("items", [])
        if not isinstance(items, list):
            raise PermanentError("merge expects 'items' to be a list of mappings")
        merged: Dict[str, Any] = {}
        for item in items:
            if not isinstance(item, dict):
                raise PermanentError(f"merge cannot merge {type(item).__name__}")
            merged.update(item)
        return merged

    @operation
    def pick(self, inputs: Dict[str, Any]) -> Any:
        value = inputs.get("value")
        key = inputs.get("key")
        if isinstance(value, dict) and key in value:
            return value[key]
        if isinstance(value, list) and isinstance(key, int) and 0 <= key < len(value):
            return value[key]
        raise PermanentError(f"pick: key {key!r} not present")


class TemplateProvider(Provider):
    """Fill str.format templates, e.g. to build prompts."""

    @operation
    def render(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        template = inputs.get("template")
        if not isinstance(template, str):
            raise PermanentError("render requires a 'template' string")
        values = inputs.get("values", {})
        try:
            text = template.format(**values)
        except (KeyError, IndexError) as e:
            raise PermanentError(f"Template placeholder missing: {e}") from e
        return {"text": text}


def register_builtin_providers(registry: ProviderRegistry) -> ProviderRegistry:
    registry.register("data.echo", EchoProvider())
    registry.register("data.merge", {"merge": DataProvider().merge})
    registry.register("data.pick", {"pick": DataProvider().pick})
    registry.register("text.template", TemplateProvider())
    return registry
