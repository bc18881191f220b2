# pipedag/providers/registry.py
"""
Provider base class and registry.

Providers implement the actual operations steps invoke. A provider is
registered under "<category>.<name>" and exposes a mapping of operation
name -> callable taking the step's inputs dict. Operations may be plain
functions or coroutines.

    registry = ProviderRegistry()

    @registry.provider("imageGen.flux")
    class Flux(Provider):
        @operation
        async def generate(self, inputs):
            ...

    # or a bare mapping
    registry.register("data.echo", {"echo": lambda inputs: inputs})
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

logger = logging.getLogger(__name__)

Operation = Callable[[Dict[str, Any]], Any]

_OPERATION_MARK = "__pipedag_operation__"


def operation(func=None, *, name: Optional[str] = None):
    """
    Mark a Provider method as an operation.

    Usage:
        @operation
        def upscale(self, inputs): ...

        @operation(name="remove-background")
        def remove_background(self, inputs): ...
    """
    def decorator(f):
        setattr(f, _OPERATION_MARK, name or f.__name__)
        return f
    if func is not None:
        return decorator(func)
    return decorator


class Provider:
    """
    Base class for providers.

    Subclasses expose operations as methods decorated with @operation.
    """

    def operations(self) -> Dict[str, Operation]:
        """Map of operation name -> bound callable."""
        ops = {}
        for attr in dir(type(self)):
            member = getattr(type(self), attr, None)
            op_name = getattr(member, _OPERATION_MARK, None)
            if op_name is not None:
                ops[op_name] = getattr(self, attr)
        return ops


def split_provider_id(provider_id: str) -> tuple:
    """Split "<category>.<name>" into (category, name)."""
    category, sep, name = provider_id.partition(".")
    if not sep or not category or not name:
        raise ValueError(f"Provider id must be '<category>.<name>', got '{provider_id}'")
    return category, name


class ProviderRegistry:
    """Registry of providers keyed by provider id."""

    def __init__(self):
        self._providers: Dict[str, Dict[str, Operation]] = {}

    def register(
        self,
        provider_id: str,
        provider: Provider | Mapping[str, Operation],
    ) -> None:
        """Register a Provider instance or an operation mapping."""
        split_provider_id(provider_id)
        if isinstance(provider, Provider):
            ops = provider.operations()
        else:
            ops = dict(provider)
        if not ops:
            raise ValueError(f"Provider {provider_id} exposes no operations")
        for op_name, func in ops.items():
            if not callable(func):
                raise ValueError(f"Operation {provider_id}.{op_name} is not callable")
        if provider_id in self._providers:
            logger.warning(f"Overwriting provider {provider_id}")
        self._providers[provider_id] = ops

    def provider(self, provider_id: str) -> Callable:
        """
        Class decorator registering an instance of a Provider subclass.

        Usage:
            @registry.provider("imageEdit.upscaler")
            class Upscaler(Provider):
                ...
        """
        def decorator(cls: Type[Provider]) -> Type[Provider]:
            self.register(provider_id, cls())
            return cls
        return decorator

    def unregister(self, provider_id: str) -> bool:
        return self._providers.pop(provider_id, None) is not None

    def get(self, provider_id: str) -> Optional[Mapping[str, Operation]]:
        """
        Get the operations of a provider.

        Returns None if no provider is registered.
        """
        return self._providers.get(provider_id)

    def get_operation(self, provider_id: str, op_name: str) -> Optional[Operation]:
        ops = self._providers.get(provider_id)
        if ops is None:
            return None
        return ops.get(op_name)

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def list_providers(self) -> List[str]:
        return sorted(self._providers)

    def list_operations(self, provider_id: str) -> List[str]:
        return sorted(self._providers.get(provider_id, {}))

    def clear(self):
        """Remove all providers (for testing)."""
        self._providers.clear()

    def __contains__(self, provider_id: str) -> bool:
        return self.has(provider_id)

    def __len__(self) -> int:
        return len(self._providers)
