# pipedag/providers - Provider registry and built-in providers
#
# Providers are the pluggable external operations a recipe step invokes.
# Real adapters (Replicate, OpenAI, ...) live outside the engine and are
# registered by the application.

from .registry import Provider, ProviderRegistry, operation, split_provider_id
from .builtin import register_builtin_providers


def default_registry() -> ProviderRegistry:
    """A fresh registry containing the built-in providers."""
    return register_builtin_providers(ProviderRegistry())


__all__ = [
    "Provider",
    "ProviderRegistry",
    "operation",
    "split_provider_id",
    "register_builtin_providers",
    "default_registry",
]
