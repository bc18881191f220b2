# pipedag - Recipe pipeline engine over pluggable providers
#
# Executes declarative recipes (steps wired together with $-references)
# against a registry of provider operations, in dependency-ordered batches
# with concurrency inside each batch.
#
# Core concepts:
# - Recipe: Declarative steps, inputs and outputs
# - Plan: A validated recipe scheduled into batches
# - Provider: A pluggable set of operations a step invokes
# - PipelineExecutor: Runs plans with caching, retries and circuit breaking

__version__ = "0.1.0"

from .errors import (
    PipedagError,
    ConfigError,
    RecipeValidationError,
    ReferenceSyntaxError,
    ReferenceResolutionError,
    TransientError,
    PermanentError,
    StepTimeoutError,
    CircuitOpenError,
    ProviderNotFoundError,
    StepExecutionError,
)
from .recipe import Recipe, RecipeInput, RecipeStep, RecipeOutput
from .refs import Reference, ReferenceType, parse_reference, resolve_reference, resolve_references
from .validation import RecipeValidator, ValidationResult, validate_recipe, apply_auto_fixes
from .planning import RecipePlanner, Plan, ExecutableStep, StepStatus, DependencyGraph
from .providers import Provider, ProviderRegistry, operation, default_registry
from .cache import ArtifactCache, CacheStats, compute_cache_key
from .circuit import CircuitBreaker, CircuitState
from .config import EngineConfig, load_config
from .context import Artifact, ArtifactType, ExecutionContext, ExecutionError, ExecutionProgress
from .draft import DraftOptions, apply_draft_overrides
from .logs import LogBuffer, StructuredLog
from .engine import PipelineExecutor, ExecutionOptions, ExecutionResult, ExecutionStats

__all__ = [
    # Errors
    "PipedagError",
    "ConfigError",
    "RecipeValidationError",
    "ReferenceSyntaxError",
    "ReferenceResolutionError",
    "TransientError",
    "PermanentError",
    "StepTimeoutError",
    "CircuitOpenError",
    "ProviderNotFoundError",
    "StepExecutionError",
    # Recipes
    "Recipe",
    "RecipeInput",
    "RecipeStep",
    "RecipeOutput",
    # References
    "Reference",
    "ReferenceType",
    "parse_reference",
    "resolve_reference",
    "resolve_references",
    # Validation
    "RecipeValidator",
    "ValidationResult",
    "validate_recipe",
    "apply_auto_fixes",
    # Planning
    "RecipePlanner",
    "Plan",
    "ExecutableStep",
    "StepStatus",
    "DependencyGraph",
    # Providers
    "Provider",
    "ProviderRegistry",
    "operation",
    "default_registry",
    # Execution
    "ArtifactCache",
    "CacheStats",
    "compute_cache_key",
    "CircuitBreaker",
    "CircuitState",
    "EngineConfig",
    "load_config",
    "Artifact",
    "ArtifactType",
    "ExecutionContext",
    "ExecutionError",
    "ExecutionProgress",
    "DraftOptions",
    "apply_draft_overrides",
    "LogBuffer",
    "StructuredLog",
    "PipelineExecutor",
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutionStats",
]
