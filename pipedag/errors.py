# pipedag/errors.py
"""
Error classes for pipedag.

Retry classification happens at the step boundary inside the executor:
- TransientError: safe to retry (timeouts, open circuits, flaky providers)
- PermanentError: never retried (unknown provider, rejected input)

Anything else a provider raises is treated as retryable until the step's
retry budget is spent.
"""

from typing import Any, List, Optional


class PipedagError(Exception):
    """Base exception for pipedag."""
    pass


class ConfigError(PipedagError):
    """Invalid engine configuration."""
    pass


class RecipeValidationError(PipedagError):
    """A recipe failed validation and cannot be planned."""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result

    @property
    def errors(self) -> List[Any]:
        return list(self.result.errors) if self.result is not None else []


class ReferenceSyntaxError(PipedagError, ValueError):
    """A $-string does not match the reference grammar."""

    def __init__(self, ref: str, reason: str, position: Optional[int] = None):
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Invalid reference '{ref}'{where}: {reason}")
        self.ref = ref
        self.reason = reason
        self.position = position


class ReferenceResolutionError(PipedagError, LookupError):
    """A well-formed reference could not be resolved against execution state."""

    def __init__(self, ref: str, reason: str):
        super().__init__(f"Cannot resolve '{ref}': {reason}")
        self.ref = ref
        self.reason = reason


class TransientError(PipedagError):
    """
    Transient error - safe to retry.

    Examples:
    - Rate limit exceeded
    - Provider call timed out
    - Circuit temporarily open
    """
    pass


class StepTimeoutError(TransientError):
    """A provider call exceeded the step timeout."""

    def __init__(self, step_id: str, timeout_ms: int):
        super().__init__(f"Step '{step_id}' timed out after {timeout_ms}ms")
        self.step_id = step_id
        self.timeout_ms = timeout_ms


class CircuitOpenError(TransientError):
    """The circuit for a provider operation is open and no fallback exists."""

    def __init__(self, key: str):
        super().__init__(f"Circuit breaker is OPEN for {key}. Service temporarily unavailable.")
        self.key = key


class PermanentError(PipedagError):
    """
    Permanent error - do not retry.

    Providers raise this for failures a retry cannot fix (invalid input,
    unsupported parameters). The executor fails the step immediately.
    """
    pass


class ProviderNotFoundError(PermanentError):
    """The provider or operation is not registered."""

    def __init__(self, provider_id: str, operation: Optional[str] = None):
        if operation:
            message = f"Unknown operation '{operation}' for provider: {provider_id}"
        else:
            message = f"Unknown provider: {provider_id}"
        super().__init__(message)
        self.provider_id = provider_id
        self.operation = operation


class StepExecutionError(PipedagError):
    """A step failed terminally; carries the recorded ExecutionError."""

    def __init__(self, record: Any, cause: Optional[BaseException] = None):
        super().__init__(f"Step '{record.step_id}' failed: {record.message}")
        self.record = record
        self.cause = cause


def is_retryable(error: BaseException) -> bool:
    """Whether a failed attempt may be retried."""
    if isinstance(error, (PermanentError, ReferenceSyntaxError, ReferenceResolutionError)):
        return False
    return True
