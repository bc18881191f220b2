# pipedag/engine.py
"""
Pipeline execution engine.

Executes plans by:
1. Running batches strictly in order, steps within a batch concurrently
2. Resolving each step's references against the run's artifacts
3. Serving steps from the content-addressed cache when possible
4. Calling providers through the circuit breaker, with timeouts and
   exponential-backoff retries
5. Recording artifacts, errors and structured logs

execute_plan never raises: every outcome is reported in ExecutionResult.
"""

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .cache import ArtifactCache, CacheStats, compute_cache_key
from .circuit import CircuitBreaker
from .config import EngineConfig
from .context import (
    Artifact,
    ExecutionContext,
    ExecutionError,
    ExecutionProgress,
    infer_artifact_type,
)
from .draft import DraftOptions, apply_draft_overrides
from .errors import (
    ProviderNotFoundError,
    RecipeValidationError,
    StepExecutionError,
    StepTimeoutError,
    is_retryable,
)
from .logs import LogBuffer, StructuredLog
from .planning import ExecutableStep, Plan, RecipePlanner, StepStatus
from .recipe import Recipe
from .refs import resolve_reference, resolve_references

logger = logging.getLogger(__name__)

# Categories whose operations fall back to a placeholder asset while their circuit is open
FALLBACK_CATEGORIES = ("imageGen", "imageEdit")

COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

SkipCondition = Callable[[ExecutableStep, ExecutionContext], bool]


@dataclass
class ExecutionOptions:
    """
    Per-run options.

    draft: False for full fidelity, True for the configured draft profile,
    or an explicit DraftOptions.
    """
    draft: bool | DraftOptions = False


@dataclass
class ExecutionStats:
    total_steps: int = 0
    successful_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    cancelled_steps: int = 0
    cache_hits: int = 0
    provider_usage: Dict[str, int] = field(default_factory=dict)
    total_cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_steps": self.total_steps,
            "successful_steps": self.successful_steps,
            "failed_steps": self.failed_steps,
            "skipped_steps": self.skipped_steps,
            "cancelled_steps": self.cancelled_steps,
            "cache_hits": self.cache_hits,
            "provider_usage": self.provider_usage,
            "total_cost": self.total_cost,
        }


@dataclass
class ExecutionResult:
    """Result of executing a plan."""
    plan_id: str
    status: str  # "completed", "failed", "cancelled"
    outputs: Dict[str, Any] = field(default_factory=dict)
    named_outputs: Dict[str, Any] = field(default_factory=dict)
    artifacts: List[Artifact] = field(default_factory=list)
    duration: float = 0.0  # milliseconds
    errors: List[ExecutionError] = field(default_factory=list)
    stats: ExecutionStats = field(default_factory=ExecutionStats)
    step_statuses: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "status": self.status,
            "outputs": self.outputs,
            "named_outputs": self.named_outputs,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "duration": self.duration,
            "errors": [e.to_dict() for e in self.errors],
            "stats": self.stats.to_dict(),
            "step_statuses": self.step_statuses,
        }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def placeholder_asset() -> Dict[str, Any]:
    """Cheap stand-in returned while an image provider's circuit is open."""
    return {
        "id": str(uuid.uuid4()),
        "src": "/placeholder.svg",
        "type": "image",
        "name": "fallback.png",
        "created_at": time.time(),
        "category": "fallback",
    }


def is_fallback(value: Any) -> bool:
    return isinstance(value, dict) and value.get("category") == "fallback"


def model_version_of(inputs: Dict[str, Any]) -> Optional[str]:
    for key in ("model_version", "version", "model"):
        value = inputs.get(key)
        if value is not None:
            return str(value)
    return None


class PipelineExecutor:
    """
    Plan execution engine.

    Owns (or shares, when passed in) the artifact cache, structured log
    buffer and circuit breaker. Instances are independent: construct one
    per application or per test.
    """

    def __init__(
        self,
        registry,
        config: Optional[EngineConfig] = None,
        cache: Optional[ArtifactCache] = None,
        log_buffer: Optional[LogBuffer] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        skip_condition: Optional[SkipCondition] = None,
    ):
        """
        Args:
            registry: ProviderRegistry resolving provider operations
            config: Engine tunables (defaults if omitted)
            cache: Shared artifact cache
            log_buffer: Shared structured log buffer
            circuit_breaker: Shared circuit breaker
            sleep: Awaitable sleep(seconds) used for backoff
            skip_condition: Hook deciding whether a step is skipped
        """
        self.registry = registry
        self.config = config or EngineConfig()
        self.cache = cache if cache is not None else ArtifactCache(self.config.max_cache_size)
        self.log_buffer = log_buffer if log_buffer is not None else LogBuffer(self.config.max_log_entries)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self.config.circuit_failure_threshold,
            retry_after=self.config.circuit_retry_after,
        )
        self.skip_condition = skip_condition
        self._sleep = sleep or asyncio.sleep
        self.active_executions: Dict[str, ExecutionContext] = {}

    # Running plans

    async def run_recipe(
        self,
        recipe: Recipe,
        inputs: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """
        Validate, plan and execute a recipe.

        Recipe input defaults fill missing inputs.

        Raises:
            RecipeValidationError: before anything executes
        """
        plan = RecipePlanner(self.registry, self.config).plan(recipe)

        values = {i.id: i.default for i in recipe.inputs if i.default is not None}
        values.update(inputs or {})
        missing = [i.id for i in recipe.inputs if i.required and i.id not in values]
        if missing:
            raise RecipeValidationError(f"Missing required inputs: {', '.join(missing)}")

        return await self.execute_plan(plan, values, options)

    async def execute_plan(
        self,
        plan: Plan,
        inputs: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """
        Execute a plan and return the result.

        Args:
            plan: The plan to execute
            inputs: Caller inputs, available as $input.<name>
            options: Per-run options (draft mode)

        Returns:
            ExecutionResult; never raises
        """
        start_time = time.time()
        context = self._create_context(plan, inputs, options)
        self.active_executions[plan.id] = context
        status = COMPLETED
        logger.info(f"Executing plan {plan.id} ({len(plan.steps)} steps)")

        try:
            for batch in plan.dependencies.execution_order:
                if context.cancelled:
                    status = CANCELLED
                    break
                failures = await self.execute_batch(batch, plan, context)
                if failures:
                    status = FAILED
                    break

            if status == COMPLETED and context.cancelled:
                status = CANCELLED

        except Exception as e:
            logger.exception(f"Pipeline execution failed: {plan.id}")
            status = FAILED
            context.progress.errors.append(ExecutionError(
                step_id=context.current_step or "unknown",
                message=str(e) or type(e).__name__,
            ))

        finally:
            if self.active_executions.get(plan.id) is context:
                del self.active_executions[plan.id]
            self._cancel_unscheduled(plan)

        named_outputs = {}
        if status == COMPLETED:
            named_outputs, output_errors = self._collect_named_outputs(plan, context)
            if output_errors:
                status = FAILED
                context.progress.errors.extend(output_errors)

        result = ExecutionResult(
            plan_id=plan.id,
            status=status,
            outputs={step_id: a.value for step_id, a in context.artifacts.items()},
            named_outputs=named_outputs,
            artifacts=list(context.artifacts.values()),
            duration=(time.time() - start_time) * 1000,
            errors=list(context.progress.errors),
            stats=self._calculate_stats(plan, context),
            step_statuses={s.id: s.status.value for s in plan.steps},
        )
        logger.info(f"Plan {plan.id} {status} in {result.duration:.0f}ms")
        return result

    def _create_context(self, plan: Plan, inputs, options) -> ExecutionContext:
        for step in plan.steps:
            step.reset()

        draft = None
        if options is not None and options.draft:
            draft = options.draft if isinstance(options.draft, DraftOptions) else self.config.draft

        return ExecutionContext(
            plan_id=plan.id,
            progress=ExecutionProgress(total_steps=len(plan.steps)),
            variables=dict(inputs or {}),
            draft_options=draft,
        )

    async def execute_batch(
        self,
        step_ids: List[str],
        plan: Plan,
        context: ExecutionContext,
    ) -> List[StepExecutionError]:
        """
        Run all steps of a batch concurrently and wait for every one to settle.

        Returns:
            Terminal step failures (empty if the whole batch succeeded)
        """
        steps = []
        for step_id in step_ids:
            step = plan.get_step(step_id)
            if step is None:
                raise KeyError(f"Batch references unknown step {step_id}")
            steps.append(step)

        results = await asyncio.gather(
            *(self.execute_step(step, context) for step in steps),
            return_exceptions=True,
        )

        failures = []
        for outcome in results:
            if isinstance(outcome, StepExecutionError):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
        return failures

    async def execute_step(self, step: ExecutableStep, context: ExecutionContext) -> Optional[Artifact]:
        """
        Execute one step.

        Returns:
            The step's artifact, or None if skipped

        Raises:
            StepExecutionError: the step failed terminally
        """
        context.current_step = step.id
        context.progress.current_step_id = step.id

        if self._should_skip(step, context):
            step.set_status(StepStatus.SKIPPED)
            self._emit(context, step, StepStatus.SKIPPED, 0.0)
            return None

        started = time.monotonic()
        inputs: Dict[str, Any] = {}
        try:
            resolved = resolve_references(step.resolved_inputs, context)
            inputs = apply_draft_overrides(step.provider, resolved, context.draft_options)
            cache_key = self.get_cache_key(step, inputs)
            use_cache = self.config.cache_enabled and step.cache

            if use_cache:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    return self._complete_from_cache(step, context, cached, inputs)

            step.set_status(StepStatus.RUNNING)
            result = await self.execute_with_retry(step, inputs, context)

        except Exception as e:
            self._fail_step(step, context, e, (time.monotonic() - started) * 1000, inputs)
            raise StepExecutionError(context.progress.errors[-1], e) from e

        metadata = {
            "provider_used": step.provider,
            "timestamp": _now_iso(),
            "cache_hit": False,
        }
        if inputs.get("model") is not None:
            metadata["model_used"] = inputs["model"]
        if isinstance(result, dict) and isinstance(result.get("cost"), (int, float)):
            metadata["cost"] = result["cost"]

        artifact = Artifact(
            id=step.id,
            step_id=step.id,
            value=result,
            type=infer_artifact_type(result),
            metadata=metadata,
        )
        context.add_artifact(artifact)
        step.set_status(StepStatus.COMPLETED)
        context.progress.completed_steps += 1

        if use_cache and not is_fallback(result):
            self.cache.put(cache_key, artifact, provider=step.provider)

        self._emit(
            context, step, StepStatus.COMPLETED, (time.monotonic() - started) * 1000,
            model_used=inputs.get("model"), cache_hit=False,
        )
        return artifact

    def _complete_from_cache(self, step, context, cached: Artifact, inputs) -> Artifact:
        artifact = cached.copy_for(step.id, cache_hit=True, timestamp=_now_iso())
        context.add_artifact(artifact)
        step.set_status(StepStatus.COMPLETED)
        context.progress.completed_steps += 1
        context.cache_hits += 1
        logger.debug(f"Step {step.id} served from cache")
        self._emit(
            context, step, StepStatus.COMPLETED, 0.0,
            model_used=inputs.get("model"), cache_hit=True,
        )
        return artifact

    def _fail_step(self, step, context, error: BaseException, duration_ms: float, inputs) -> None:
        if not step.status.is_terminal:
            step.set_status(StepStatus.FAILED)
        message = str(error) or type(error).__name__
        context.progress.errors.append(ExecutionError(
            step_id=step.id,
            message=message,
            retryable=False,
            retry_count=step.retry_count,
        ))
        logger.error(f"Step {step.id} failed after {step.retry_count + 1} attempt(s): {message}")
        self._emit(
            context, step, StepStatus.FAILED, duration_ms,
            model_used=inputs.get("model"), error=message,
        )

    async def execute_with_retry(
        self,
        step: ExecutableStep,
        inputs: Dict[str, Any],
        context: Optional[ExecutionContext] = None,
    ) -> Any:
        """
        Invoke the step's provider operation, retrying failures.

        Attempts 0..max_retries, sleeping min(base * 2^attempt, max) ms
        between failed attempts. Permanent errors are not retried.

        Raises:
            The last error once all attempts are spent
        """
        key = f"{step.provider}-{step.operation}"
        fallback = placeholder_asset if step.category in FALLBACK_CATEGORIES else None
        last_error: Optional[BaseException] = None

        for attempt in range(step.max_retries + 1):
            step.retry_count = attempt

            op = self.registry.get_operation(step.provider, step.operation)
            if op is None:
                if self.registry.has(step.provider):
                    raise ProviderNotFoundError(step.provider, step.operation)
                raise ProviderNotFoundError(step.provider)

            async def primary(op=op):
                # Counted only when the breaker lets the call through
                if context is not None:
                    usage = context.provider_usage
                    usage[step.provider] = usage.get(step.provider, 0) + 1
                return await self._invoke(step, op, inputs)

            try:
                return await self.circuit_breaker.execute(key, primary, fallback)
            except Exception as e:
                last_error = e
                if not is_retryable(e):
                    raise
                if attempt < step.max_retries:
                    delay_ms = self.config.backoff_delay_ms(attempt)
                    logger.warning(
                        f"Step {step.id} attempt {attempt + 1}/{step.max_retries + 1} failed: {e}; "
                        f"retrying in {delay_ms}ms"
                    )
                    await self._sleep(delay_ms / 1000)

        raise last_error

    async def _invoke(self, step: ExecutableStep, op, inputs: Dict[str, Any]) -> Any:
        # Providers get their own copy
        call = self._call_operation(op, dict(inputs))
        if step.timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=step.timeout / 1000)
        except asyncio.TimeoutError:
            raise StepTimeoutError(step.id, step.timeout) from None

    @staticmethod
    async def _call_operation(op, inputs: Dict[str, Any]) -> Any:
        """
        Run a provider operation without blocking the event loop.

        Coroutine functions are awaited directly. Anything else runs in a
        worker thread so sibling steps keep going; a timed-out thread is
        abandoned, not interrupted.
        """
        if inspect.iscoroutinefunction(op):
            return await op(inputs)
        result = await asyncio.to_thread(op, inputs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _should_skip(self, step: ExecutableStep, context: ExecutionContext) -> bool:
        if self.skip_condition is None:
            return False
        return bool(self.skip_condition(step, context))

    def get_cache_key(self, step: ExecutableStep, inputs: Dict[str, Any]) -> str:
        """Cache key from provider, operation, model version, seed and inputs."""
        return compute_cache_key(
            provider=step.provider,
            operation=step.operation,
            inputs=inputs,
            model_version=model_version_of(inputs),
            seed=inputs.get("seed"),
        )

    def _cancel_unscheduled(self, plan: Plan) -> None:
        for step in plan.steps:
            if not step.status.is_terminal:
                step.set_status(StepStatus.CANCELLED)

    def _collect_named_outputs(self, plan: Plan, context: ExecutionContext):
        outputs: Dict[str, Any] = {}
        errors: List[ExecutionError] = []
        for output_id, source in plan.outputs.items():
            try:
                outputs[output_id] = resolve_reference(source, context)
            except Exception as e:
                errors.append(ExecutionError(step_id=f"output:{output_id}", message=str(e)))
        return outputs, errors

    def _calculate_stats(self, plan: Plan, context: ExecutionContext) -> ExecutionStats:
        counts = {status: 0 for status in StepStatus}
        for step in plan.steps:
            counts[step.status] += 1

        costs = [a.metadata["cost"] for a in context.artifacts.values() if "cost" in a.metadata]
        return ExecutionStats(
            total_steps=len(plan.steps),
            successful_steps=counts[StepStatus.COMPLETED],
            failed_steps=counts[StepStatus.FAILED],
            skipped_steps=counts[StepStatus.SKIPPED],
            cancelled_steps=counts[StepStatus.CANCELLED],
            cache_hits=context.cache_hits,
            provider_usage=dict(context.provider_usage),
            total_cost=sum(costs) if costs else None,
        )

    def _emit(
        self,
        context: ExecutionContext,
        step: ExecutableStep,
        status: StepStatus,
        duration_ms: float,
        model_used: Optional[str] = None,
        cache_hit: Optional[bool] = None,
        error: Optional[str] = None,
    ) -> None:
        artifacts = None
        if step.id in context.artifacts:
            artifacts = {step.id: context.artifacts[step.id].id}
        self.log_buffer.append(StructuredLog(
            trace=f"{context.plan_id}:{step.id}",
            op=step.operation,
            adapter=step.provider,
            model_used=model_used,
            duration_ms=round(duration_ms, 3),
            status=status.value,
            artifacts=artifacts,
            cache_hit=cache_hit,
            error=error,
        ))

    # External control

    def cancel_execution(self, plan_id: str) -> bool:
        """
        Request cancellation of a running plan.

        In-flight provider calls are not interrupted; no further batch is
        started once the current one settles.
        """
        context = self.active_executions.pop(plan_id, None)
        if context is None:
            return False
        context.cancelled = True
        logger.info(f"Cancellation requested for plan {plan_id}")
        return True

    def get_execution_progress(self, plan_id: str) -> Optional[ExecutionProgress]:
        context = self.active_executions.get(plan_id)
        return context.progress if context else None

    def get_all_active_executions(self) -> List[str]:
        return list(self.active_executions)

    def get_structured_logs(self, plan_id: Optional[str] = None) -> List[StructuredLog]:
        """Structured log records, optionally only those of one plan."""
        return self.log_buffer.records(prefix=plan_id)

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self):
        self.cache.clear()
