# pipedag/circuit.py
"""
Circuit breaker for provider calls.

Each key ("{provider}-{operation}") has its own state:

    CLOSED     calls go through; failures are counted
    OPEN       calls short-circuit to the fallback (or CircuitOpenError)
    HALF_OPEN  after retry_after seconds, one trial call decides;
               concurrent callers short-circuit until it settles
"""

import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitStats:
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    last_failure_time: float = 0.0
    trial_in_flight: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "last_failure_time": self.last_failure_time,
        }


async def _call(func: Callable[[], Any]) -> Any:
    result = func()
    if inspect.isawaitable(result):
        result = await result
    return result


class CircuitBreaker:
    """Per-key failure counting with fallback short-circuiting."""

    def __init__(
        self,
        failure_threshold: int = 5,
        retry_after: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.retry_after = retry_after
        self._clock = clock
        self._states: Dict[str, CircuitStats] = {}

    def _get_state(self, key: str) -> CircuitStats:
        if key not in self._states:
            self._states[key] = CircuitStats()
        return self._states[key]

    async def execute(
        self,
        key: str,
        primary: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """
        Run primary through the breaker for key.

        Args:
            key: Circuit identifier
            primary: Zero-arg callable returning the result (or an awaitable)
            fallback: Optional cheap substitute used while the circuit is open

        Raises:
            CircuitOpenError: circuit open and no fallback
            Exception: whatever primary raised, while the circuit stays closed
        """
        state = self._get_state(key)
        now = self._clock()

        if state.state is CircuitState.OPEN:
            if now - state.last_failure_time < self.retry_after:
                return await self._short_circuit(key, fallback)
            state.state = CircuitState.HALF_OPEN
        elif state.state is CircuitState.HALF_OPEN and state.trial_in_flight:
            # Only the trial call goes through until it settles
            return await self._short_circuit(key, fallback)

        trial = state.state is CircuitState.HALF_OPEN
        if trial:
            state.trial_in_flight = True
        try:
            result = await _call(primary)
        except Exception:
            state.failures += 1
            state.last_failure_time = self._clock()
            if state.state is CircuitState.HALF_OPEN or state.failures >= self.failure_threshold:
                if state.state is not CircuitState.OPEN:
                    logger.warning(f"Circuit breaker OPENING for {key} ({state.failures} failures)")
                state.state = CircuitState.OPEN

            if fallback is not None and state.state is CircuitState.OPEN:
                logger.info(f"Using fallback for {key} due to circuit breaker")
                return await _call(fallback)
            raise
        finally:
            if trial:
                state.trial_in_flight = False

        if state.state is CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker closing for {key} - service recovered")
        state.state = CircuitState.CLOSED
        state.failures = 0
        return result

    async def _short_circuit(self, key: str, fallback: Optional[Callable[[], Any]]) -> Any:
        logger.info(f"Circuit breaker OPEN for {key}, using fallback")
        if fallback is not None:
            return await _call(fallback)
        raise CircuitOpenError(key)

    def get_stats(self, key: str) -> CircuitStats:
        return self._get_state(key)

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)
