# ollama_assistant/core/resilience.py
"""
ResilienceCoordinator - retries, circuit breaking and recovery strategies.

execute(operation, context, endpoint=..., cancel_token=..., max_retries=...)
  - refuses with CircuitOpen (the operation is never called) while the
    endpoint's breaker is open
  - retries transient failures with exponential backoff:
        delay(attempt) = min(base_delay * multiplier ** attempt, max_delay)
  - permanent/throttled failures are raised at once and do not count
    against the breaker
  - backoff waits on the cancellation token, so cancelling interrupts it

handle_failure(exc, context) -> bool
  Looks up a RecoveryStrategy by exception type (walking the MRO) and runs
  its fallback. Unknown exception types are not recoverable.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type, TypeVar

from ollama_assistant.core.errors import (
    CircuitOpen,
    ConnectionRefused,
    ContextUnavailable,
    ErrorKind,
    MalformedResponse,
    OperationCancelled,
    SuggestionProcessingError,
    Throttled,
    TransientError,
    Unavailable,
    classify,
)
from ollama_assistant.core.models import CircuitState, HealthStatus, RecoveryStrategy
from ollama_assistant.utils.cancellation import CancellationToken
from ollama_assistant.utils.config_manager import AssistantConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ENDPOINT = "default"


# Circuit breaker ------------------------------------------------------------------

class CircuitBreaker:
    """
    Per-endpoint breaker.

    CLOSED    -> OPEN after `failure_threshold` consecutive failures
    OPEN      -> HALF_OPEN once `timeout` seconds have passed since opening
    HALF_OPEN -> exactly one trial request; success closes, failure reopens
    """

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic,
                 on_state_change: Optional[Callable[[CircuitState, CircuitState], None]] = None):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.timeout = max(0.0, float(timeout))
        self._clock = clock
        self.on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

        self._total_calls = 0
        self._total_failures = 0
        self._total_rejections = 0

        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open_locked()
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    def retry_after(self) -> float:
        """Seconds until an open breaker admits its trial request (0 when not open)."""
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return 0.0
            return max(0.0, self.timeout - (self._clock() - self._opened_at))

    def allow_request(self) -> bool:
        with self._lock:
            self._maybe_half_open_locked()
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            self._total_rejections += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self._total_calls += 1
            self._failures = 0
            self._trial_in_flight = False
            if self._state is not CircuitState.CLOSED:
                self._transition_locked(CircuitState.CLOSED)

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self._total_calls += 1
            self._total_failures += 1
            self._failures += 1
            self._trial_in_flight = False
            if error is not None:
                logger.debug("[breaker:%s] failure %d: %s", self.name, self._failures, error)
            if self._state is CircuitState.HALF_OPEN:
                self._open_locked()
            elif self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._open_locked()

    def configure(self, failure_threshold: int, timeout: float) -> None:
        with self._lock:
            self.failure_threshold = max(1, int(failure_threshold))
            self.timeout = max(0.0, float(timeout))

    def release(self) -> None:
        """A call ended without a verdict on endpoint health (cancelled, permanent error)."""
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_in_flight = False
            if self._state is not CircuitState.CLOSED:
                self._transition_locked(CircuitState.CLOSED)

    def get_metrics(self) -> Dict[str, object]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "consecutive_failures": self._failures,
                "total_calls": self._total_calls,
                "total_failures": self._total_failures,
                "total_rejections": self._total_rejections,
            }

    # internals
    def _maybe_half_open_locked(self) -> None:
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.timeout:
            self._trial_in_flight = False
            self._transition_locked(CircuitState.HALF_OPEN)

    def _open_locked(self) -> None:
        self._opened_at = self._clock()
        if self._state is not CircuitState.OPEN:
            self._transition_locked(CircuitState.OPEN)

    def _transition_locked(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state is CircuitState.OPEN:
            logger.warning("[breaker:%s] %s -> %s after %d failures",
                           self.name, old_state.value, new_state.value, self._failures)
        else:
            logger.info("[breaker:%s] %s -> %s", self.name, old_state.value, new_state.value)
        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                logger.debug("[breaker:%s] state callback failed: %s", self.name, e)


# Retry policy ---------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0    # seconds
    max_delay: float = 10.0
    multiplier: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Backoff before retry number attempt+1 (attempt is 0-based)."""
        return min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        return attempt < self.max_retries and classify(error) is ErrorKind.TRANSIENT

    @classmethod
    def from_config(cls, config: AssistantConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retry_attempts,
            base_delay=config.base_retry_delay_ms / 1000.0,
            max_delay=config.max_retry_delay_ms / 1000.0,
            multiplier=config.retry_backoff_multiplier,
        )


# Coordinator ----------------------------------------------------------------------

@dataclass
class _EndpointStats:
    last_response_ms: float = 0.0
    last_error: Optional[str] = None
    last_ok: bool = True


def _log_and_continue(message: str) -> Callable[[BaseException, str], bool]:
    def _fallback(exc: BaseException, context: str) -> bool:
        logger.info("%s (%s): %s", message, context or "-", exc)
        return True
    return _fallback


DEFAULT_STRATEGIES = (
    RecoveryStrategy(ContextUnavailable, max_retries=2, base_delay=0.5,
                     fallback_action=_log_and_continue("context capture failed, continuing without context")),
    RecoveryStrategy(Unavailable, max_retries=0,
                     fallback_action=_log_and_continue("editor API unavailable, degrading")),
    RecoveryStrategy(ConnectionRefused, max_retries=1, base_delay=2.0,
                     fallback_action=_log_and_continue("model server unreachable, operating offline")),
    RecoveryStrategy(MalformedResponse, max_retries=0,
                     fallback_action=_log_and_continue("model returned an unusable response, skipping")),
    RecoveryStrategy(SuggestionProcessingError, max_retries=0,
                     fallback_action=_log_and_continue("suggestion processing failed, skipping")),
    RecoveryStrategy(Throttled, max_retries=0,
                     fallback_action=_log_and_continue("model server busy or circuit open, skipping")),
    RecoveryStrategy(TransientError, max_retries=0,
                     fallback_action=_log_and_continue("model server kept failing, no suggestion")),
)


class ResilienceCoordinator:
    """Shared across the pipeline; all state is guarded by one lock."""

    def __init__(self,
                 config: Optional[AssistantConfig] = None,
                 *,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep,
                 retry_policy: Optional[RetryPolicy] = None):
        self.config = config or AssistantConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self._clock = clock
        self._sleep = sleep
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._stats: Dict[str, _EndpointStats] = {}
        self._strategies: Dict[Type[BaseException], RecoveryStrategy] = {}
        self._lock = threading.Lock()
        for strategy in DEFAULT_STRATEGIES:
            self.register_strategy(strategy)

    def reconfigure(self, config: AssistantConfig) -> None:
        """Adopt a new config snapshot; breaker state survives, thresholds follow the config."""
        with self._lock:
            self.config = config
            self.retry_policy = RetryPolicy.from_config(config)
            breakers = list(self._breakers.values())
        for br in breakers:
            br.configure(config.circuit_breaker_threshold, config.circuit_breaker_timeout)

    # breakers / stats
    def breaker(self, endpoint: str = DEFAULT_ENDPOINT) -> CircuitBreaker:
        with self._lock:
            br = self._breakers.get(endpoint)
            if br is None:
                br = CircuitBreaker(endpoint,
                                    failure_threshold=self.config.circuit_breaker_threshold,
                                    timeout=self.config.circuit_breaker_timeout,
                                    clock=self._clock)
                self._breakers[endpoint] = br
            return br

    def _stats_for(self, endpoint: str) -> _EndpointStats:
        with self._lock:
            return self._stats.setdefault(endpoint, _EndpointStats())

    def record_response_time(self, endpoint: str, ms: float) -> None:
        stats = self._stats_for(endpoint)
        with self._lock:
            stats.last_response_ms = float(ms)
            stats.last_ok = True
            stats.last_error = None

    def _record_error(self, endpoint: str, exc: BaseException) -> None:
        stats = self._stats_for(endpoint)
        with self._lock:
            stats.last_ok = False
            stats.last_error = str(exc) or type(exc).__name__

    def health(self, endpoint: str = DEFAULT_ENDPOINT) -> HealthStatus:
        """Health as observed from real traffic (no probe is sent)."""
        br = self.breaker(endpoint)
        state = br.state
        stats = self._stats_for(endpoint)
        with self._lock:
            ok, ms, err = stats.last_ok, stats.last_response_ms, stats.last_error
        return HealthStatus(
            is_available=ok and state is not CircuitState.OPEN,
            response_time_ms=ms,
            consecutive_failures=br.consecutive_failures,
            circuit_state=state,
            error=err,
        )

    def reset(self, endpoint: Optional[str] = None) -> None:
        with self._lock:
            targets = list(self._breakers.values()) if endpoint is None else [self._breakers.get(endpoint)]
            if endpoint is None:
                self._stats.clear()
            else:
                self._stats.pop(endpoint, None)
        for br in targets:
            if br is not None:
                br.reset()

    # execute
    def execute(self,
                operation: Callable[[], T],
                context: str = "",
                *,
                endpoint: str = DEFAULT_ENDPOINT,
                cancel_token: Optional[CancellationToken] = None,
                max_retries: Optional[int] = None) -> T:
        token = cancel_token or CancellationToken()
        policy = self.retry_policy
        if max_retries is not None:
            policy = dataclasses.replace(policy, max_retries=max(0, int(max_retries)))
        br = self.breaker(endpoint)
        label = context or endpoint

        attempt = 0
        while True:
            token.raise_if_cancelled()
            if not br.allow_request():
                raise CircuitOpen(f"circuit for {endpoint} is open", retry_after=br.retry_after())

            started = time.perf_counter()
            try:
                result = operation()
            except Exception as exc:
                kind = classify(exc)
                if kind is ErrorKind.CANCELLED or token.cancelled:
                    br.release()
                    if isinstance(exc, OperationCancelled):
                        raise
                    raise OperationCancelled(f"{label} cancelled") from exc
                if kind is not ErrorKind.TRANSIENT:
                    br.release()
                    if kind is not ErrorKind.THROTTLED:
                        self._record_error(endpoint, exc)
                    raise

                br.record_failure(exc)
                self._record_error(endpoint, exc)
                if not policy.should_retry(attempt, exc):
                    logger.warning("%s failed after %d attempt(s): %s", label, attempt + 1, exc)
                    raise
                delay = policy.get_delay(attempt)
                logger.debug("%s attempt %d failed (%s), retrying in %.2fs", label, attempt + 1, exc, delay)
                if token.wait(delay):
                    raise OperationCancelled(f"{label} cancelled during backoff") from exc
                attempt += 1
                continue

            br.record_success()
            self.record_response_time(endpoint, (time.perf_counter() - started) * 1000.0)
            return result

    # recovery strategies
    def register_strategy(self, strategy: RecoveryStrategy) -> None:
        with self._lock:
            self._strategies[strategy.exception_kind] = strategy

    def strategy_for(self, exc: BaseException) -> Optional[RecoveryStrategy]:
        with self._lock:
            for cls in type(exc).__mro__:
                strategy = self._strategies.get(cls)
                if strategy is not None:
                    return strategy
        return None

    def handle_failure(self, exc: Optional[BaseException], context: str = "") -> bool:
        """True when the caller may carry on (degraded), False when the failure is fatal."""
        if exc is None:
            return True
        strategy = self.strategy_for(exc)
        if strategy is None:
            logger.error("no recovery for %s in %s: %s", type(exc).__name__, context or "-", exc)
            return False
        if strategy.fallback_action is None:
            return True

        for attempt in range(strategy.max_retries + 1):
            if attempt > 0:
                self._sleep(strategy.base_delay * (strategy.backoff_multiplier ** (attempt - 1)))
            try:
                if strategy.fallback_action(exc, context):
                    return True
            except Exception as e:
                logger.warning("recovery for %s failed (attempt %d): %s", type(exc).__name__, attempt + 1, e)
        logger.error("recovery exhausted for %s in %s", type(exc).__name__, context or "-")
        return False
