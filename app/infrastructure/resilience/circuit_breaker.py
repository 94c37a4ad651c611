"""Circuit breaker guarding asynchronous delivery providers.

The circuit breaker pattern prevents cascading failures by:
1. CLOSED state: Normal operation, calls pass through
2. OPEN state: Fast-fail calls without invoking the provider
3. HALF_OPEN state: Let a single trial call through to test recovery

State transitions:
- CLOSED -> OPEN: After failure_threshold consecutive failures
- OPEN -> HALF_OPEN: After reset_timeout_seconds have elapsed since opening
- HALF_OPEN -> CLOSED: After a successful trial
- HALF_OPEN -> OPEN: If the trial fails

Each wrapped call runs under call_timeout_seconds; a call that exceeds it is
abandoned and counted as a failure. A failure count that has seen no new
failure for monitoring_interval_seconds is cleared on the next call, so an
old failure never counts toward a future threshold.

State is guarded by a per-breaker lock that is never held across an await:
the wrapped call itself runs outside the lock.
"""

import asyncio
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from infrastructure.logging import get_module_logger

logger = get_module_logger()


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls immediately
    HALF_OPEN = "half-open"  # Testing recovery


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""

    error_code = "CIRCUIT_OPEN"

    def __init__(self, name: str, retry_in_seconds: Optional[float] = None):
        self.name = name
        self.retry_in_seconds = retry_in_seconds
        message = f"Circuit breaker '{name}' is OPEN"
        if retry_in_seconds is not None:
            message += f". Retry in {int(retry_in_seconds)} seconds."
        super().__init__(message)


class CircuitBreakerTimeoutError(Exception):
    """Raised when a wrapped call exceeds the breaker's call timeout."""

    error_code = "PROVIDER_TIMEOUT"

    def __init__(self, name: str, timeout_seconds: float):
        self.name = name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Call through circuit breaker '{name}' timed out after {timeout_seconds}s"
        )


class DeliveryCircuitBreaker:
    """Circuit breaker for asynchronous provider operations.

    Args:
        name: Name of the circuit (one per logical downstream, e.g. "email-service")
        failure_threshold: Number of consecutive failures before opening
        reset_timeout_seconds: Seconds to stay OPEN before allowing a trial
        call_timeout_seconds: Deadline for a single wrapped call
        monitoring_interval_seconds: Quiet period after which stale failures are cleared
        clock: Monotonic clock used for elapsed-time arithmetic
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 60.0,
        call_timeout_seconds: float = 10.0,
        monitoring_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.call_timeout_seconds = call_timeout_seconds
        self.monitoring_interval_seconds = monitoring_interval_seconds
        self._clock = clock

        # State management
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

        # Wall-clock timestamps for observability
        self._last_failure_time: Optional[datetime] = None
        self._last_transition_time: datetime = datetime.now(timezone.utc)

        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        """Get the current consecutive failure count."""
        with self._lock:
            return self._failure_count

    async def call(
        self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        """Execute an async callable through the circuit breaker.

        Args:
            func: Coroutine function to call
            *args, **kwargs: Arguments to pass to func

        Returns:
            Result from func

        Raises:
            CircuitBreakerOpenError: If the circuit is open (func is not invoked)
            CircuitBreakerTimeoutError: If func exceeds call_timeout_seconds
            Exception: Any exception raised by func
        """
        is_trial = self._admit()

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs), timeout=self.call_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            timeout_error = CircuitBreakerTimeoutError(
                self.name, self.call_timeout_seconds
            )
            self._on_failure(timeout_error, is_trial)
            raise timeout_error from exc
        except Exception as exc:
            self._on_failure(exc, is_trial)
            raise
        except asyncio.CancelledError:
            # Cancelled by the caller: not a provider failure, but a trial
            # slot must be released so the breaker cannot wedge in HALF_OPEN.
            if is_trial:
                with self._lock:
                    self._trial_in_flight = False
            raise

        self._on_success(is_trial)
        return result

    def _admit(self) -> bool:
        """Decide whether a call may proceed.

        Returns:
            True if the admitted call is the HALF_OPEN trial.

        Raises:
            CircuitBreakerOpenError: If the call must fail fast.
        """
        with self._lock:
            now = self._clock()
            self._clear_stale_failures(now)

            if self._state == CircuitState.OPEN:
                opened_at = self._opened_at if self._opened_at is not None else now
                elapsed = now - opened_at
                if elapsed < self.reset_timeout_seconds:
                    remaining = self.reset_timeout_seconds - elapsed
                    logger.warning(
                        "circuit_breaker_open",
                        name=self.name,
                        failure_count=self._failure_count,
                        retry_in_seconds=int(remaining),
                    )
                    raise CircuitBreakerOpenError(self.name, remaining)
                self._transition_to_half_open()

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    logger.debug("circuit_breaker_trial_in_flight", name=self.name)
                    raise CircuitBreakerOpenError(self.name)
                self._trial_in_flight = True
                return True

            return False

    def _clear_stale_failures(self, now: float) -> None:
        """Clear a CLOSED failure count that has gone quiet."""
        if (
            self._state == CircuitState.CLOSED
            and self._failure_count > 0
            and self._last_failure_at is not None
            and now - self._last_failure_at >= self.monitoring_interval_seconds
        ):
            logger.debug(
                "circuit_breaker_stale_failures_cleared",
                name=self.name,
                previous_failures=self._failure_count,
            )
            self._failure_count = 0

    def _on_success(self, is_trial: bool) -> None:
        """Handle a successful call."""
        with self._lock:
            if is_trial:
                self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                # Only the trial decides; a stale call admitted while CLOSED
                # says nothing about recovery.
                if not is_trial:
                    return
                logger.info("circuit_breaker_trial_succeeded", name=self.name)
                self._transition_to_closed()
            elif self._state == CircuitState.CLOSED and self._failure_count > 0:
                logger.debug(
                    "circuit_breaker_failure_count_reset",
                    name=self.name,
                    previous_failures=self._failure_count,
                )
                self._failure_count = 0

    def _on_failure(self, exception: BaseException, is_trial: bool) -> None:
        """Handle a failed call."""
        with self._lock:
            now = self._clock()
            if is_trial:
                self._trial_in_flight = False
            self._last_failure_at = now
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                if not is_trial:
                    return
                self._failure_count += 1
                logger.warning(
                    "circuit_breaker_recovery_failed",
                    name=self.name,
                    error=str(exception),
                )
                self._transition_to_open(now)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.failure_threshold:
                    logger.error(
                        "circuit_breaker_threshold_exceeded",
                        name=self.name,
                        failure_count=self._failure_count,
                        threshold=self.failure_threshold,
                        error=str(exception),
                    )
                    self._transition_to_open(now)
                else:
                    logger.warning(
                        "circuit_breaker_failure",
                        name=self.name,
                        failure_count=self._failure_count,
                        threshold=self.failure_threshold,
                        error=str(exception),
                    )
            # A late failure from a call admitted before the circuit opened
            # leaves an already OPEN circuit untouched.

    def _transition_to_closed(self) -> None:
        logger.info("circuit_breaker_closed", name=self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False
        self._last_transition_time = datetime.now(timezone.utc)

    def _transition_to_open(self, now: float) -> None:
        logger.error(
            "circuit_breaker_opened",
            name=self.name,
            reset_timeout_seconds=self.reset_timeout_seconds,
        )
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        self._last_transition_time = datetime.now(timezone.utc)

    def _transition_to_half_open(self) -> None:
        logger.info("circuit_breaker_half_open", name=self.name)
        self._state = CircuitState.HALF_OPEN
        self._trial_in_flight = False
        self._last_transition_time = datetime.now(timezone.utc)

    def get_stats(self) -> Dict[str, Any]:
        """Get circuit breaker statistics (read-only snapshot)."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "last_failure_time": (
                    self._last_failure_time.isoformat()
                    if self._last_failure_time
                    else None
                ),
                "last_transition_time": self._last_transition_time.isoformat(),
                "trial_in_flight": self._trial_in_flight,
            }

    def reset(self) -> None:
        """Manually reset circuit breaker (for testing/admin operations)."""
        with self._lock:
            logger.info("circuit_breaker_manual_reset", name=self.name)
            self._transition_to_closed()
            self._last_failure_at = None
            self._last_failure_time = None


# Global registry for monitoring
_circuit_breaker_registry: Dict[str, DeliveryCircuitBreaker] = {}
_registry_lock = threading.Lock()


def register_circuit_breaker(cb: DeliveryCircuitBreaker) -> None:
    """Register a circuit breaker for monitoring."""
    with _registry_lock:
        _circuit_breaker_registry[cb.name] = cb


def get_or_create_circuit_breaker(name: str, **kwargs: Any) -> DeliveryCircuitBreaker:
    """Get the breaker registered under name, creating it on first use.

    Keyword arguments only apply when the breaker is created.
    """
    with _registry_lock:
        cb = _circuit_breaker_registry.get(name)
        if cb is None:
            cb = DeliveryCircuitBreaker(name, **kwargs)
            _circuit_breaker_registry[name] = cb
        return cb


def get_circuit_breaker(name: str) -> Optional[DeliveryCircuitBreaker]:
    """Get a circuit breaker by name."""
    return _circuit_breaker_registry.get(name)


def get_all_circuit_breaker_stats() -> Dict[str, Dict[str, Any]]:
    """Get statistics for all circuit breakers."""
    return {name: cb.get_stats() for name, cb in list(_circuit_breaker_registry.items())}


def get_open_circuit_breakers() -> List[str]:
    """Get list of circuit breakers that are currently OPEN."""
    return [
        name
        for name, cb in list(_circuit_breaker_registry.items())
        if cb.state == CircuitState.OPEN
    ]


def clear_circuit_breakers() -> None:
    """Remove every registered breaker.

    WARNING: This is intended for testing only.
    """
    with _registry_lock:
        _circuit_breaker_registry.clear()
