"""
CircuitBreaker - Stops calling a failing upstream for a cooldown period.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Upstream is failing, requests are blocked
- HALF_OPEN: Cooldown elapsed, trial requests allowed

Transitions:
- CLOSED → OPEN: When consecutive failures reach failure_threshold
- OPEN → HALF_OPEN: Lazily, on the first allow_request() after open_duration
- HALF_OPEN → CLOSED: On successful request
- HALF_OPEN → OPEN: On failed request

Concurrent callers may both observe HALF_OPEN and both go through; a failed trial
simply reopens the circuit.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 3  # Consecutive failures before opening
    open_duration: float = 30.0  # Seconds before half-open


class CircuitBreaker:
    """
    Circuit breaker for a single upstream target.

    Usage:
        cb = CircuitBreaker("upstream")

        if not cb.allow_request():
            return fallback()

        try:
            result = await make_request()
        except ServiceError:
            cb.record_failure()
            return fallback()
        cb.record_success()
        return result
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at: float | None = None

    @property
    def state(self) -> CircuitState:
        """Current state, without triggering the lazy OPEN → HALF_OPEN check."""
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_failure_at(self) -> float | None:
        return self._last_failure_at

    def allow_request(self) -> bool:
        """Check if a request may be sent upstream."""
        if self._state != CircuitState.OPEN:
            return True

        if self._cooldown_elapsed():
            self._state = CircuitState.HALF_OPEN
            logger.info(
                f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
            )
            return True

        return False

    def record_success(self) -> None:
        """Record a successful request."""
        previous = self._state
        self._consecutive_failures = 0
        self._state = CircuitState.CLOSED
        if previous != CircuitState.CLOSED:
            logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def record_failure(self) -> None:
        """Record a failed request."""
        self._consecutive_failures += 1
        self._last_failure_at = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after "
            f"{self._consecutive_failures} failures"
        )

    def _cooldown_elapsed(self) -> bool:
        if self._last_failure_at is None:
            return True
        return self._clock() - self._last_failure_at >= self.config.open_duration

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or self._last_failure_at is None:
            return None

        elapsed = self._clock() - self._last_failure_at
        return max(0.0, self.config.open_duration - elapsed)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "failure_threshold": self.config.failure_threshold,
            "open_duration": self.config.open_duration,
            "time_until_reset": self.get_time_until_reset(),
        }
