import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum

from sadaqah_rates.monitoring.logger import get_production_logger
from sadaqah_rates.providers.base import ProviderRates


class CircuitBreakerState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerError(Exception):
    """Raised when circuit breaker is open and blocking calls"""
    def __init__(self, provider_name: str, failure_count: int, last_failure_time: datetime | None):
        self.provider_name = provider_name
        self.failure_count = failure_count
        self.last_failure_time = last_failure_time
        super().__init__(f"Circuit breaker OPEN for {provider_name} ({failure_count} failures)")


class CircuitBreaker:
    """Circuit breaker for one rate provider.

    State lives in the process, next to the aggregator that owns it. A provider
    call counts as failed when it raised, timed out, or the upstream request
    itself failed. Answering without some of the requested codes is not a failure.
    """

    def __init__(
            self,
            provider_name: str,
            failure_threshold: int = 5,
            recovery_timeout: float = 60,
            success_threshold: int = 2,
            clock: Callable[[], float] = time.monotonic
    ):
        self.provider_name = provider_name

        # Circuit breaker configuration
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.clock = clock

        self.logger = logging.getLogger(f"circuit_breaker.{provider_name}")
        self.production_logger = get_production_logger()

        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self._consecutive_successes = 0
        self._opened_at: float | None = None
        self.last_failure_time: datetime | None = None

    async def call(self, func: Callable[[], Awaitable[ProviderRates]]) -> ProviderRates:
        """Execute function with circuit breaker protection"""
        if self.state == CircuitBreakerState.OPEN:
            if self._should_attempt_reset():
                self._transition_state(CircuitBreakerState.HALF_OPEN, "attempting_recovery")
            else:
                raise CircuitBreakerError(self.provider_name, self.failure_count, self.last_failure_time)

        try:
            result = await func()
        except Exception:
            self._on_failure()
            raise

        if result.reachable:
            self._on_success()
        else:
            self._on_failure()
        return result

    def _on_success(self):
        """Handle successful API call"""
        if self.state == CircuitBreakerState.HALF_OPEN:
            self._consecutive_successes += 1

            if self._consecutive_successes >= self.success_threshold:
                self._transition_state(
                    CircuitBreakerState.CLOSED,
                    f"recovery_successful after {self._consecutive_successes} successes"
                )
            else:
                self.logger.debug(
                    f"Circuit breaker HALF_OPEN for {self.provider_name}: "
                    f"{self._consecutive_successes}/{self.success_threshold} successes"
                )

        elif self.state == CircuitBreakerState.CLOSED:
            # Reset failure count on successful call in normal operation
            self.failure_count = 0

    def _on_failure(self):
        """Handle failed API call"""
        self.last_failure_time = datetime.now(tz=UTC)

        if self.state == CircuitBreakerState.HALF_OPEN:
            self._transition_state(CircuitBreakerState.OPEN, "failure_during_recovery")
            return

        self.failure_count += 1
        if self.failure_count >= self.failure_threshold:
            self._transition_state(CircuitBreakerState.OPEN, f"{self.failure_count}_consecutive_failures")
        else:
            self.logger.warning(
                f"API failure for {self.provider_name}: {self.failure_count}/{self.failure_threshold}"
            )

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt circuit reset"""
        if self._opened_at is None:
            return True
        return self.clock() - self._opened_at >= self.recovery_timeout

    def _transition_state(self, new_state: CircuitBreakerState, reason: str):
        old_state = self.state
        self.state = new_state
        self._consecutive_successes = 0

        if new_state == CircuitBreakerState.OPEN:
            self._opened_at = self.clock()
        elif new_state == CircuitBreakerState.CLOSED:
            self.failure_count = 0
            self._opened_at = None

        self.production_logger.log_circuit_breaker_event(
            self.provider_name, old_state.value, new_state.value, self.failure_count, reason
        )

    @property
    def is_open(self) -> bool:
        return self.state == CircuitBreakerState.OPEN and not self._should_attempt_reset()

    def get_status(self) -> dict:
        """Get current circuit breaker status for monitoring"""
        return {
            "provider_name": self.provider_name,
            "state": self.state.value,
            "status": "healthy" if self.state == CircuitBreakerState.CLOSED else "unhealthy",
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "consecutive_successes": self._consecutive_successes,
            "success_threshold": self.success_threshold
        }

    def force_reset(self):
        """Manually reset circuit breaker (for admin/debugging)"""
        self._transition_state(CircuitBreakerState.CLOSED, "manual_reset")

    def force_open(self, reason: str = "manual_open"):
        """Manually open circuit breaker (for maintenance)"""
        self._transition_state(CircuitBreakerState.OPEN, reason)
