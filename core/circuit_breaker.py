"""
Circuit Breaker for Platform Adapters

Keeps one misbehaving publishing platform (outage, repeated timeouts,
sustained 5xx) from being hammered by every dispatch and queue retry.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Failing, calls are rejected immediately
- HALF_OPEN: Testing recovery, limited calls allowed

Breakers are owned by the MultiPlatformPublisher that registered the
platform; there is no process-wide registry, so two publishers never
share breaker state.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import (
    AuthError,
    NotFoundError,
    UnsupportedContentError,
    UnsupportedOperationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Caller-side problems say nothing about platform health
NON_HEALTH_ERRORS: tuple = (
    AuthError,
    ValidationError,
    NotFoundError,
    UnsupportedOperationError,
    UnsupportedContentError,
)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 30.0  # Seconds before trying half-open
    half_open_max_calls: int = 3
    success_threshold: int = 2  # Successes in half-open to close
    timeout: float = 30.0  # Per-call timeout in seconds
    excluded_exceptions: tuple = NON_HEALTH_ERRORS


@dataclass
class CircuitBreakerStats:
    """Runtime statistics for the circuit breaker."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    half_open_calls: int = 0
    last_failure_time: float = 0
    last_success_time: float = 0
    state_changed_at: float = field(default_factory=time.time)
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0


class CircuitBreakerOpen(Exception):
    """Raised when the breaker is open and the call is rejected."""

    error_code = "CIRCUIT_BREAKER_OPEN"

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is OPEN for {service_name}. "
            f"Retry after {retry_after:.1f} seconds."
        )


class CircuitBreaker:
    """
    Circuit breaker guarding calls to one platform.

    Usage:
        breaker = CircuitBreaker("wordpress", CircuitBreakerConfig(timeout=30))
        result = await breaker.call(adapter.publish, formatted)
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self.stats = CircuitBreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self.stats.state

    @property
    def is_closed(self) -> bool:
        return self.stats.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.stats.state == CircuitState.OPEN

    def _should_try_reset(self) -> bool:
        if self.stats.state != CircuitState.OPEN:
            return False
        elapsed = time.time() - self.stats.state_changed_at
        return elapsed >= self.config.recovery_timeout

    def _transition_to(self, new_state: CircuitState):
        old_state = self.stats.state
        self.stats.state = new_state
        self.stats.state_changed_at = time.time()

        if new_state == CircuitState.HALF_OPEN:
            self.stats.half_open_calls = 0
            self.stats.success_count = 0

        logger.warning(
            f"Circuit breaker [{self.service_name}]: {old_state.value} -> {new_state.value}"
        )

    async def _before_call(self):
        """May raise CircuitBreakerOpen."""
        async with self._lock:
            self.stats.total_calls += 1

            if self.stats.state == CircuitState.OPEN:
                if self._should_try_reset():
                    self._transition_to(CircuitState.HALF_OPEN)
                else:
                    retry_after = (
                        self.config.recovery_timeout
                        - (time.time() - self.stats.state_changed_at)
                    )
                    raise CircuitBreakerOpen(self.service_name, retry_after)

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(self.service_name, self.config.recovery_timeout)
                self.stats.half_open_calls += 1

    async def _on_success(self):
        async with self._lock:
            self.stats.success_count += 1
            self.stats.total_successes += 1
            self.stats.last_success_time = time.time()
            self.stats.failure_count = 0

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    async def _on_failure(self, error: BaseException):
        if isinstance(error, self.config.excluded_exceptions):
            return

        async with self._lock:
            self.stats.failure_count += 1
            self.stats.total_failures += 1
            self.stats.last_failure_time = time.time()

            if self.stats.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self.stats.state == CircuitState.CLOSED:
                if self.stats.failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

            logger.warning(
                f"Circuit breaker [{self.service_name}] failure: {error!r}. "
                f"Failure count: {self.stats.failure_count}/{self.config.failure_threshold}"
            )

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute an async function with circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If the circuit is open
            asyncio.TimeoutError: If the call exceeds config.timeout
            Exception: Any exception from the function
        """
        await self._before_call()

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs),
                timeout=self.config.timeout,
            )
        except Exception as e:
            await self._on_failure(e)
            raise

        await self._on_success()
        return result

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self.stats = CircuitBreakerStats()
        logger.info(f"Circuit breaker [{self.service_name}] manually reset")

    def force_open(self):
        """Manually force the circuit breaker to open state."""
        self._transition_to(CircuitState.OPEN)

    def get_status(self) -> dict:
        """Get current status as a dictionary."""
        return {
            "service": self.service_name,
            "state": self.stats.state.value,
            "failure_count": self.stats.failure_count,
            "total_calls": self.stats.total_calls,
            "total_failures": self.stats.total_failures,
            "total_successes": self.stats.total_successes,
            "last_failure": self.stats.last_failure_time,
            "last_success": self.stats.last_success_time,
            "state_changed_at": self.stats.state_changed_at,
        }


def get_platform_breaker(platform: str, timeout: float) -> CircuitBreaker:
    """
    Build a circuit breaker tuned for a publishing platform.

    Publishing APIs answer in seconds, so the thresholds are tighter than
    a generic default; platforms with strict quotas recover more slowly.

    Args:
        platform: Platform name ('wordpress', 'medium', 'linkedin', ...)
        timeout: Adapter-level call timeout in seconds
    """
    configs = {
        "wordpress": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
        "medium": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0),
        "linkedin": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=90.0),
    }

    config = configs.get(platform, CircuitBreakerConfig())
    config.timeout = timeout
    return CircuitBreaker(platform, config)
