"""
Circuit breakers for the engine's external collaborators.

The payment gateway and the SMTP relay each get a named breaker. After
``failure_threshold`` consecutive failures the breaker opens and calls
fail fast with ``ExternalServiceError`` until ``recovery_timeout`` has
passed; the next call is then let through as a probe.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

from ..config import get_settings
from ..utils.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds for one breaker."""
    failure_threshold: int = 5
    recovery_timeout: int = 60
    expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception
    success_threshold: int = 1
    timeout: float = 30.0


@dataclass
class CircuitBreakerStats:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    probe_successes: int = 0
    opened_at: Optional[float] = None
    total_requests: int = 0
    total_failures: int = 0
    total_successes: int = 0
    rejected: int = 0
    transitions: Dict[str, int] = field(default_factory=dict)


class CircuitBreaker:
    """Guards calls to one external service."""

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self.stats = CircuitBreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self.stats.state

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func(*args, **kwargs)`` under the breaker.

        Raises:
            ExternalServiceError: When the circuit is open, the call times
                out, or ``func`` fails. ExternalServiceError subclasses
                raised by ``func`` propagate unchanged.
        """
        await self._admit()

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except asyncio.TimeoutError:
            await self._on_failure()
            raise ExternalServiceError(
                self.name,
                f"No response within {self.config.timeout}s",
                details={"timeout": self.config.timeout}
            )
        except self.config.expected_exception as e:
            await self._on_failure()
            if isinstance(e, ExternalServiceError):
                raise
            raise ExternalServiceError(
                self.name,
                f"Call failed: {e}",
                details={"original_error": type(e).__name__}
            ) from e

        await self._on_success()
        return result

    async def _admit(self) -> None:
        async with self._lock:
            self.stats.total_requests += 1

            if self.stats.state == CircuitState.OPEN:
                if time.monotonic() - self.stats.opened_at < self.config.recovery_timeout:
                    self.stats.rejected += 1
                    raise ExternalServiceError(
                        self.name,
                        f"Circuit breaker is OPEN for {self.name}",
                        details={
                            "state": self.stats.state.value,
                            "consecutive_failures": self.stats.consecutive_failures,
                        },
                        retry_after=self.config.recovery_timeout
                    )
                self._move_to(CircuitState.HALF_OPEN)

    async def _on_success(self) -> None:
        async with self._lock:
            self.stats.total_successes += 1
            self.stats.consecutive_failures = 0

            if self.stats.state == CircuitState.HALF_OPEN:
                self.stats.probe_successes += 1
                if self.stats.probe_successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)

    async def _on_failure(self) -> None:
        async with self._lock:
            self.stats.total_failures += 1
            self.stats.consecutive_failures += 1

            if self.stats.state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN)
            elif (self.stats.state == CircuitState.CLOSED and
                    self.stats.consecutive_failures >= self.config.failure_threshold):
                self._move_to(CircuitState.OPEN)

            logger.warning(
                f"Circuit breaker {self.name}: failure {self.stats.consecutive_failures}"
                f"/{self.config.failure_threshold}"
            )

    def _move_to(self, new_state: CircuitState) -> None:
        key = f"{self.stats.state.value}_to_{new_state.value}"
        self.stats.transitions[key] = self.stats.transitions.get(key, 0) + 1
        self.stats.state = new_state
        self.stats.probe_successes = 0

        if new_state == CircuitState.OPEN:
            self.stats.opened_at = time.monotonic()
            logger.warning(f"Circuit breaker {self.name} opened")
        elif new_state == CircuitState.CLOSED:
            self.stats.opened_at = None
            logger.info(f"Circuit breaker {self.name} closed, service recovered")
        else:
            logger.info(f"Circuit breaker {self.name} half-open, probing")

    def reset(self) -> None:
        """Forget all recorded calls and close the circuit."""
        self.stats = CircuitBreakerStats()
        logger.info(f"Circuit breaker {self.name} has been reset")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.stats.state.value,
            "consecutive_failures": self.stats.consecutive_failures,
            "total_requests": self.stats.total_requests,
            "total_failures": self.stats.total_failures,
            "total_successes": self.stats.total_successes,
            "rejected": self.stats.rejected,
            "state_changes": dict(self.stats.transitions),
        }


class CircuitBreakerRegistry:
    """Named breakers shared across the process."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(name, config or CircuitBreakerConfig())
        return self._breakers[name]

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_stats() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()


_registry = CircuitBreakerRegistry()


def get_circuit_breaker(name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
    return _registry.get_breaker(name, config)


def get_circuit_breaker_registry() -> CircuitBreakerRegistry:
    return _registry


def get_payment_circuit_breaker() -> CircuitBreaker:
    """Breaker around the payment gateway, tuned from settings."""
    settings = get_settings()
    return get_circuit_breaker("payment_gateway", CircuitBreakerConfig(
        failure_threshold=settings.circuit_breaker_failure_threshold,
        recovery_timeout=settings.circuit_breaker_recovery_timeout,
        timeout=settings.payment_gateway_timeout
    ))


def get_email_circuit_breaker() -> CircuitBreaker:
    """Breaker around the SMTP relay."""
    return get_circuit_breaker("email_service", CircuitBreakerConfig(
        failure_threshold=3,
        recovery_timeout=300,
        timeout=10.0
    ))
