"""
Circuit breakers for the outbound senders

The outbox worker talks to two external endpoints: the mobile push gateway
and the operations webhook. When one of them keeps failing its breaker opens,
the worker stops calling it and outbox messages are deferred until the
breaker's reset window has passed instead of burning their retries.
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, TypeVar, ParamSpec

from app.core.config import settings
from app.core.exceptions import CircuitBreakerOpenError
from app.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

PUSH_GATEWAY = "push_gateway"
OPS_WEBHOOK = "ops_webhook"


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5       # consecutive failures that open the circuit
    success_threshold: int = 2       # half-open successes needed to close it
    timeout_seconds: float = 30.0    # open -> half-open after this long
    half_open_max_calls: int = 3     # trial calls allowed while half-open


class CircuitBreaker:
    """
    Per-service breaker shared by every task in the worker process.

    A threading.Lock guards the counters because each Celery task runs its
    own event loop.
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._half_open_successes = 0
        self._half_open_calls = 0
        self._opened_at = 0.0

    @classmethod
    def get_instance(cls, service_name: str, config: CircuitBreakerConfig | None = None) -> "CircuitBreaker":
        with cls._instances_lock:
            breaker = cls._instances.get(service_name)
            if breaker is None:
                breaker = cls(service_name, config)
                cls._instances[service_name] = breaker
            return breaker

    @classmethod
    def reset_all(cls) -> None:
        """Forget every registered breaker"""
        with cls._instances_lock:
            cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    def snapshot(self) -> dict[str, Any]:
        """Current counters, for logs"""
        return {
            "service": self.service_name,
            "state": self._state.value,
            "failures": self._failures,
            "retry_after_seconds": round(self.get_retry_after(), 1),
        }

    def _set_state(self, new_state: CircuitState) -> None:
        # Caller holds the lock
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._half_open_successes = 0
        else:
            self._failures = 0
            self._half_open_successes = 0

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.service_name}' {old_state.value} -> {new_state.value}",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "failures": self._failures,
            }
        )

    def get_retry_after(self) -> float:
        """Seconds left before an open breaker lets a trial call through"""
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    async def can_execute(self) -> bool:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self.get_retry_after() > 0:
                    return False
                self._set_state(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    return False
                self._half_open_calls += 1
            return True

    async def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            else:
                self._failures = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failures += 1
            logger.warning(
                f"Call to '{self.service_name}' failed",
                extra_data={
                    "service": self.service_name,
                    "failures": self._failures,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None,
                }
            )
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

    async def execute(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """
        Call ``func`` (sync or async) through the breaker.

        Raises:
            CircuitBreakerOpenError: the breaker is open; nothing was called
        """
        if not await self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except Exception as e:
            await self.record_failure(e)
            raise

        await self.record_success()
        return result


def get_push_gateway_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance(
        PUSH_GATEWAY,
        CircuitBreakerConfig(
            failure_threshold=settings.PUSH_BREAKER_FAILURE_THRESHOLD,
            success_threshold=2,
            timeout_seconds=settings.PUSH_BREAKER_RESET_SECONDS,
        )
    )


def get_ops_webhook_circuit_breaker() -> CircuitBreaker:
    # Ops alerts are rare; one good call is enough to trust the webhook again
    return CircuitBreaker.get_instance(
        OPS_WEBHOOK,
        CircuitBreakerConfig(
            failure_threshold=settings.OPS_BREAKER_FAILURE_THRESHOLD,
            success_threshold=1,
            timeout_seconds=settings.OPS_BREAKER_RESET_SECONDS,
        )
    )
