"""
Circuit breaker for outbound calls.

After ``failure_threshold`` consecutive failures the breaker opens and rejects
calls without touching the dependency. Once ``recovery_seconds`` have passed a
single probe call is let through; its outcome closes or re-opens the breaker.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised instead of calling a dependency whose breaker is open"""
    pass


class CircuitBreaker:

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_seconds: float = 30.0,
                 expected_exception: type = Exception,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_seconds = recovery_seconds
        self.expected_exception = expected_exception
        self._clock = clock

        self.failure_count = 0
        self._opened_at: Optional[float] = None
        self._probing = False

    @property
    def state(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.CLOSED
        if self._clock() - self._opened_at >= self.recovery_seconds:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def _admit(self):
        state = self.state
        if state == CircuitState.CLOSED:
            return
        if state == CircuitState.HALF_OPEN and not self._probing:
            logger.info("Circuit breaker probing dependency", breaker=self.name)
            self._probing = True
            return
        raise CircuitBreakerError(f"Circuit breaker for {self.name} is OPEN")

    def record_success(self):
        if self._opened_at is not None:
            logger.info("Circuit breaker closed", breaker=self.name)
        self.failure_count = 0
        self._opened_at = None
        self._probing = False

    def record_failure(self, error: Exception):
        self.failure_count += 1
        if self._probing or self.failure_count >= self.failure_threshold:
            if self._opened_at is None or self._probing:
                logger.warning("Circuit breaker opened",
                               breaker=self.name,
                               failure_count=self.failure_count,
                               threshold=self.failure_threshold,
                               error=str(error))
            self._opened_at = self._clock()
        self._probing = False

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run ``func`` unless the breaker is open"""
        self._admit()
        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except self.expected_exception as e:
            self.record_failure(e)
            raise
        except BaseException:
            # Errors the breaker does not count still end a probe
            self._probing = False
            raise
        self.record_success()
        return result

    def get_state(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_seconds": self.recovery_seconds,
        }
