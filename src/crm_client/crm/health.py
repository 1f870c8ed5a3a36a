"""Circuit breaker tracking whether the remote CRM endpoints are available.

Only NotFound outcomes count as "unavailable": the remote answering 404 for
an operation endpoint is the signal that the local store must serve the
request. Other failures are surfaced to the caller and leave the breaker
untouched.

States:
- CLOSED: remote calls are attempted
- OPEN: remote calls are skipped; callers take the local path
- HALF_OPEN: after reset_seconds, one trial call decides CLOSED or OPEN
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

import structlog

from src.crm_client.core.monitoring import remote_circuit_open

logger = structlog.get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-NotFound circuit breaker.

    Args:
        failure_threshold: Consecutive NotFound results that open the circuit.
        reset_seconds: How long the circuit stays open before a trial call.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = max(1, failure_threshold)
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.CLOSED
        if self._clock() - self._opened_at >= self._reset_seconds:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def allow_request(self) -> bool:
        """True when a remote call should be attempted."""
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("circuit.closed")
        self.reset()

    def record_not_found(self) -> None:
        self._failures += 1
        if self.state == CircuitState.HALF_OPEN or self._failures >= self._threshold:
            if self._opened_at is None:
                logger.warning("circuit.opened", failures=self._failures)
            self._opened_at = self._clock()
            remote_circuit_open.set(1)

    def reset(self) -> None:
        self._failures = 0
        self._opened_at = None
        remote_circuit_open.set(0)
