"""Unit tests for the remote circuit breaker."""

from __future__ import annotations

from src.crm_client.crm.health import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:
    def test_starts_closed(self):
        breaker = CircuitBreaker()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request()

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3, clock=FakeClock())
        breaker.record_not_found()
        breaker.record_not_found()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_not_found()

        assert breaker.is_open
        assert not breaker.allow_request()

    def test_success_resets_count(self):
        breaker = CircuitBreaker(failure_threshold=2)
        breaker.record_not_found()
        breaker.record_success()
        breaker.record_not_found()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 1

    def test_half_open_after_reset_window(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_seconds=30, clock=clock)
        breaker.record_not_found()
        assert breaker.is_open

        clock.now = 30.0

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()

    def test_half_open_trial_not_found_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=5, reset_seconds=10, clock=clock)
        for _ in range(5):
            breaker.record_not_found()
        clock.now = 10.0

        breaker.record_not_found()

        assert breaker.is_open

    def test_half_open_trial_success_closes(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_seconds=10, clock=clock)
        breaker.record_not_found()
        clock.now = 11.0

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0
