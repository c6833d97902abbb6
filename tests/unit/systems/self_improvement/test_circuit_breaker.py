"""
Tests for the self-improvement circuit breaker.

Covers:
  - The pure transition function over every state/event pair that matters
  - The lock-guarded wrapper driven by a fake clock
  - State-change logging
"""

from __future__ import annotations

from structlog.testing import capture_logs

from autonomic.config import CircuitBreakerConfig
from autonomic.systems.self_improvement.circuit_breaker import (
    BreakerEvent,
    BreakerState,
    CircuitBreaker,
    CircuitState,
    transition,
)


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _step(state: BreakerState, event: BreakerEvent, now: float = 0.0) -> BreakerState:
    return transition(
        state, event, now, failure_threshold=3, success_threshold=2, reset_timeout_s=300.0
    )


def _make_breaker(**overrides) -> tuple[CircuitBreaker, FakeClock]:
    clock = FakeClock()
    return CircuitBreaker(CircuitBreakerConfig(**overrides), clock=clock), clock


# ─── Pure transitions ────────────────────────────────────────────


class TestTransition:
    def test_failures_below_threshold_stay_closed(self):
        state = _step(BreakerState(), BreakerEvent.FAILURE)
        state = _step(state, BreakerEvent.FAILURE)
        assert state.state == CircuitState.CLOSED
        assert state.consecutive_failures == 2

    def test_threshold_failure_opens(self):
        state = BreakerState(consecutive_failures=2)
        opened = _step(state, BreakerEvent.FAILURE, now=50.0)
        assert opened.state == CircuitState.OPEN
        assert opened.opened_at == 50.0

    def test_success_resets_failure_count(self):
        state = _step(BreakerState(consecutive_failures=2), BreakerEvent.SUCCESS)
        assert state.consecutive_failures == 0
        assert state.state == CircuitState.CLOSED

    def test_tick_before_timeout_stays_open(self):
        state = BreakerState(state=CircuitState.OPEN, opened_at=0.0)
        assert _step(state, BreakerEvent.TICK, now=299.0).state == CircuitState.OPEN

    def test_tick_after_timeout_half_opens(self):
        state = BreakerState(state=CircuitState.OPEN, opened_at=0.0)
        assert _step(state, BreakerEvent.TICK, now=300.0).state == CircuitState.HALF_OPEN

    def test_half_open_closes_after_success_threshold(self):
        state = BreakerState(state=CircuitState.HALF_OPEN)
        state = _step(state, BreakerEvent.SUCCESS)
        assert state.state == CircuitState.HALF_OPEN
        state = _step(state, BreakerEvent.SUCCESS)
        assert state == BreakerState()

    def test_half_open_failure_reopens(self):
        state = BreakerState(state=CircuitState.HALF_OPEN, consecutive_successes=1)
        reopened = _step(state, BreakerEvent.FAILURE, now=900.0)
        assert reopened.state == CircuitState.OPEN
        assert reopened.opened_at == 900.0

    def test_success_while_open_is_ignored(self):
        state = BreakerState(state=CircuitState.OPEN, opened_at=0.0, consecutive_failures=3)
        assert _step(state, BreakerEvent.SUCCESS) == state

    def test_reset_and_trip(self):
        tripped = _step(BreakerState(), BreakerEvent.TRIP, now=7.0)
        assert tripped.state == CircuitState.OPEN
        assert _step(tripped, BreakerEvent.RESET) == BreakerState()


# ─── Wrapper ─────────────────────────────────────────────────────


class TestCircuitBreaker:
    def test_three_failures_block_execution(self):
        breaker, _ = _make_breaker()
        assert breaker.can_execute()
        for _ in range(3):
            breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.can_execute()

    def test_full_recovery_cycle(self):
        breaker, clock = _make_breaker()
        for _ in range(3):
            breaker.record_failure()

        clock.advance(299)
        assert not breaker.can_execute()
        assert breaker.remaining_cooldown() == 1.0

        clock.advance(1)
        assert breaker.can_execute()
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_trial_failure_reopens(self):
        breaker, clock = _make_breaker()
        for _ in range(3):
            breaker.record_failure()
        clock.advance(300)
        assert breaker.can_execute()

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.remaining_cooldown() == 300.0

    def test_force_reset(self):
        breaker, _ = _make_breaker(failure_threshold=1)
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        breaker.force_reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_execute()

    def test_stats_counts(self):
        breaker, _ = _make_breaker()
        breaker.record_success()
        for _ in range(3):
            breaker.record_failure()
        stats = breaker.stats()
        assert stats["state"] == "open"
        assert stats["total_failures"] == 3
        assert stats["total_successes"] == 1
        assert stats["total_trips"] == 1
        assert stats["remaining_cooldown_s"] == 300.0

    def test_state_changes_are_logged(self):
        with capture_logs() as logs:
            breaker, clock = _make_breaker()
            for _ in range(3):
                breaker.record_failure()
            clock.advance(300)
            breaker.can_execute()
            breaker.force_reset()

        changes = [
            (e["from_state"], e["to_state"], e["breaker_event"])
            for e in logs
            if e["event"] == "circuit_state_changed"
        ]
        assert changes == [
            ("closed", "open", "failure"),
            ("open", "half_open", "tick"),
            ("half_open", "closed", "reset"),
        ]
        assert logs[0]["component"] == "circuit_breaker"
