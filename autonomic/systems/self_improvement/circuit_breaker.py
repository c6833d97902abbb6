"""
Autonomic — Circuit Breaker

Three-state safety gate consulted by the Analyzer and the Executor.

  CLOSED ──(failure_threshold consecutive failures)──> OPEN
  OPEN ──(reset_timeout elapsed, next call)──> HALF_OPEN
  HALF_OPEN ──(success_threshold consecutive successes)──> CLOSED
  HALF_OPEN ──(any failure)──> OPEN

All transitions go through ``transition()``, a pure function over an
immutable ``BreakerState``. ``CircuitBreaker`` holds the current state
behind a lock so success/failure recording from concurrent phases is
atomic. The lock is never held across an await.
"""

from __future__ import annotations

import enum
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from autonomic.config import CircuitBreakerConfig

logger = structlog.get_logger()


class CircuitState(enum.StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BreakerEvent(enum.StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    TICK = "tick"  # time check before a gate decision
    RESET = "reset"
    TRIP = "trip"


@dataclass(frozen=True)
class BreakerState:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    opened_at: float | None = None


def transition(
    current: BreakerState,
    event: BreakerEvent,
    now: float,
    failure_threshold: int,
    success_threshold: int,
    reset_timeout_s: float,
) -> BreakerState:
    """Compute the next breaker state. No side effects."""
    if event == BreakerEvent.RESET:
        return BreakerState()

    if event == BreakerEvent.TRIP:
        return BreakerState(
            state=CircuitState.OPEN,
            consecutive_failures=current.consecutive_failures,
            opened_at=now,
        )

    if event == BreakerEvent.TICK:
        if (
            current.state == CircuitState.OPEN
            and current.opened_at is not None
            and now - current.opened_at >= reset_timeout_s
        ):
            return replace(current, state=CircuitState.HALF_OPEN, consecutive_successes=0)
        return current

    if event == BreakerEvent.SUCCESS:
        if current.state == CircuitState.CLOSED:
            return replace(current, consecutive_failures=0)
        if current.state == CircuitState.HALF_OPEN:
            successes = current.consecutive_successes + 1
            if successes >= success_threshold:
                return BreakerState()
            return replace(current, consecutive_successes=successes)
        # A phase that started before the trip finished; stay open
        return current

    # FAILURE
    failures = current.consecutive_failures + 1
    if current.state == CircuitState.CLOSED:
        if failures >= failure_threshold:
            return BreakerState(
                state=CircuitState.OPEN, consecutive_failures=failures, opened_at=now
            )
        return replace(current, consecutive_failures=failures)
    # HALF_OPEN trial failed, or OPEN refreshed by a late failure
    return BreakerState(state=CircuitState.OPEN, consecutive_failures=failures, opened_at=now)


class CircuitBreaker:
    """Lock-guarded holder of the breaker state."""

    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState()
        self._logger = logger.bind(system="self_improvement", component="circuit_breaker")

        self._total_failures: int = 0
        self._total_successes: int = 0
        self._total_trips: int = 0

    def _apply(self, event: BreakerEvent) -> BreakerState:
        with self._lock:
            before = self._state
            after = transition(
                before,
                event,
                self._clock(),
                self._config.failure_threshold,
                self._config.success_threshold,
                self._config.reset_timeout_s,
            )
            self._state = after
            if event == BreakerEvent.FAILURE:
                self._total_failures += 1
            elif event == BreakerEvent.SUCCESS:
                self._total_successes += 1
            if after.state == CircuitState.OPEN and before.state != CircuitState.OPEN:
                self._total_trips += 1

        if after.state != before.state:
            self._logger.info(
                "circuit_state_changed",
                from_state=before.state.value,
                to_state=after.state.value,
                breaker_event=event.value,
                consecutive_failures=after.consecutive_failures,
            )
        return after

    # ─── Gate ──────────────────────────────────────────────────────

    def can_execute(self) -> bool:
        return self._apply(BreakerEvent.TICK).state != CircuitState.OPEN

    def record_success(self) -> None:
        self._apply(BreakerEvent.SUCCESS)

    def record_failure(self) -> None:
        self._apply(BreakerEvent.FAILURE)

    def force_reset(self) -> None:
        """Operator override: return to CLOSED unconditionally."""
        self._apply(BreakerEvent.RESET)

    def trip(self) -> None:
        self._apply(BreakerEvent.TRIP)

    # ─── Introspection ─────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        return self._state.state

    def remaining_cooldown(self) -> float:
        """Seconds until an OPEN breaker admits a trial call. 0 when not OPEN."""
        current = self._state
        if current.state != CircuitState.OPEN or current.opened_at is None:
            return 0.0
        elapsed = self._clock() - current.opened_at
        return max(0.0, self._config.reset_timeout_s - elapsed)

    def stats(self) -> dict[str, Any]:
        current = self._state
        return {
            "state": current.state.value,
            "consecutive_failures": current.consecutive_failures,
            "consecutive_successes": current.consecutive_successes,
            "failure_threshold": self._config.failure_threshold,
            "success_threshold": self._config.success_threshold,
            "reset_timeout_s": self._config.reset_timeout_s,
            "remaining_cooldown_s": round(self.remaining_cooldown(), 1),
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
            "total_trips": self._total_trips,
        }
