"""
Autonomic — Executor

Applies a diagnosis's suggested action to the shared runtime
configuration, and rolls it back on request.

Gates, in order: circuit breaker, no-op, cooldown, rate limit, allowlist.
An internal lock keeps a single action active at a time, so a rollback
can never interleave with a new execution.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter, deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, NoReturn

import structlog

from autonomic.primitives.common import utc_now
from autonomic.systems.self_improvement.errors import (
    ExecutionBlocked,
    ExecutionBlockReason,
    ExecutorFailedError,
    RollbackRejected,
    UnknownRecordError,
)
from autonomic.systems.self_improvement.runtime_config import ConfigMutationError
from autonomic.systems.self_improvement.types import (
    AdjustParam,
    ExecutionOutcome,
    ExecutionResult,
    NoOp,
    ScaleResource,
)

if TYPE_CHECKING:
    from autonomic.config import ExecutorConfig
    from autonomic.systems.self_improvement.allowlist import Allowlist
    from autonomic.systems.self_improvement.circuit_breaker import CircuitBreaker
    from autonomic.systems.self_improvement.runtime_config import RuntimeConfig
    from autonomic.systems.self_improvement.types import MetricsSnapshot, SelfDiagnosis

logger = structlog.get_logger()


class Executor:
    def __init__(
        self,
        config: ExecutorConfig,
        allowlist: Allowlist,
        breaker: CircuitBreaker,
        runtime: RuntimeConfig,
        clock: Callable[[], float] = time.monotonic,
        max_records: int = 1_000,
    ) -> None:
        self._config = config
        self._max_records = max_records
        self._allowlist = allowlist
        self._breaker = breaker
        self._runtime = runtime
        self._clock = clock
        self._lock = asyncio.Lock()
        self._logger = logger.bind(system="self_improvement", component="executor")

        self._records: dict[str, ExecutionResult] = {}
        self._action_times: deque[float] = deque()
        self._last_action_at: float | None = None

        self._total_succeeded: int = 0
        self._total_failed: int = 0
        self._total_rolled_back: int = 0
        self._blocked: Counter[str] = Counter()

    # ─── Execute ───────────────────────────────────────────────────

    async def execute(
        self, diagnosis: SelfDiagnosis, current_metrics: MetricsSnapshot
    ) -> ExecutionResult:
        """
        Raises ExecutionBlocked when a gate declines. A mutation that fails
        is not raised: it returns a result with outcome FAILED.
        """
        async with self._lock:
            action = diagnosis.suggested_action
            now = self._clock()

            if not self._breaker.can_execute():
                self._block(ExecutionBlockReason.CIRCUIT_OPEN, "circuit breaker is open")
            if isinstance(action, NoOp):
                self._block(ExecutionBlockReason.NO_OP_ACTION, action.reason)
            remaining = self.cooldown_remaining(now)
            if remaining > 0:
                self._block(ExecutionBlockReason.COOLDOWN_ACTIVE, f"{remaining:.0f}s remaining")
            self._prune(now)
            if len(self._action_times) >= self._config.max_actions_per_window:
                self._block(
                    ExecutionBlockReason.RATE_LIMIT_EXCEEDED,
                    f"{len(self._action_times)} actions in the last "
                    f"{self._config.rate_window_s:.0f}s",
                )
            decision = self._allowlist.validate(action)
            if not decision.allowed:
                self._breaker.record_failure()
                self._block(ExecutionBlockReason.NOT_ALLOWED, decision.reason)

            result = ExecutionResult(
                diagnosis_id=diagnosis.id,
                action=action,
                pre_metrics=current_metrics,
            )
            started = time.perf_counter()
            try:
                if isinstance(action, AdjustParam):
                    result.previous_param_inherited = self._runtime.is_inherited(
                        action.key, action.scope
                    )
                    result.previous_param = self._runtime.set_param(
                        action.key, action.new_value, action.scope
                    )
                elif isinstance(action, ScaleResource):
                    result.previous_resource = self._runtime.set_resource(
                        action.resource, action.new_value
                    )
            except ConfigMutationError as exc:
                result.outcome = ExecutionOutcome.FAILED
                result.error_message = str(exc)
                self._total_failed += 1
                self._breaker.record_failure()
                self._logger.warning(
                    "action_failed",
                    action_id=result.action_id,
                    diagnosis_id=diagnosis.id,
                    error=str(exc),
                )
            else:
                result.outcome = ExecutionOutcome.SUCCESS
                self._total_succeeded += 1
                self._breaker.record_success()
                self._logger.info(
                    "action_executed",
                    action_id=result.action_id,
                    diagnosis_id=diagnosis.id,
                    action=action.describe(),
                )

            result.execution_time_ms = int((time.perf_counter() - started) * 1000)
            result.completed_at = utc_now()
            # Failed attempts still spend cooldown and budget
            self._last_action_at = now
            self._action_times.append(now)
            self._records[result.action_id] = result
            while len(self._records) > self._max_records:
                del self._records[next(iter(self._records))]
            return result

    def _block(self, reason: ExecutionBlockReason, detail: str = "") -> NoReturn:
        self._blocked[reason.value] += 1
        self._logger.info("execution_blocked", reason=reason.value, detail=detail)
        raise ExecutionBlocked(reason, detail)

    def _prune(self, now: float) -> None:
        cutoff = now - self._config.rate_window_s
        while self._action_times and self._action_times[0] < cutoff:
            self._action_times.popleft()

    def cooldown_remaining(self, now: float | None = None) -> float:
        if self._last_action_at is None:
            return 0.0
        now = self._clock() if now is None else now
        return max(0.0, self._config.cooldown_s - (now - self._last_action_at))

    # ─── Rollback ──────────────────────────────────────────────────

    async def rollback_by_id(self, action_id: str) -> ExecutionResult:
        """Restore the value an action replaced. Only SUCCESS actions qualify."""
        async with self._lock:
            result = self._records.get(action_id)
            if result is None:
                raise UnknownRecordError(f"unknown action {action_id}")
            if result.outcome != ExecutionOutcome.SUCCESS:
                raise RollbackRejected(
                    f"action {action_id} is {result.outcome.value}; "
                    "only successful actions can be rolled back"
                )

            action = result.action
            try:
                if isinstance(action, AdjustParam) and result.previous_param_inherited:
                    self._runtime.clear_param(action.key, action.scope)
                elif isinstance(action, AdjustParam) and result.previous_param is not None:
                    self._runtime.set_param(action.key, result.previous_param, action.scope)
                elif isinstance(action, ScaleResource) and result.previous_resource is not None:
                    self._runtime.set_resource(action.resource, result.previous_resource)
                else:
                    raise ConfigMutationError("no pre-execution value recorded")
            except ConfigMutationError as exc:
                self._logger.error("rollback_failed", action_id=action_id, error=str(exc))
                raise ExecutorFailedError(f"rollback of {action_id} failed: {exc}") from exc

            result.outcome = ExecutionOutcome.ROLLED_BACK
            result.completed_at = utc_now()
            self._total_rolled_back += 1
            self._logger.info("action_rolled_back", action_id=action_id, action=action.describe())
            return result

    # ─── Records ───────────────────────────────────────────────────

    def get(self, action_id: str) -> ExecutionResult | None:
        return self._records.get(action_id)

    def history(
        self, limit: int = 10, outcome: ExecutionOutcome | None = None
    ) -> list[ExecutionResult]:
        """Newest first."""
        records = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
        if outcome is not None:
            records = [r for r in records if r.outcome == outcome]
        return records[:limit]

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_succeeded": self._total_succeeded,
            "total_failed": self._total_failed,
            "total_rolled_back": self._total_rolled_back,
            "actions_in_window": len(self._action_times),
            "max_actions_per_window": self._config.max_actions_per_window,
            "cooldown_remaining_s": round(self.cooldown_remaining(), 1),
            "blocked": dict(self._blocked),
        }
