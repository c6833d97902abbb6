"""
Autonomic — Self-Improvement Service (The Controller)

Binds the Monitor, Analyzer, Executor and Learner into one periodic
control loop over the host's live runtime configuration.

Cycle:
  Gate → Learn (in-flight action) → Monitor → Retry pending → Analyze
    → Approval → Execute

Rules:
  - At most one cycle runs at a time; overlapping triggers are refused
  - An executed action stays in flight until the Learner has enough
    post-action samples; no new analysis starts while one is in flight
  - Operator actions (approve, reject, pause, rollback) wait for the
    running cycle and never interleave with it
  - Without approval, a blocked diagnosis is retried instead of analyzing
    a new one, so at most one waits
  - Nothing here raises into the request path: blocks and failures become
    CycleResults in the bounded history

Interface:
  initialize()      - start the periodic cycle task
  on_invocation()   - record one completed request
  check_health()    - forward to the Monitor
  run_cycle()       - one full pass through the cycle
  trigger_cycle()   - manual trigger through the cycle channel
  status()          - breaker state, pending diagnoses, recent learnings
  shutdown()        - cancel the cycle task and close the advisor
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from autonomic.primitives.common import utc_now
from autonomic.systems.self_improvement.advisor import HeuristicAdvisor, LLMImprovementAdvisor
from autonomic.systems.self_improvement.allowlist import Allowlist
from autonomic.systems.self_improvement.analyzer import Analyzer
from autonomic.systems.self_improvement.circuit_breaker import CircuitBreaker, CircuitState
from autonomic.systems.self_improvement.duration import format_duration
from autonomic.systems.self_improvement.errors import (
    AnalysisBlocked,
    AnalyzerFailedError,
    ExecutionBlocked,
    ExecutionBlockReason,
    LearnerFailedError,
    LearningBlocked,
    LearningBlockReason,
    OperatorActionError,
    SelfImprovementErrorKind,
    UnknownRecordError,
)
from autonomic.systems.self_improvement.executor import Executor
from autonomic.systems.self_improvement.learner import Learner
from autonomic.systems.self_improvement.monitor import Monitor
from autonomic.systems.self_improvement.runtime_config import RuntimeConfig
from autonomic.systems.self_improvement.store import SelfImprovementStore
from autonomic.systems.self_improvement.types import (
    ControllerStatus,
    CycleOutcome,
    CyclePhase,
    CycleResult,
    DiagnosisStatus,
    ExecutionOutcome,
    NoOp,
)

if TYPE_CHECKING:
    from autonomic.clients.llm import LLMProvider
    from autonomic.clients.postgres import PostgresClient
    from autonomic.config import SelfImprovementConfig
    from autonomic.systems.self_improvement.advisor import ImprovementAdvisor
    from autonomic.systems.self_improvement.types import (
        ExecutionResult,
        HealthReport,
        InvocationEvent,
        MetricsSnapshot,
        SelfDiagnosis,
    )

logger = structlog.get_logger()

# Unexpected exceptions are reported under the kind of the phase they escaped
_PHASE_FAILURE: dict[CyclePhase, SelfImprovementErrorKind] = {
    CyclePhase.MONITOR: SelfImprovementErrorKind.MONITOR_FAILED,
    CyclePhase.ANALYZE: SelfImprovementErrorKind.ANALYZER_FAILED,
    CyclePhase.LEARN: SelfImprovementErrorKind.LEARNER_FAILED,
}

_QUIET_OUTCOMES = (CycleOutcome.INSUFFICIENT_DATA, CycleOutcome.HEALTHY)


@dataclass
class _InFlight:
    """An executed action awaiting enough post-action samples to be judged."""

    execution: ExecutionResult
    diagnosis: SelfDiagnosis
    mark: int


class SelfImprovementService:
    """
    Closed-loop controller over the host's runtime configuration.

    All components share one breaker, one runtime config and one store,
    built here from the config and exposed read-only to the API layer.
    """

    system_id: str = "self_improvement"

    def __init__(
        self,
        config: SelfImprovementConfig,
        advisor: ImprovementAdvisor | None = None,
        llm: LLMProvider | None = None,
        llm_max_tokens: int = 1024,
        llm_temperature: float = 0.2,
        postgres: PostgresClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._clock = clock
        self._logger = logger.bind(system="self_improvement")

        self._breaker = CircuitBreaker(config.circuit_breaker, clock=clock)
        self._runtime = RuntimeConfig(
            parameters=dict(config.runtime.parameters),
            resources=dict(config.runtime.resources),
        )
        self._allowlist = Allowlist(config.allowlist)
        self._store = SelfImprovementStore(
            postgres=postgres,
            max_learnings=config.learner.max_outcomes,
            max_records=config.max_history,
        )

        if advisor is None:
            advisor = (
                LLMImprovementAdvisor(
                    llm,
                    self._runtime,
                    self._allowlist,
                    max_tokens=llm_max_tokens,
                    temperature=llm_temperature,
                )
                if llm is not None
                else HeuristicAdvisor(self._runtime, self._allowlist)
            )
        self._advisor = advisor

        self._monitor = Monitor(config.monitor, config.baseline)
        self._analyzer = Analyzer(
            config.analyzer, self._breaker, advisor, pending_count=self._store.pending_count
        )
        self._executor = Executor(
            config.executor,
            self._allowlist,
            self._breaker,
            self._runtime,
            clock=clock,
            max_records=config.max_history,
        )
        self._learner = Learner(config.learner, advisor, breaker=self._breaker)

        # ── State ──
        self._cycle_lock = asyncio.Lock()
        self._in_flight: _InFlight | None = None
        self._paused_until: float | None = None
        self._history: deque[CycleResult] = deque(maxlen=config.max_history)
        self._cycle_times: deque[float] = deque(maxlen=200)
        self._initialized: bool = False

        # Manual triggers carry a future the loop resolves with the CycleResult
        self._triggers: asyncio.Queue[asyncio.Future[CycleResult]] = asyncio.Queue()
        self._cycle_task: asyncio.Task[None] | None = None

        # Counters
        self._total_cycles: int = 0
        self._failed_cycles: int = 0
        self._outcome_counts: Counter[str] = Counter()
        self._dropped_invocations: int = 0

    # ─── Shared Context ──────────────────────────────────────────────

    @property
    def monitor(self) -> Monitor:
        return self._monitor

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def runtime(self) -> RuntimeConfig:
        return self._runtime

    @property
    def allowlist(self) -> Allowlist:
        return self._allowlist

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def learner(self) -> Learner:
        return self._learner

    @property
    def store(self) -> SelfImprovementStore:
        return self._store

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Start the periodic cycle task. A disabled service never starts it."""
        if self._initialized:
            return
        if self._config.enabled:
            self._cycle_task = asyncio.create_task(
                self._cycle_loop(),
                name="self_improvement_cycle",
            )
        self._initialized = True
        self._logger.info(
            "self_improvement_initialized",
            enabled=self._config.enabled,
            require_approval=self._config.require_approval,
            cycle_interval_s=self._config.cycle_interval_s,
            advisor=type(self._advisor).__name__,
            persistent=self._store.persistent,
        )

    async def shutdown(self) -> None:
        self._logger.info("self_improvement_shutting_down")

        task = self._cycle_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._cycle_task = None

        while not self._triggers.empty():
            waiter = self._triggers.get_nowait()
            if not waiter.done():
                waiter.cancel()

        await self._advisor.close()
        self._initialized = False
        self._logger.info(
            "self_improvement_shutdown",
            total_cycles=self._total_cycles,
            failed_cycles=self._failed_cycles,
            in_flight_action_id=self._in_flight_action_id(),
        )

    @property
    def running(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    # ─── Request Path ────────────────────────────────────────────────

    def on_invocation(self, event: InvocationEvent) -> None:
        """Record one completed request. Never raises into the caller."""
        try:
            self._monitor.record_invocation(event)
        except Exception as exc:
            self._dropped_invocations += 1
            self._logger.warning("invocation_record_failed", tool=event.tool_name, error=str(exc))

    def check_health(self) -> HealthReport | None:
        return self._monitor.check_health()

    # ─── Cycle ───────────────────────────────────────────────────────

    async def run_cycle(self, trigger: str = "manual") -> CycleResult:
        """One pass through the cycle. Blocks and failures are returned, not raised."""
        if self._cycle_lock.locked():
            result = CycleResult(
                trigger=trigger,
                outcome=CycleOutcome.BLOCKED,
                error=SelfImprovementErrorKind.CYCLE_IN_PROGRESS,
                message="another cycle or operator action is in progress",
            )
            return self._record(result, time.perf_counter())

        async with self._cycle_lock:
            started = time.perf_counter()
            result = CycleResult(trigger=trigger)
            try:
                await self._cycle(result)
            except Exception as exc:
                self._internal_error(result, exc)
            return self._record(result, started)

    async def _cycle(self, result: CycleResult) -> None:
        # ── Gate ──
        if not self._config.enabled:
            result.outcome = CycleOutcome.BLOCKED
            result.message = "self-improvement is disabled"
            return
        if not self._breaker.can_execute():
            result.outcome = CycleOutcome.BLOCKED
            result.error = SelfImprovementErrorKind.CIRCUIT_BREAKER_OPEN
            result.message = (
                f"circuit breaker open, {self._breaker.remaining_cooldown():.0f}s until half-open trial"
            )
            return
        remaining = self._pause_remaining()
        if remaining > 0:
            result.outcome = CycleOutcome.BLOCKED
            result.error = SelfImprovementErrorKind.IN_COOLDOWN
            result.message = f"paused for {format_duration(timedelta(seconds=math.ceil(remaining)))}"
            return

        # ── Learn ──
        if self._in_flight is not None:
            result.phase = CyclePhase.LEARN
            await self._learn_in_flight(self._in_flight, result)
            return

        # ── Monitor ──
        result.phase = CyclePhase.MONITOR
        health = self._monitor.check_health()
        if health is None:
            result.outcome = CycleOutcome.INSUFFICIENT_DATA
            return
        if health.is_healthy:
            result.outcome = CycleOutcome.HEALTHY
            return

        # ── Retry ──
        if not self._config.require_approval and await self._retry_pending(health, result):
            return

        # ── Analyze ──
        result.phase = CyclePhase.ANALYZE
        try:
            analysis = await self._analyzer.analyze(health)
        except AnalysisBlocked as exc:
            result.outcome = CycleOutcome.BLOCKED
            result.error = exc.error_kind
            result.blocked_reason = exc.reason.value
            result.message = exc.detail
            return
        except AnalyzerFailedError as exc:
            result.outcome = CycleOutcome.FAILED
            result.error = exc.kind
            result.message = exc.message
            return

        diagnosis = analysis.diagnosis
        result.diagnosis_id = diagnosis.id
        await self._store.save_diagnosis(diagnosis)

        # ── Approval ──
        if self._config.require_approval and not isinstance(diagnosis.suggested_action, NoOp):
            result.phase = CyclePhase.APPROVAL
            result.outcome = CycleOutcome.AWAITING_APPROVAL
            result.message = diagnosis.suggested_action.describe()
            self._logger.info(
                "diagnosis_awaiting_approval",
                diagnosis_id=diagnosis.id,
                action=diagnosis.suggested_action.describe(),
            )
            return

        # ── Execute ──
        await self._execute(diagnosis, health.current_metrics, result)

    async def _retry_pending(self, health: HealthReport, result: CycleResult) -> bool:
        """
        Without operator approval, a diagnosis an earlier cycle could not
        execute (cooldown, rate limit, open breaker) is retried before a new
        one is made. Pending diagnoses whose trigger has cleared, or that a
        retry replaces, are rejected as superseded. Returns True when a
        retry ran.
        """
        waiting = self._store.pending()
        if not waiting:
            return False

        active = {t.metric_type for t in health.triggers}
        retry: SelfDiagnosis | None = None
        for diagnosis in reversed(waiting):
            if diagnosis.trigger.metric_type not in active:
                reason = f"superseded: {diagnosis.trigger.metric_type} trigger cleared"
            elif retry is None:
                retry = diagnosis
                continue
            else:
                reason = f"superseded by {retry.id}"
            diagnosis.transition(DiagnosisStatus.REJECTED, reason)
            await self._store.save_diagnosis(diagnosis)

        if retry is None:
            return False
        result.diagnosis_id = retry.id
        self._logger.info(
            "retrying_pending_diagnosis",
            diagnosis_id=retry.id,
            action=retry.suggested_action.describe(),
        )
        await self._execute(retry, health.current_metrics, result)
        return True

    async def _execute(
        self,
        diagnosis: SelfDiagnosis,
        pre_metrics: MetricsSnapshot,
        result: CycleResult,
    ) -> None:
        result.phase = CyclePhase.EXECUTE
        try:
            execution = await self._executor.execute(diagnosis, pre_metrics)
        except ExecutionBlocked as exc:
            if exc.reason == ExecutionBlockReason.NO_OP_ACTION:
                diagnosis.transition(DiagnosisStatus.REJECTED, f"no-op: {exc.detail}")
                await self._store.save_diagnosis(diagnosis)
                result.outcome = CycleOutcome.NO_OP
                result.message = exc.detail
                return
            if exc.reason == ExecutionBlockReason.NOT_ALLOWED:
                diagnosis.transition(DiagnosisStatus.REJECTED, f"not allowed: {exc.detail}")
                await self._store.save_diagnosis(diagnosis)
            result.outcome = CycleOutcome.BLOCKED
            result.error = exc.error_kind
            result.blocked_reason = exc.reason.value
            result.message = exc.detail
            return

        result.action_id = execution.action_id
        await self._store.save_action(execution)

        if execution.outcome == ExecutionOutcome.FAILED:
            diagnosis.transition(DiagnosisStatus.FAILED, execution.error_message)
            await self._store.save_diagnosis(diagnosis)
            result.outcome = CycleOutcome.FAILED
            result.error = SelfImprovementErrorKind.EXECUTOR_FAILED
            result.message = execution.error_message or ""
            return

        diagnosis.transition(DiagnosisStatus.EXECUTED)
        await self._store.save_diagnosis(diagnosis)
        await self._store.save_override(execution)
        self._in_flight = _InFlight(
            execution=execution, diagnosis=diagnosis, mark=self._monitor.total_events
        )
        result.outcome = CycleOutcome.EXECUTED
        result.message = execution.action.describe()

    async def _learn_in_flight(self, flight: _InFlight, result: CycleResult) -> None:
        result.diagnosis_id = flight.diagnosis.id
        result.action_id = flight.execution.action_id

        post = self._monitor.snapshot_since(flight.mark)
        try:
            outcome = await self._learner.learn(
                flight.execution,
                flight.diagnosis,
                post,
                self._monitor.reference_baselines(),
            )
        except LearningBlocked as exc:
            result.blocked_reason = exc.reason.value
            result.message = exc.detail
            if exc.reason == LearningBlockReason.INSUFFICIENT_SAMPLES:
                result.outcome = CycleOutcome.AWAITING_SAMPLES
                return
            self._in_flight = None
            result.outcome = CycleOutcome.BLOCKED
            return
        except LearnerFailedError as exc:
            # The action stays applied and can still be rolled back
            self._in_flight = None
            result.outcome = CycleOutcome.FAILED
            result.error = exc.kind
            result.message = exc.message
            self._logger.warning(
                "learning_abandoned", action_id=flight.execution.action_id, error=exc.message
            )
            return

        flight.execution.post_metrics = post
        await self._store.save_action(flight.execution)
        await self._store.save_learning(outcome)
        self._in_flight = None
        result.learning_id = outcome.id
        result.outcome = CycleOutcome.LEARNED
        result.message = f"reward {outcome.reward.value:+.3f} over {outcome.post_sample_count} samples"

    def _internal_error(self, result: CycleResult, exc: Exception) -> None:
        result.outcome = CycleOutcome.FAILED
        result.error = _PHASE_FAILURE.get(result.phase, SelfImprovementErrorKind.EXECUTOR_FAILED)
        result.message = str(exc)
        self._logger.error(
            "self_improvement_cycle_internal_error",
            cycle_id=result.cycle_id,
            phase=result.phase.value,
            error=str(exc),
            exc_info=True,
        )

    def _record(self, result: CycleResult, started: float) -> CycleResult:
        result.completed_at = utc_now()
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        self._history.append(result)
        self._cycle_times.append(result.duration_ms)
        self._total_cycles += 1
        self._outcome_counts[result.outcome.value] += 1
        if result.failed:
            self._failed_cycles += 1

        log = self._logger.debug if result.outcome in _QUIET_OUTCOMES else self._logger.info
        if result.outcome == CycleOutcome.FAILED:
            log = self._logger.warning
        log(
            "self_improvement_cycle_completed",
            cycle_id=result.cycle_id,
            trigger=result.trigger,
            phase=result.phase.value,
            outcome=result.outcome.value,
            error=result.error.value if result.error else None,
            blocked_reason=result.blocked_reason,
            duration_ms=result.duration_ms,
        )
        return result

    # ─── Timer & Manual Trigger ──────────────────────────────────────

    async def trigger_cycle(self) -> CycleResult:
        """Run a cycle now. Routed through the cycle task when it is running."""
        if not self.running:
            return await self.run_cycle("manual")
        waiter: asyncio.Future[CycleResult] = asyncio.get_running_loop().create_future()
        await self._triggers.put(waiter)
        return await waiter

    async def _cycle_loop(self) -> None:
        """Wake on the interval or on a manual trigger, whichever comes first."""
        interval = self._config.cycle_interval_s
        while True:
            try:
                waiter: asyncio.Future[CycleResult] | None = None
                try:
                    async with asyncio.timeout(interval):
                        waiter = await self._triggers.get()
                except TimeoutError:
                    waiter = None

                result = await self.run_cycle("timer" if waiter is None else "manual")
                if waiter is not None and not waiter.done():
                    waiter.set_result(result)
            except asyncio.CancelledError:
                return
            except Exception as exc:
                self._logger.warning("cycle_loop_error", error=str(exc))

    # ─── Operator Actions ────────────────────────────────────────────

    async def approve(self, diagnosis_id: str) -> CycleResult:
        """Execute a pending diagnosis's action now."""
        async with self._cycle_lock:
            diagnosis = self._actionable(diagnosis_id)
            if self._in_flight is not None:
                raise OperatorActionError(
                    f"action {self._in_flight.execution.action_id} is still being evaluated"
                )
            diagnosis.transition(DiagnosisStatus.APPROVED)
            await self._store.save_diagnosis(diagnosis)
            self._logger.info("diagnosis_approved", diagnosis_id=diagnosis_id)

            started = time.perf_counter()
            result = CycleResult(
                trigger="approval", phase=CyclePhase.APPROVAL, diagnosis_id=diagnosis.id
            )
            try:
                await self._execute(diagnosis, self._monitor.current_metrics(), result)
            except Exception as exc:
                self._internal_error(result, exc)
            return self._record(result, started)

    async def reject(self, diagnosis_id: str, reason: str | None = None) -> SelfDiagnosis:
        async with self._cycle_lock:
            diagnosis = self._actionable(diagnosis_id)
            diagnosis.transition(DiagnosisStatus.REJECTED, reason or "rejected by operator")
            await self._store.save_diagnosis(diagnosis)
            self._logger.info("diagnosis_rejected", diagnosis_id=diagnosis_id, reason=reason)
            return diagnosis

    async def pause(self, duration: timedelta) -> ControllerStatus:
        """Suspend cycles for ``duration``. A zero duration resumes."""
        async with self._cycle_lock:
            seconds = duration.total_seconds()
            if seconds <= 0:
                self._paused_until = None
                self._logger.info("self_improvement_resumed")
            else:
                self._paused_until = self._clock() + seconds
                self._logger.info("self_improvement_paused", duration=format_duration(duration))
        return self.status()

    async def rollback(self, action_id: str) -> ExecutionResult:
        """
        Restore the value an action replaced.

        Raises UnknownRecordError, RollbackRejected (the action is not in
        the success state) or ExecutorFailedError.
        """
        async with self._cycle_lock:
            execution = await self._executor.rollback_by_id(action_id)
            await self._store.save_action(execution)
            await self._store.save_override(execution, restored=True)

            diagnosis = self._store.get_diagnosis(execution.diagnosis_id)
            if diagnosis is not None:
                diagnosis.transition(DiagnosisStatus.ROLLED_BACK, "rolled back by operator")
                await self._store.save_diagnosis(diagnosis)
            if self._in_flight is not None and self._in_flight.execution.action_id == action_id:
                self._in_flight = None

            self._logger.info("operator_rollback", action_id=action_id)
            return execution

    def force_reset_breaker(self) -> dict[str, Any]:
        self._breaker.force_reset()
        self._logger.info("circuit_breaker_force_reset")
        return self._breaker.stats()

    def _actionable(self, diagnosis_id: str) -> SelfDiagnosis:
        diagnosis = self._store.get_diagnosis(diagnosis_id)
        if diagnosis is None:
            raise UnknownRecordError(f"unknown diagnosis {diagnosis_id}")
        if diagnosis.status not in (DiagnosisStatus.PENDING, DiagnosisStatus.APPROVED):
            raise OperatorActionError(
                f"diagnosis {diagnosis_id} is {diagnosis.status.value}, not pending"
            )
        return diagnosis

    def _pause_remaining(self) -> float:
        if self._paused_until is None:
            return 0.0
        remaining = self._paused_until - self._clock()
        if remaining <= 0:
            self._paused_until = None
            return 0.0
        return remaining

    def _in_flight_action_id(self) -> str | None:
        return self._in_flight.execution.action_id if self._in_flight is not None else None

    # ─── Read Surfaces ───────────────────────────────────────────────

    def status(self) -> ControllerStatus:
        remaining = self._pause_remaining()
        paused_until = utc_now() + timedelta(seconds=remaining) if remaining > 0 else None
        executor_stats = self._executor.stats
        last_report = self._monitor.last_report
        return ControllerStatus(
            enabled=self._config.enabled,
            running=self.running,
            paused_until=paused_until,
            pause_remaining=(
                format_duration(timedelta(seconds=math.ceil(remaining))) if remaining else None
            ),
            circuit_state=self._breaker.state.value,
            circuit=self._breaker.stats(),
            pending_diagnoses=self._store.pending(),
            in_flight_action_id=self._in_flight_action_id(),
            total_cycles=self._total_cycles,
            failed_cycles=self._failed_cycles,
            outcome_counts=dict(self._outcome_counts),
            total_actions_executed=executor_stats["total_succeeded"],
            total_actions_rolled_back=executor_stats["total_rolled_back"],
            total_invocations=self._monitor.total_events,
            current_metrics=last_report.current_metrics if last_report is not None else None,
            last_cycle=self._history[-1] if self._history else None,
            recent_learnings=self._learner.recent(self._config.recent_learnings),
            learning_summary=self._learner.summary(),
        )

    def history(
        self, limit: int = 10, outcome: ExecutionOutcome | None = None
    ) -> dict[str, Any]:
        """Executed actions, newest first, with their reward once learned."""
        rewards = {
            o.action_id: o.reward.value
            for o in self._store.learnings(limit=self._config.learner.max_outcomes)
        }
        matching = self._store.actions(limit=self._config.max_history, outcome=outcome)
        return {
            "actions": [
                {
                    "id": r.action_id,
                    "diagnosis_id": r.diagnosis_id,
                    "action_type": r.action_type,
                    "action": r.action.describe(),
                    "outcome": r.outcome.value,
                    "execution_time_ms": r.execution_time_ms,
                    "error_message": r.error_message,
                    "created_at": r.created_at.isoformat(),
                    "reward": rewards.get(r.action_id),
                }
                for r in matching[:limit]
            ],
            "total_count": len(matching),
        }

    def cycles(self, limit: int = 20) -> list[CycleResult]:
        """Newest first."""
        return list(self._history)[::-1][:limit]

    def diagnostics(self, verbose: bool = False) -> dict[str, Any]:
        issues: list[str] = []
        if self._breaker.state == CircuitState.OPEN:
            issues.append("circuit breaker is open")
        if self._pause_remaining() > 0:
            issues.append("automated improvement is paused")
        report = self._monitor.last_report
        if report is not None:
            issues.extend(t.describe() for t in report.triggers)
        pending = self._store.pending_count()
        if pending >= self._config.analyzer.max_pending:
            issues.append(f"{pending} diagnoses awaiting approval")

        if self._breaker.state == CircuitState.OPEN:
            status = "suspended"
        elif issues:
            status = "degraded"
        else:
            status = "healthy"

        cycle_times = list(self._cycle_times)
        executed = [r.execution_time_ms for r in self._executor.history(limit=200)]
        data: dict[str, Any] = {
            "health": {
                "status": status,
                "score": round(max(0.0, 1.0 - 0.25 * len(issues)), 2),
                "issues": issues,
            },
            "recent_errors": [
                f"{r.cycle_id} {r.error.value}: {r.message}"
                for r in self.cycles(limit=self._config.max_history)
                if r.error is not None
            ][:10],
            "performance": {
                "avg_cycle_time_ms": round(sum(cycle_times) / len(cycle_times), 1)
                if cycle_times
                else 0.0,
                "avg_execution_time_ms": round(sum(executed) / len(executed), 1)
                if executed
                else 0.0,
            },
        }
        if verbose:
            data["components"] = {
                "monitor": self._monitor.stats,
                "analyzer": self._analyzer.stats,
                "executor": self._executor.stats,
                "learner": self._learner.summary(),
                "circuit_breaker": self._breaker.stats(),
                "store": self._store.stats,
            }
            data["dropped_invocations"] = self._dropped_invocations
            data["recent_cycles"] = [
                c.model_dump(mode="json") for c in self.cycles(limit=10)
            ]
        return data

    def config_view(self) -> dict[str, Any]:
        cfg = self._config
        return {
            "enabled": cfg.enabled,
            "require_approval": cfg.require_approval,
            "cycle_interval_s": cfg.cycle_interval_s,
            "monitor": cfg.monitor.model_dump(mode="json"),
            "analyzer": cfg.analyzer.model_dump(mode="json"),
            "executor": cfg.executor.model_dump(mode="json"),
            "learner": cfg.learner.model_dump(mode="json"),
            "circuit_breaker": cfg.circuit_breaker.model_dump(mode="json"),
            "allowlist": self._allowlist.to_dict(),
            "runtime": self._runtime.snapshot(),
            "overrides": self._store.overrides(),
        }

    def circuit_breaker(self) -> dict[str, Any]:
        return self._breaker.stats()

    def baselines(self) -> dict[str, Any]:
        return self._monitor.baselines()

    # ─── Health ──────────────────────────────────────────────────────

    async def health(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self._initialized else "not_initialized",
            "initialized": self._initialized,
            "running": self.running,
            "circuit_state": self._breaker.state.value,
            "in_flight_action_id": self._in_flight_action_id(),
            "total_cycles": self._total_cycles,
            "failed_cycles": self._failed_cycles,
        }

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "total_cycles": self._total_cycles,
            "failed_cycles": self._failed_cycles,
            "outcome_counts": dict(self._outcome_counts),
            "total_invocations": self._monitor.total_events,
            "circuit_state": self._breaker.state.value,
        }
