"""
Autonomic — Analyzer

Turns a HealthReport into a pending SelfDiagnosis. Gated by the circuit
breaker, the trigger set, a minimum severity and the approval backlog,
then asks the advisor for a diagnosis, an action and a review of that
action. Every advisor call runs under its own timeout. The breaker lock
is never held across those calls.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING, Any, NoReturn, TypeVar

import structlog

from autonomic.systems.self_improvement.errors import (
    AnalysisBlocked,
    AnalysisBlockReason,
    AnalyzerFailedError,
)
from autonomic.systems.self_improvement.types import (
    AnalysisResult,
    AnalyzerStats,
    NoOp,
    SelfDiagnosis,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from autonomic.config import AnalyzerConfig
    from autonomic.systems.self_improvement.advisor import ImprovementAdvisor
    from autonomic.systems.self_improvement.circuit_breaker import CircuitBreaker
    from autonomic.systems.self_improvement.types import HealthReport, TriggerMetric

logger = structlog.get_logger()

T = TypeVar("T")


class Analyzer:
    def __init__(
        self,
        config: AnalyzerConfig,
        breaker: CircuitBreaker,
        advisor: ImprovementAdvisor,
        pending_count: Callable[[], int],
    ) -> None:
        self._config = config
        self._breaker = breaker
        self._advisor = advisor
        self._pending_count = pending_count
        self._logger = logger.bind(system="self_improvement", component="analyzer")

        self._total_analyses: int = 0
        self._total_failures: int = 0
        self._total_tokens: int = 0
        self._blocked: Counter[str] = Counter()

    async def analyze(self, health: HealthReport) -> AnalysisResult:
        """
        Raises AnalysisBlocked when a gate declines, AnalyzerFailedError when
        the advisor fails or times out.
        """
        primary = self._gate(health)

        started = time.monotonic()
        try:
            content = await self._call("generate_diagnosis", self._advisor.generate_diagnosis(health))
            selection = await self._call("select_action", self._advisor.select_action(content, health))
            action = selection.action
            rationale = selection.rationale
            tokens = content.tokens_used + selection.tokens_used

            if self._config.validate_actions and not isinstance(action, NoOp):
                verdict = await self._call(
                    "validate_decision", self._advisor.validate_decision(action, content)
                )
                tokens += verdict.tokens_used
                if not verdict.approved:
                    self._logger.info(
                        "action_rejected_by_review",
                        action=action.action,
                        risk_level=verdict.risk_level,
                        reasoning=verdict.reasoning,
                    )
                    action = NoOp(
                        reason=f"review rejected {action.describe()}: {verdict.reasoning}",
                        revisit_after=timedelta(hours=1),
                    )
                    rationale = verdict.reasoning
        except AnalyzerFailedError as exc:
            self._total_failures += 1
            self._breaker.record_failure()
            self._logger.warning("analysis_failed", error=exc.message)
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self._total_analyses += 1
        self._total_tokens += tokens

        diagnosis = SelfDiagnosis(
            trigger=primary,
            severity=primary.severity(),
            description=content.description,
            suspected_cause=content.suspected_cause,
            suggested_action=action,
            action_rationale=rationale,
            evidence=content.evidence,
            confidence=content.confidence,
            tokens_used=tokens,
        )
        self._logger.info(
            "diagnosis_created",
            diagnosis_id=diagnosis.id,
            trigger=primary.metric_type,
            severity=diagnosis.severity.value,
            action=action.action,
            analysis_time_ms=elapsed_ms,
            tokens_used=tokens,
        )
        return AnalysisResult(
            diagnosis=diagnosis,
            stats=AnalyzerStats(analysis_time_ms=elapsed_ms, tokens_used=tokens),
        )

    def _gate(self, health: HealthReport) -> TriggerMetric:
        """Returns the primary trigger the diagnosis is built around."""
        if not self._breaker.can_execute():
            self._block(AnalysisBlockReason.CIRCUIT_OPEN, "circuit breaker is open")
        primary = health.primary_trigger()
        if primary is None:
            self._block(AnalysisBlockReason.NO_TRIGGERS)
        severity = health.max_severity()
        if severity is None or severity < self._config.min_severity:
            self._block(
                AnalysisBlockReason.SEVERITY_TOO_LOW,
                f"{severity} below {self._config.min_severity.value}",
            )
        pending = self._pending_count()
        if pending >= self._config.max_pending:
            self._block(
                AnalysisBlockReason.MAX_PENDING_REACHED,
                f"{pending} diagnoses awaiting approval",
            )
        return primary

    def _block(self, reason: AnalysisBlockReason, detail: str = "") -> NoReturn:
        self._blocked[reason.value] += 1
        raise AnalysisBlocked(reason, detail)

    async def _call(self, stage: str, call: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self._config.collaborator_timeout_s):
                return await call
        except TimeoutError as exc:
            raise AnalyzerFailedError(
                f"{stage} timed out after {self._config.collaborator_timeout_s}s"
            ) from exc
        except Exception as exc:
            raise AnalyzerFailedError(f"{stage} failed: {exc}") from exc

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_analyses": self._total_analyses,
            "total_failures": self._total_failures,
            "total_tokens": self._total_tokens,
            "blocked": dict(self._blocked),
        }
