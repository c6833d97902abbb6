"""
Autonomic — Learner

Measures whether an executed action helped. The reward compares pre- and
post-action snapshots, weighted toward the metric that triggered the
diagnosis; the advisor then turns the outcome into lessons.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING, Any

import structlog

from autonomic.primitives.common import clamp
from autonomic.systems.self_improvement.errors import (
    LearnerFailedError,
    LearningBlocked,
    LearningBlockReason,
)
from autonomic.systems.self_improvement.types import (
    ExecutionOutcome,
    LearningOutcome,
    NormalizedReward,
    RewardBreakdown,
)

if TYPE_CHECKING:
    from autonomic.config import LearnerConfig, RewardWeights
    from autonomic.systems.self_improvement.advisor import ImprovementAdvisor
    from autonomic.systems.self_improvement.circuit_breaker import CircuitBreaker
    from autonomic.systems.self_improvement.types import (
        BaselineSnapshot,
        ExecutionResult,
        MetricsSnapshot,
        SelfDiagnosis,
    )

logger = structlog.get_logger()


# ─── Reward ───────────────────────────────────────────────────────


def _lower_is_better(pre: float, post: float) -> float:
    if pre <= 0.0:
        return -1.0 if post > 0.0 else 0.0
    return clamp((pre - post) / pre, -1.0, 1.0)


def _higher_is_better(pre: float, post: float) -> float:
    if pre <= 0.0:
        return 1.0 if post > 0.0 else 0.0
    return clamp((post - pre) / pre, -1.0, 1.0)


def reward_confidence(samples: int) -> float:
    """Grows monotonically with sample count, approaching 1."""
    return clamp(1.0 - 1.0 / (1.0 + max(0, samples) / 100.0), 0.0, 1.0)


def compute_reward(
    pre: MetricsSnapshot,
    post: MetricsSnapshot,
    weights: RewardWeights,
    samples: int,
) -> NormalizedReward:
    breakdown = RewardBreakdown(
        error_rate_component=_lower_is_better(pre.error_rate, post.error_rate),
        latency_component=_lower_is_better(float(pre.latency_p95_ms), float(post.latency_p95_ms)),
        quality_component=_higher_is_better(pre.quality_score, post.quality_score),
    )
    value = (
        weights.error_rate * breakdown.error_rate_component
        + weights.latency * breakdown.latency_component
        + weights.quality * breakdown.quality_component
    )
    return NormalizedReward(
        value=clamp(value, -1.0, 1.0),
        breakdown=breakdown,
        confidence=reward_confidence(samples),
    )


def _recovered(trigger_type: str, post: MetricsSnapshot, baselines: BaselineSnapshot) -> bool:
    if trigger_type == "error_rate":
        return post.error_rate <= baselines.error_rate
    if trigger_type == "latency":
        return post.latency_p95_ms <= baselines.latency_p95_ms
    return post.quality_score >= baselines.quality_score


# ─── Learner ──────────────────────────────────────────────────────


class Learner:
    def __init__(
        self,
        config: LearnerConfig,
        advisor: ImprovementAdvisor,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._config = config
        self._advisor = advisor
        self._breaker = breaker
        self._logger = logger.bind(system="self_improvement", component="learner")

        self._outcomes: deque[LearningOutcome] = deque(maxlen=config.max_outcomes)
        # action_type -> [executions, positive, reward_sum]
        self._by_action: dict[str, list[float]] = {}
        self._total_failures: int = 0

    def weights_for(self, trigger_type: str) -> RewardWeights:
        return self._config.weights.get(trigger_type, self._config.default_weights)

    async def learn(
        self,
        execution: ExecutionResult,
        diagnosis: SelfDiagnosis,
        post_metrics: MetricsSnapshot,
        baselines: BaselineSnapshot,
    ) -> LearningOutcome:
        if execution.outcome == ExecutionOutcome.PENDING:
            raise LearningBlocked(
                LearningBlockReason.EXECUTION_NOT_COMPLETED,
                f"action {execution.action_id} is still pending",
            )
        samples = post_metrics.invocation_count
        if samples < self._config.min_post_samples:
            raise LearningBlocked(
                LearningBlockReason.INSUFFICIENT_SAMPLES,
                f"{samples}/{self._config.min_post_samples} post-action samples",
            )

        trigger_type = diagnosis.trigger.metric_type
        reward = compute_reward(
            execution.pre_metrics, post_metrics, self.weights_for(trigger_type), samples
        )
        outcome = LearningOutcome(
            action_id=execution.action_id,
            diagnosis_id=diagnosis.id,
            trigger_type=trigger_type,
            action_type=execution.action_type,
            execution_outcome=execution.outcome,
            reward=reward,
            pre_metrics=execution.pre_metrics,
            post_metrics=post_metrics,
            post_sample_count=samples,
            recovered=_recovered(trigger_type, post_metrics, baselines),
        )

        try:
            async with asyncio.timeout(self._config.collaborator_timeout_s):
                synthesis = await self._advisor.synthesize_learning(outcome)
        except TimeoutError as exc:
            self._fail()
            raise LearnerFailedError(
                f"synthesize_learning timed out after {self._config.collaborator_timeout_s}s"
            ) from exc
        except Exception as exc:
            self._fail()
            raise LearnerFailedError(f"synthesize_learning failed: {exc}") from exc

        outcome.lessons = synthesis.lessons
        outcome.future_recommendations = synthesis.future_recommendations
        outcome.pattern = synthesis.pattern
        outcome.synthesis_confidence = synthesis.confidence

        self._outcomes.append(outcome)
        stats = self._by_action.setdefault(outcome.action_type, [0, 0, 0.0])
        stats[0] += 1
        stats[1] += 1 if reward.is_positive() else 0
        stats[2] += reward.value

        self._logger.info(
            "learning_recorded",
            action_id=execution.action_id,
            trigger=trigger_type,
            reward=round(reward.value, 3),
            confidence=round(reward.confidence, 3),
            significant=reward.is_significant(self._config.significance_threshold),
            recovered=outcome.recovered,
            lessons=len(outcome.lessons),
        )
        return outcome

    def _fail(self) -> None:
        self._total_failures += 1
        if self._breaker is not None:
            self._breaker.record_failure()

    # ─── Introspection ─────────────────────────────────────────────

    def recent(self, limit: int = 10) -> list[LearningOutcome]:
        """Newest first."""
        return list(self._outcomes)[::-1][:limit]

    def summary(self) -> dict[str, Any]:
        total = len(self._outcomes)
        average = sum(o.reward.value for o in self._outcomes) / total if total else 0.0
        return {
            "total_lessons": sum(len(o.lessons) for o in self._outcomes),
            "total_outcomes": total,
            "average_reward": round(average, 4),
            "failures": self._total_failures,
            "by_action_type": {
                action_type: {
                    "executions": int(count),
                    "positive": int(positive),
                    "average_reward": round(reward_sum / count, 4) if count else 0.0,
                }
                for action_type, (count, positive, reward_sum) in sorted(self._by_action.items())
            },
        }
