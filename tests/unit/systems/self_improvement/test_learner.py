"""
Tests for reward computation and the Learner.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from autonomic.config import LearnerConfig, RewardWeights
from autonomic.systems.self_improvement.errors import (
    LearnerFailedError,
    LearningBlocked,
    LearningBlockReason,
)
from autonomic.systems.self_improvement.learner import (
    Learner,
    compute_reward,
    reward_confidence,
)
from autonomic.systems.self_improvement.types import (
    AdjustParam,
    BaselineSnapshot,
    ErrorRateTrigger,
    ExecutionOutcome,
    ExecutionResult,
    IntegerValue,
    LearningSynthesis,
    MetricsSnapshot,
    SelfDiagnosis,
    Severity,
)


# ─── Helpers ─────────────────────────────────────────────────────


def _make_action() -> AdjustParam:
    return AdjustParam(
        key="max_retries", old_value=IntegerValue(value=3), new_value=IntegerValue(value=5)
    )


def _make_diagnosis() -> SelfDiagnosis:
    return SelfDiagnosis(
        trigger=ErrorRateTrigger(observed=0.10, baseline=0.04, threshold=0.05),
        severity=Severity.CRITICAL,
        description="retry budget exhausted",
        suggested_action=_make_action(),
    )


def _make_execution(
    diagnosis: SelfDiagnosis, outcome: ExecutionOutcome = ExecutionOutcome.SUCCESS
) -> ExecutionResult:
    return ExecutionResult(
        diagnosis_id=diagnosis.id,
        action=diagnosis.suggested_action,
        outcome=outcome,
        pre_metrics=MetricsSnapshot(error_rate=0.10, latency_p95_ms=200, quality_score=0.9),
    )


def _post(error_rate: float = 0.05, samples: int = 50) -> MetricsSnapshot:
    return MetricsSnapshot(
        error_rate=error_rate, latency_p95_ms=200, quality_score=0.9, invocation_count=samples
    )


def _make_advisor() -> MagicMock:
    advisor = MagicMock()
    advisor.synthesize_learning = AsyncMock(
        return_value=LearningSynthesis(
            lessons=["more retries absorb transient failures"],
            future_recommendations=["try this first for error-rate drift"],
            pattern="retry_budget",
            confidence=0.7,
        )
    )
    return advisor


_BASELINES = BaselineSnapshot(error_rate=0.04, latency_p95_ms=200.0, quality_score=0.9)


# ─── Reward ──────────────────────────────────────────────────────


class TestReward:
    def test_confidence_grows_with_samples(self):
        assert reward_confidence(0) == 0.0
        assert reward_confidence(100) == pytest.approx(0.5)
        assert reward_confidence(10) < reward_confidence(50) < reward_confidence(500) < 1.0

    def test_improvement_is_positive(self):
        reward = compute_reward(
            MetricsSnapshot(error_rate=0.10, latency_p95_ms=200),
            MetricsSnapshot(error_rate=0.05, latency_p95_ms=200),
            RewardWeights(error_rate=0.6, latency=0.2, quality=0.2),
            samples=50,
        )
        assert reward.breakdown.error_rate_component == pytest.approx(0.5)
        assert reward.breakdown.latency_component == 0.0
        assert reward.value == pytest.approx(0.3)
        assert reward.is_positive()

    def test_regression_is_negative(self):
        reward = compute_reward(
            MetricsSnapshot(latency_p95_ms=200),
            MetricsSnapshot(latency_p95_ms=400),
            RewardWeights(error_rate=0.2, latency=0.6, quality=0.2),
            samples=50,
        )
        assert reward.breakdown.latency_component == -1.0
        assert reward.value == pytest.approx(-0.6)

    def test_deterministic(self):
        args = (
            MetricsSnapshot(error_rate=0.2, latency_p95_ms=300, quality_score=0.7),
            MetricsSnapshot(error_rate=0.1, latency_p95_ms=250, quality_score=0.8),
            RewardWeights(),
            30,
        )
        assert compute_reward(*args) == compute_reward(*args)

    def test_zero_pre_values(self):
        reward = compute_reward(
            MetricsSnapshot(error_rate=0.0, latency_p95_ms=0),
            MetricsSnapshot(error_rate=0.1, latency_p95_ms=0),
            RewardWeights(error_rate=1.0, latency=0.0, quality=0.0),
            samples=10,
        )
        assert reward.value == -1.0


# ─── Learner ─────────────────────────────────────────────────────


class TestLearner:
    @pytest.mark.asyncio
    async def test_positive_outcome_recorded(self):
        breaker = MagicMock()
        learner = Learner(LearnerConfig(), _make_advisor(), breaker)
        diagnosis = _make_diagnosis()

        outcome = await learner.learn(_make_execution(diagnosis), diagnosis, _post(), _BASELINES)

        assert outcome.reward.is_positive()
        assert outcome.trigger_type == "error_rate"
        assert outcome.action_type == "adjust_param"
        assert outcome.post_sample_count == 50
        assert outcome.lessons == ["more retries absorb transient failures"]
        assert outcome.pattern == "retry_budget"
        assert not outcome.recovered
        breaker.record_success.assert_not_called()
        assert learner.recent() == [outcome]

    @pytest.mark.asyncio
    async def test_recovered_when_back_at_baseline(self):
        learner = Learner(LearnerConfig(), _make_advisor())
        diagnosis = _make_diagnosis()
        outcome = await learner.learn(
            _make_execution(diagnosis), diagnosis, _post(error_rate=0.03), _BASELINES
        )
        assert outcome.recovered

    @pytest.mark.asyncio
    async def test_pending_execution_blocked(self):
        learner = Learner(LearnerConfig(), _make_advisor())
        diagnosis = _make_diagnosis()
        with pytest.raises(LearningBlocked) as exc_info:
            await learner.learn(
                _make_execution(diagnosis, ExecutionOutcome.PENDING),
                diagnosis,
                _post(),
                _BASELINES,
            )
        assert exc_info.value.reason == LearningBlockReason.EXECUTION_NOT_COMPLETED

    @pytest.mark.asyncio
    async def test_insufficient_samples_blocked(self):
        advisor = _make_advisor()
        learner = Learner(LearnerConfig(min_post_samples=10), advisor)
        diagnosis = _make_diagnosis()
        with pytest.raises(LearningBlocked) as exc_info:
            await learner.learn(
                _make_execution(diagnosis), diagnosis, _post(samples=9), _BASELINES
            )
        assert exc_info.value.reason == LearningBlockReason.INSUFFICIENT_SAMPLES
        advisor.synthesize_learning.assert_not_called()

    @pytest.mark.asyncio
    async def test_advisor_failure(self):
        advisor = _make_advisor()
        advisor.synthesize_learning = AsyncMock(side_effect=RuntimeError("boom"))
        breaker = MagicMock()
        learner = Learner(LearnerConfig(), advisor, breaker)
        diagnosis = _make_diagnosis()

        with pytest.raises(LearnerFailedError, match="synthesize_learning failed"):
            await learner.learn(_make_execution(diagnosis), diagnosis, _post(), _BASELINES)

        breaker.record_failure.assert_called_once()
        assert learner.recent() == []
        assert learner.summary()["failures"] == 1

    def test_weights_fall_back_to_default(self):
        config = LearnerConfig()
        learner = Learner(config, _make_advisor())
        assert learner.weights_for("latency").latency == 0.6
        assert learner.weights_for("something_else") == config.default_weights

    @pytest.mark.asyncio
    async def test_summary_by_action_type(self):
        learner = Learner(LearnerConfig(), _make_advisor())
        diagnosis = _make_diagnosis()
        await learner.learn(_make_execution(diagnosis), diagnosis, _post(0.05), _BASELINES)
        await learner.learn(_make_execution(diagnosis), diagnosis, _post(0.20), _BASELINES)

        summary = learner.summary()
        assert summary["total_outcomes"] == 2
        assert summary["total_lessons"] == 2
        by_type = summary["by_action_type"]["adjust_param"]
        assert by_type["executions"] == 2
        assert by_type["positive"] == 1
