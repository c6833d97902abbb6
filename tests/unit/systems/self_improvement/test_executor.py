"""
Tests for the Executor.

Covers:
  - Gate order: breaker, no-op, cooldown, rate limit, allowlist
  - Applying parameter and resource changes to RuntimeConfig
  - Failed mutations returned as FAILED results
  - Rollback of successful actions only, including scoped overrides
  - Bounded record history
"""

from __future__ import annotations

import pytest

from autonomic.config import AllowlistConfig, CircuitBreakerConfig, ExecutorConfig
from autonomic.systems.self_improvement.allowlist import Allowlist
from autonomic.systems.self_improvement.circuit_breaker import CircuitBreaker, CircuitState
from autonomic.systems.self_improvement.errors import (
    ExecutionBlocked,
    ExecutionBlockReason,
    RollbackRejected,
    SelfImprovementErrorKind,
    UnknownRecordError,
)
from autonomic.systems.self_improvement.executor import Executor
from autonomic.systems.self_improvement.runtime_config import RuntimeConfig
from autonomic.systems.self_improvement.types import (
    AdjustParam,
    ConfigScope,
    ErrorRateTrigger,
    ExecutionOutcome,
    IntegerValue,
    MetricsSnapshot,
    NoOp,
    ResourceType,
    ScaleResource,
    SelfDiagnosis,
    Severity,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 10_000.0

    def __call__(self) -> float:
        return self.now


def _make_diagnosis(action=None) -> SelfDiagnosis:
    return SelfDiagnosis(
        trigger=ErrorRateTrigger(observed=0.10, baseline=0.04, threshold=0.05),
        severity=Severity.CRITICAL,
        description="retry budget exhausted",
        suggested_action=action
        or AdjustParam(
            key="max_retries", old_value=IntegerValue(value=3), new_value=IntegerValue(value=5)
        ),
    )


class _Harness:
    def __init__(self, max_records: int = 1_000, **executor_config) -> None:
        self.clock = FakeClock()
        self.breaker = CircuitBreaker(CircuitBreakerConfig(), clock=self.clock)
        self.runtime = RuntimeConfig(
            parameters={"max_retries": IntegerValue(value=3)},
            resources={ResourceType.MAX_CONCURRENT_REQUESTS: 10},
        )
        self.executor = Executor(
            ExecutorConfig(**executor_config),
            Allowlist(AllowlistConfig()),
            self.breaker,
            self.runtime,
            clock=self.clock,
            max_records=max_records,
        )

    async def execute(self, action=None):
        return await self.executor.execute(_make_diagnosis(action), MetricsSnapshot(error_rate=0.1))


async def _blocked_reason(harness: _Harness, action=None) -> ExecutionBlocked:
    with pytest.raises(ExecutionBlocked) as exc_info:
        await harness.execute(action)
    return exc_info.value


# ─── Execution ───────────────────────────────────────────────────


class TestExecute:
    @pytest.mark.asyncio
    async def test_adjust_param(self):
        h = _Harness()
        result = await h.execute()

        assert result.outcome == ExecutionOutcome.SUCCESS
        assert result.previous_param == IntegerValue(value=3)
        assert result.completed_at is not None
        assert h.runtime.get_param("max_retries") == IntegerValue(value=5)
        assert h.executor.get(result.action_id) is result

    @pytest.mark.asyncio
    async def test_scale_resource(self):
        h = _Harness()
        action = ScaleResource(
            resource=ResourceType.MAX_CONCURRENT_REQUESTS, old_value=10, new_value=20
        )
        result = await h.execute(action)

        assert result.outcome == ExecutionOutcome.SUCCESS
        assert result.previous_resource == 10
        assert h.runtime.get_resource(ResourceType.MAX_CONCURRENT_REQUESTS) == 20

    @pytest.mark.asyncio
    async def test_failed_mutation_returns_failed_result(self):
        h = _Harness()
        # Allowed by the allowlist but never provisioned in RuntimeConfig
        action = ScaleResource(resource=ResourceType.CACHE_SIZE, old_value=1_000, new_value=1_500)
        result = await h.execute(action)

        assert result.outcome == ExecutionOutcome.FAILED
        assert "not available" in result.error_message
        assert h.executor.stats["total_failed"] == 1
        assert h.breaker.stats()["consecutive_failures"] == 1


# ─── Gates ───────────────────────────────────────────────────────


class TestGates:
    @pytest.mark.asyncio
    async def test_open_breaker(self):
        h = _Harness()
        h.breaker.trip()
        blocked = await _blocked_reason(h)
        assert blocked.reason == ExecutionBlockReason.CIRCUIT_OPEN
        assert blocked.error_kind == SelfImprovementErrorKind.CIRCUIT_BREAKER_OPEN

    @pytest.mark.asyncio
    async def test_noop_never_executes(self):
        h = _Harness()
        blocked = await _blocked_reason(h, NoOp(reason="wait and see"))
        assert blocked.reason == ExecutionBlockReason.NO_OP_ACTION
        assert blocked.error_kind is None

    @pytest.mark.asyncio
    async def test_cooldown_after_action(self):
        h = _Harness(cooldown_s=60)
        await h.execute()

        h.clock.now += 30
        blocked = await _blocked_reason(h)
        assert blocked.reason == ExecutionBlockReason.COOLDOWN_ACTIVE
        assert blocked.error_kind == SelfImprovementErrorKind.IN_COOLDOWN

        h.clock.now += 30
        result = await h.execute(
            AdjustParam(
                key="max_retries",
                old_value=IntegerValue(value=5),
                new_value=IntegerValue(value=6),
            )
        )
        assert result.outcome == ExecutionOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        h = _Harness(cooldown_s=0, max_actions_per_window=2, rate_window_s=3600)
        await h.execute()
        await h.execute()

        blocked = await _blocked_reason(h)
        assert blocked.reason == ExecutionBlockReason.RATE_LIMIT_EXCEEDED

        h.clock.now += 3601
        result = await h.execute()
        assert result.outcome == ExecutionOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_allowlist_rejection_counts_as_failure(self):
        h = _Harness()
        action = AdjustParam(
            key="max_retries", old_value=IntegerValue(value=3), new_value=IntegerValue(value=50)
        )
        blocked = await _blocked_reason(h, action)

        assert blocked.reason == ExecutionBlockReason.NOT_ALLOWED
        assert "outside" in blocked.detail
        assert h.runtime.get_param("max_retries") == IntegerValue(value=3)
        assert h.breaker.stats()["consecutive_failures"] == 1

    @pytest.mark.asyncio
    async def test_repeated_rejections_open_breaker(self):
        h = _Harness()
        action = AdjustParam(
            key="unknown_knob", old_value=IntegerValue(value=1), new_value=IntegerValue(value=2)
        )
        for _ in range(3):
            await _blocked_reason(h, action)
        assert h.breaker.state == CircuitState.OPEN


# ─── Rollback ────────────────────────────────────────────────────


class TestRollback:
    @pytest.mark.asyncio
    async def test_rollback_restores_previous_value(self):
        h = _Harness()
        result = await h.execute()

        rolled = await h.executor.rollback_by_id(result.action_id)

        assert rolled.outcome == ExecutionOutcome.ROLLED_BACK
        assert h.runtime.get_param("max_retries") == IntegerValue(value=3)
        assert h.executor.stats["total_rolled_back"] == 1

    @pytest.mark.asyncio
    async def test_rollback_of_inherited_scope_removes_override(self):
        h = _Harness()
        scope = ConfigScope.for_tool("search")
        action = AdjustParam(
            key="max_retries",
            scope=scope,
            old_value=IntegerValue(value=3),
            new_value=IntegerValue(value=5),
        )
        result = await h.execute(action)
        assert result.previous_param_inherited
        assert h.runtime.get_param("max_retries", scope) == IntegerValue(value=5)

        await h.executor.rollback_by_id(result.action_id)

        assert "tool:search" not in h.runtime.snapshot()["parameters"]
        # The scope follows later global changes again
        h.runtime.set_param("max_retries", IntegerValue(value=4))
        assert h.runtime.get_param("max_retries", scope) == IntegerValue(value=4)

    @pytest.mark.asyncio
    async def test_rollback_of_existing_scope_restores_its_value(self):
        h = _Harness()
        scope = ConfigScope.for_tool("search")
        h.runtime.set_param("max_retries", IntegerValue(value=4), scope)
        action = AdjustParam(
            key="max_retries",
            scope=scope,
            old_value=IntegerValue(value=4),
            new_value=IntegerValue(value=6),
        )
        result = await h.execute(action)
        assert not result.previous_param_inherited

        await h.executor.rollback_by_id(result.action_id)

        assert h.runtime.get_param("max_retries", scope) == IntegerValue(value=4)
        assert h.runtime.get_param("max_retries") == IntegerValue(value=3)

    @pytest.mark.asyncio
    async def test_rollback_restores_resource(self):
        h = _Harness()
        action = ScaleResource(
            resource=ResourceType.MAX_CONCURRENT_REQUESTS, old_value=10, new_value=25
        )
        result = await h.execute(action)
        await h.executor.rollback_by_id(result.action_id)
        assert h.runtime.get_resource(ResourceType.MAX_CONCURRENT_REQUESTS) == 10

    @pytest.mark.asyncio
    async def test_rollback_of_failed_action_rejected(self):
        h = _Harness()
        action = ScaleResource(resource=ResourceType.CACHE_SIZE, old_value=1_000, new_value=1_500)
        result = await h.execute(action)

        with pytest.raises(RollbackRejected):
            await h.executor.rollback_by_id(result.action_id)

    @pytest.mark.asyncio
    async def test_double_rollback_rejected(self):
        h = _Harness()
        result = await h.execute()
        await h.executor.rollback_by_id(result.action_id)
        with pytest.raises(RollbackRejected):
            await h.executor.rollback_by_id(result.action_id)

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        with pytest.raises(UnknownRecordError):
            await _Harness().executor.rollback_by_id("missing")


class TestHistory:
    @pytest.mark.asyncio
    async def test_filter_by_outcome(self):
        h = _Harness(cooldown_s=0)
        ok = await h.execute()
        failed = await h.execute(
            ScaleResource(resource=ResourceType.CACHE_SIZE, old_value=1_000, new_value=1_500)
        )

        assert [r.action_id for r in h.executor.history(outcome=ExecutionOutcome.SUCCESS)] == [
            ok.action_id
        ]
        assert [r.action_id for r in h.executor.history(outcome=ExecutionOutcome.FAILED)] == [
            failed.action_id
        ]
        assert len(h.executor.history(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_records_are_capped(self):
        h = _Harness(max_records=2, cooldown_s=0)
        first = await h.execute()
        await h.execute()
        await h.execute()

        assert h.executor.get(first.action_id) is None
        assert len(h.executor.history(limit=10)) == 2
