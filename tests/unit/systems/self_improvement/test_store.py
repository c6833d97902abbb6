"""
Tests for SelfImprovementStore.

Covers:
  - Bounded diagnosis and action maps, open diagnoses never evicted
  - Config override records, including a rollback to an inherited value
  - Write-through to Postgres and swallowed persistence failures
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from autonomic.systems.self_improvement.store import SelfImprovementStore
from autonomic.systems.self_improvement.types import (
    AdjustParam,
    ConfigScope,
    DiagnosisStatus,
    ErrorRateTrigger,
    ExecutionOutcome,
    ExecutionResult,
    IntegerValue,
    MetricsSnapshot,
    SelfDiagnosis,
    Severity,
)


# ─── Helpers ─────────────────────────────────────────────────────


def _make_diagnosis(status: DiagnosisStatus = DiagnosisStatus.PENDING) -> SelfDiagnosis:
    diagnosis = SelfDiagnosis(
        trigger=ErrorRateTrigger(observed=0.10, baseline=0.04, threshold=0.05),
        severity=Severity.CRITICAL,
        description="retry budget exhausted",
        suggested_action=AdjustParam(
            key="max_retries", old_value=IntegerValue(value=3), new_value=IntegerValue(value=5)
        ),
    )
    diagnosis.status = status
    return diagnosis


def _make_execution(scope: ConfigScope | None = None, inherited: bool = False) -> ExecutionResult:
    return ExecutionResult(
        diagnosis_id="diag-1",
        action=AdjustParam(
            key="max_retries",
            scope=scope or ConfigScope(),
            old_value=IntegerValue(value=3),
            new_value=IntegerValue(value=5),
        ),
        outcome=ExecutionOutcome.SUCCESS,
        pre_metrics=MetricsSnapshot(error_rate=0.1),
        previous_param=IntegerValue(value=3),
        previous_param_inherited=inherited,
    )


def _make_postgres(side_effect=None) -> MagicMock:
    postgres = MagicMock()
    postgres.execute = AsyncMock(side_effect=side_effect)
    return postgres


# ─── Bounds ──────────────────────────────────────────────────────


class TestBounds:
    @pytest.mark.asyncio
    async def test_settled_diagnoses_evicted_first(self):
        store = SelfImprovementStore(max_records=2)
        pending = _make_diagnosis()
        executed = _make_diagnosis(DiagnosisStatus.EXECUTED)
        newest = _make_diagnosis(DiagnosisStatus.REJECTED)

        await store.save_diagnosis(pending)
        await store.save_diagnosis(executed)
        await store.save_diagnosis(newest)

        assert store.get_diagnosis(pending.id) is pending
        assert store.get_diagnosis(executed.id) is None
        assert store.get_diagnosis(newest.id) is newest

    @pytest.mark.asyncio
    async def test_open_diagnoses_are_kept_over_the_limit(self):
        store = SelfImprovementStore(max_records=1)
        first = _make_diagnosis()
        second = _make_diagnosis(DiagnosisStatus.APPROVED)

        await store.save_diagnosis(first)
        await store.save_diagnosis(second)

        assert store.stats["diagnoses"] == 2
        assert store.pending() == [first]

    @pytest.mark.asyncio
    async def test_actions_capped_oldest_first(self):
        store = SelfImprovementStore(max_records=2)
        executions = [_make_execution() for _ in range(3)]
        for execution in executions:
            await store.save_action(execution)

        kept = {r.action_id for r in store.actions(limit=10)}
        assert kept == {executions[1].action_id, executions[2].action_id}

    @pytest.mark.asyncio
    async def test_actions_filter_by_outcome(self):
        store = SelfImprovementStore()
        ok = _make_execution()
        failed = _make_execution()
        failed.outcome = ExecutionOutcome.FAILED
        await store.save_action(ok)
        await store.save_action(failed)

        assert [r.action_id for r in store.actions(outcome=ExecutionOutcome.FAILED)] == [
            failed.action_id
        ]


# ─── Overrides ───────────────────────────────────────────────────


class TestOverrides:
    @pytest.mark.asyncio
    async def test_rollback_records_previous_value(self):
        store = SelfImprovementStore()
        execution = _make_execution()
        await store.save_override(execution)
        assert store.overrides()[0]["value"] == {"type": "integer", "value": 5}

        await store.save_override(execution, restored=True)
        assert store.overrides()[0]["value"] == {"type": "integer", "value": 3}

    @pytest.mark.asyncio
    async def test_rollback_to_inherited_value_drops_override(self):
        postgres = _make_postgres()
        store = SelfImprovementStore(postgres=postgres)
        execution = _make_execution(scope=ConfigScope.for_tool("search"), inherited=True)

        await store.save_override(execution)
        assert store.overrides()[0]["scope"] == "tool:search"

        await store.save_override(execution, restored=True)

        assert store.overrides() == []
        query, *args = postgres.execute.await_args.args
        assert query.startswith("DELETE FROM config_overrides")
        assert args == ["tool:search", "max_retries"]


# ─── Persistence ─────────────────────────────────────────────────


class TestPersistence:
    @pytest.mark.asyncio
    async def test_writes_mirrored_to_postgres(self):
        postgres = _make_postgres()
        store = SelfImprovementStore(postgres=postgres)
        assert store.persistent

        await store.save_diagnosis(_make_diagnosis())

        postgres.execute.assert_awaited_once()
        assert "INSERT INTO diagnoses" in postgres.execute.await_args.args[0]

    @pytest.mark.asyncio
    async def test_persistence_failure_is_counted_not_raised(self):
        store = SelfImprovementStore(postgres=_make_postgres(side_effect=OSError("down")))
        diagnosis = _make_diagnosis()

        await store.save_diagnosis(diagnosis)

        assert store.get_diagnosis(diagnosis.id) is diagnosis
        assert store.stats["persist_failures"] == 1
