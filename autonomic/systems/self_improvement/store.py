"""
Autonomic — Self-Improvement Store

Records every diagnosis, action, learning outcome and config override.
The in-process maps are authoritative for the running controller; when a
Postgres client is attached each write is mirrored there. Persistence
failures are logged and never interrupt a cycle.
"""

from __future__ import annotations

import json
from collections import deque
from typing import TYPE_CHECKING, Any

import structlog

from autonomic.primitives.common import utc_now
from autonomic.systems.self_improvement.types import (
    AdjustParam,
    DiagnosisStatus,
    ScaleResource,
)

if TYPE_CHECKING:
    from autonomic.clients.postgres import PostgresClient
    from autonomic.systems.self_improvement.types import (
        ExecutionOutcome,
        ExecutionResult,
        LearningOutcome,
        SelfDiagnosis,
    )

logger = structlog.get_logger()

# Never evicted while an operator can still act on them
_OPEN_STATUSES = (DiagnosisStatus.PENDING, DiagnosisStatus.APPROVED)


def _json(model: Any) -> str:
    if hasattr(model, "model_dump"):
        return json.dumps(model.model_dump(mode="json"))
    return json.dumps(model, default=str)


class SelfImprovementStore:
    def __init__(
        self,
        postgres: PostgresClient | None = None,
        max_learnings: int = 1_000,
        max_records: int = 1_000,
    ) -> None:
        self._pg = postgres
        self._max_records = max_records
        self._diagnoses: dict[str, SelfDiagnosis] = {}
        self._actions: dict[str, ExecutionResult] = {}
        self._learnings: deque[LearningOutcome] = deque(maxlen=max_learnings)
        self._overrides: dict[tuple[str, str], dict[str, Any]] = {}
        self._persist_failures: int = 0
        self._logger = logger.bind(system="self_improvement", component="store")

    @property
    def persistent(self) -> bool:
        return self._pg is not None

    # ─── Writes ────────────────────────────────────────────────────

    async def save_diagnosis(self, diagnosis: SelfDiagnosis) -> None:
        self._diagnoses[diagnosis.id] = diagnosis
        self._trim_diagnoses()
        await self._persist(
            "diagnosis",
            """
            INSERT INTO diagnoses (id, trigger_json, severity, description,
                                   suggested_action_json, status, created_at, updated_at)
            VALUES ($1, $2::jsonb, $3, $4, $5::jsonb, $6, $7, $8)
            ON CONFLICT (id) DO UPDATE
                SET status = EXCLUDED.status, updated_at = EXCLUDED.updated_at
            """,
            diagnosis.id,
            _json(diagnosis.trigger),
            diagnosis.severity.value,
            diagnosis.description,
            _json(diagnosis.suggested_action),
            diagnosis.status.value,
            diagnosis.created_at,
            diagnosis.updated_at,
        )

    async def save_action(self, result: ExecutionResult) -> None:
        self._actions[result.action_id] = result
        while len(self._actions) > self._max_records:
            del self._actions[next(iter(self._actions))]
        await self._persist(
            "action",
            """
            INSERT INTO actions (id, diagnosis_id, action_json, outcome, pre_metrics_json,
                                 post_metrics_json, execution_time_ms, error_message, created_at)
            VALUES ($1, $2, $3::jsonb, $4, $5::jsonb, $6::jsonb, $7, $8, $9)
            ON CONFLICT (id) DO UPDATE
                SET outcome = EXCLUDED.outcome,
                    post_metrics_json = EXCLUDED.post_metrics_json,
                    error_message = EXCLUDED.error_message
            """,
            result.action_id,
            result.diagnosis_id,
            _json(result.action),
            result.outcome.value,
            _json(result.pre_metrics),
            _json(result.post_metrics) if result.post_metrics is not None else None,
            result.execution_time_ms,
            result.error_message,
            result.created_at,
        )

    async def save_learning(self, outcome: LearningOutcome) -> None:
        self._learnings.append(outcome)
        await self._persist(
            "learning",
            """
            INSERT INTO learnings (id, action_id, reward_value, reward_breakdown_json,
                                   confidence, lessons_json, created_at)
            VALUES ($1, $2, $3, $4::jsonb, $5, $6::jsonb, $7)
            ON CONFLICT (id) DO NOTHING
            """,
            outcome.id,
            outcome.action_id,
            outcome.reward.value,
            _json(outcome.reward.breakdown),
            outcome.reward.confidence,
            json.dumps(
                {
                    "lessons": outcome.lessons,
                    "future_recommendations": outcome.future_recommendations,
                    "pattern": outcome.pattern,
                }
            ),
            outcome.created_at,
        )

    async def save_override(self, result: ExecutionResult, restored: bool = False) -> None:
        """Record the live value an action (or its rollback) left in place."""
        action = result.action
        if restored and isinstance(action, AdjustParam) and result.previous_param_inherited:
            # The scope reads the global value again
            scope, key = action.scope.display(), action.key
            self._overrides.pop((scope, key), None)
            await self._persist(
                "config_override",
                "DELETE FROM config_overrides WHERE scope = $1 AND key = $2",
                scope,
                key,
            )
            return

        if isinstance(action, AdjustParam):
            scope, key = action.scope.display(), action.key
            value: Any = (
                result.previous_param.model_dump(mode="json")
                if restored and result.previous_param is not None
                else action.new_value.model_dump(mode="json")
            )
        elif isinstance(action, ScaleResource):
            scope, key = "global", action.resource.value
            value = result.previous_resource if restored else action.new_value
        else:
            return

        entry = {
            "key": key,
            "scope": scope,
            "value": value,
            "applied_by_action": result.action_id,
            "updated_at": utc_now(),
        }
        self._overrides[(scope, key)] = entry
        await self._persist(
            "config_override",
            """
            INSERT INTO config_overrides (key, scope, value_json, applied_by_action, updated_at)
            VALUES ($1, $2, $3::jsonb, $4, $5)
            ON CONFLICT (scope, key) DO UPDATE
                SET value_json = EXCLUDED.value_json,
                    applied_by_action = EXCLUDED.applied_by_action,
                    updated_at = EXCLUDED.updated_at
            """,
            key,
            scope,
            json.dumps(value),
            result.action_id,
            entry["updated_at"],
        )

    def _trim_diagnoses(self) -> None:
        """Drop the oldest settled diagnoses once the map is over its limit."""
        excess = len(self._diagnoses) - self._max_records
        if excess <= 0:
            return
        settled = [
            diagnosis_id
            for diagnosis_id, diagnosis in self._diagnoses.items()
            if diagnosis.status not in _OPEN_STATUSES
        ]
        for diagnosis_id in settled[:excess]:
            del self._diagnoses[diagnosis_id]

    async def _persist(self, record: str, query: str, *args: Any) -> None:
        if self._pg is None:
            return
        try:
            await self._pg.execute(query, *args)
        except Exception as exc:
            self._persist_failures += 1
            self._logger.warning("record_persist_failed", record=record, error=str(exc))

    # ─── Reads ─────────────────────────────────────────────────────

    def get_diagnosis(self, diagnosis_id: str) -> SelfDiagnosis | None:
        return self._diagnoses.get(diagnosis_id)

    def diagnoses(
        self, status: DiagnosisStatus | None = None, limit: int | None = None
    ) -> list[SelfDiagnosis]:
        """Newest first."""
        items = sorted(self._diagnoses.values(), key=lambda d: d.created_at, reverse=True)
        if status is not None:
            items = [d for d in items if d.status == status]
        return items if limit is None else items[:limit]

    def pending(self) -> list[SelfDiagnosis]:
        return self.diagnoses(status=DiagnosisStatus.PENDING)

    def pending_count(self) -> int:
        return sum(1 for d in self._diagnoses.values() if d.status == DiagnosisStatus.PENDING)

    def actions(
        self, limit: int = 10, outcome: ExecutionOutcome | None = None
    ) -> list[ExecutionResult]:
        items = sorted(self._actions.values(), key=lambda r: r.created_at, reverse=True)
        if outcome is not None:
            items = [r for r in items if r.outcome == outcome]
        return items[:limit]

    def learnings(self, limit: int = 10) -> list[LearningOutcome]:
        return list(self._learnings)[::-1][:limit]

    def overrides(self) -> list[dict[str, Any]]:
        return [self._overrides[k] for k in sorted(self._overrides)]

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "persistent": self.persistent,
            "diagnoses": len(self._diagnoses),
            "actions": len(self._actions),
            "learnings": len(self._learnings),
            "overrides": len(self._overrides),
            "persist_failures": self._persist_failures,
        }
