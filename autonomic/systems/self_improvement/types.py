"""
Autonomic — Self-Improvement Type Definitions

All data types for the control loop: trigger metrics, health reports,
diagnoses, suggested actions, execution results, rewards and learning
outcomes. Tagged unions are pydantic discriminated unions.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, field_serializer, field_validator

from autonomic.primitives.common import AutonomicBaseModel, clamp, new_id, utc_now
from autonomic.systems.self_improvement.errors import SelfImprovementErrorKind


# ─── Severity ─────────────────────────────────────────────────────


class Severity(enum.StrEnum):
    """Ordered by definition: INFO < WARNING < HIGH < CRITICAL."""

    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    def __lt__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank >= other.rank
        return NotImplemented

    @classmethod
    def from_deviation(cls, deviation_pct: float) -> Severity:
        if deviation_pct >= 100.0:
            return cls.CRITICAL
        if deviation_pct >= 50.0:
            return cls.HIGH
        if deviation_pct >= 25.0:
            return cls.WARNING
        return cls.INFO


# ─── Trigger Metrics ──────────────────────────────────────────────


class ErrorRateTrigger(AutonomicBaseModel):
    type: Literal["error_rate"] = "error_rate"
    observed: float
    baseline: float
    threshold: float

    @property
    def metric_type(self) -> str:
        return self.type

    def deviation_pct(self) -> float:
        if self.baseline <= 0.0:
            return 100.0 if self.observed > 0.0 else 0.0
        return (self.observed - self.baseline) / self.baseline * 100.0

    def severity(self) -> Severity:
        return Severity.from_deviation(self.deviation_pct())

    def is_triggered(self) -> bool:
        return self.observed > self.threshold

    def describe(self) -> str:
        return (
            f"error rate {self.observed:.2%} vs baseline {self.baseline:.2%} "
            f"(threshold {self.threshold:.2%})"
        )


class LatencyTrigger(AutonomicBaseModel):
    type: Literal["latency"] = "latency"
    observed_p95_ms: int
    baseline_ms: int
    threshold_ms: int

    @property
    def metric_type(self) -> str:
        return self.type

    def deviation_pct(self) -> float:
        if self.baseline_ms <= 0:
            return 100.0 if self.observed_p95_ms > 0 else 0.0
        return (self.observed_p95_ms - self.baseline_ms) / self.baseline_ms * 100.0

    def severity(self) -> Severity:
        return Severity.from_deviation(self.deviation_pct())

    def is_triggered(self) -> bool:
        return self.observed_p95_ms > self.threshold_ms

    def describe(self) -> str:
        return (
            f"p95 latency {self.observed_p95_ms}ms vs baseline {self.baseline_ms}ms "
            f"(threshold {self.threshold_ms}ms)"
        )


class QualityScoreTrigger(AutonomicBaseModel):
    """Lower is worse, so deviation is measured downward."""

    type: Literal["quality_score"] = "quality_score"
    observed: float
    baseline: float
    minimum: float

    @property
    def metric_type(self) -> str:
        return self.type

    def deviation_pct(self) -> float:
        if self.baseline <= 0.0:
            return 100.0 if self.observed < 1.0 else 0.0
        return (self.baseline - self.observed) / self.baseline * 100.0

    def severity(self) -> Severity:
        return Severity.from_deviation(self.deviation_pct())

    def is_triggered(self) -> bool:
        return self.observed < self.minimum

    def describe(self) -> str:
        return (
            f"quality {self.observed:.2f} vs baseline {self.baseline:.2f} "
            f"(minimum {self.minimum:.2f})"
        )


TriggerMetric = Annotated[
    ErrorRateTrigger | LatencyTrigger | QualityScoreTrigger,
    Field(discriminator="type"),
]
trigger_adapter: TypeAdapter[Any] = TypeAdapter(TriggerMetric)


# ─── Parameter Values & Scope ─────────────────────────────────────


class IntegerValue(AutonomicBaseModel):
    type: Literal["integer"] = "integer"
    value: int

    def as_float(self) -> float | None:
        return float(self.value)

    def display(self) -> str:
        return str(self.value)


class FloatValue(AutonomicBaseModel):
    type: Literal["float"] = "float"
    value: float

    def as_float(self) -> float | None:
        return self.value

    def display(self) -> str:
        return f"{self.value:g}"


class StringValue(AutonomicBaseModel):
    type: Literal["string"] = "string"
    value: str

    def as_float(self) -> float | None:
        return None

    def display(self) -> str:
        return self.value


class DurationMsValue(AutonomicBaseModel):
    type: Literal["duration_ms"] = "duration_ms"
    value: int = Field(ge=0)

    def as_float(self) -> float | None:
        return float(self.value)

    def display(self) -> str:
        return f"{self.value}ms"


class BooleanValue(AutonomicBaseModel):
    type: Literal["boolean"] = "boolean"
    value: bool

    def as_float(self) -> float | None:
        return None

    def display(self) -> str:
        return "true" if self.value else "false"


ParamValue = Annotated[
    IntegerValue | FloatValue | StringValue | DurationMsValue | BooleanValue,
    Field(discriminator="type"),
]
param_value_adapter: TypeAdapter[Any] = TypeAdapter(ParamValue)


class ScopeKind(enum.StrEnum):
    GLOBAL = "global"
    MODE = "mode"
    TOOL = "tool"


class ConfigScope(AutonomicBaseModel):
    """Where a parameter override applies: everywhere, one mode, or one tool."""

    kind: ScopeKind = ScopeKind.GLOBAL
    name: str | None = None

    @classmethod
    def for_mode(cls, name: str) -> ConfigScope:
        return cls(kind=ScopeKind.MODE, name=name)

    @classmethod
    def for_tool(cls, name: str) -> ConfigScope:
        return cls(kind=ScopeKind.TOOL, name=name)

    @classmethod
    def parse(cls, text: str) -> ConfigScope:
        if text == "global" or not text:
            return cls()
        kind, _, name = text.partition(":")
        return cls(kind=ScopeKind(kind), name=name)

    def display(self) -> str:
        if self.kind == ScopeKind.GLOBAL:
            return "global"
        return f"{self.kind.value}:{self.name}"


class ResourceType(enum.StrEnum):
    MAX_CONCURRENT_REQUESTS = "max_concurrent_requests"
    CONNECTION_POOL_SIZE = "connection_pool_size"
    CACHE_SIZE = "cache_size"
    TIMEOUT_MS = "timeout_ms"
    MAX_RETRIES = "max_retries"
    RETRY_DELAY_MS = "retry_delay_ms"


# ─── Suggested Actions ────────────────────────────────────────────


class AdjustParam(AutonomicBaseModel):
    action: Literal["adjust_param"] = "adjust_param"
    key: str
    old_value: ParamValue
    new_value: ParamValue
    scope: ConfigScope = Field(default_factory=ConfigScope)

    def describe(self) -> str:
        return (
            f"adjust {self.key} ({self.scope.display()}) "
            f"{self.old_value.display()} -> {self.new_value.display()}"
        )


class ScaleResource(AutonomicBaseModel):
    action: Literal["scale_resource"] = "scale_resource"
    resource: ResourceType
    old_value: int = Field(ge=0)
    new_value: int = Field(ge=0)

    def describe(self) -> str:
        return f"scale {self.resource.value} {self.old_value} -> {self.new_value}"


class NoOp(AutonomicBaseModel):
    action: Literal["no_op"] = "no_op"
    reason: str
    revisit_after: timedelta = timedelta(hours=1)

    @field_serializer("revisit_after")
    def _serialize_revisit_after(self, value: timedelta) -> float:
        return value.total_seconds()

    def describe(self) -> str:
        return f"no-op: {self.reason}"


SuggestedAction = Annotated[
    AdjustParam | ScaleResource | NoOp,
    Field(discriminator="action"),
]
action_adapter: TypeAdapter[Any] = TypeAdapter(SuggestedAction)


# ─── Metrics ──────────────────────────────────────────────────────


class InvocationEvent(AutonomicBaseModel):
    """One completed request, as reported by the host."""

    tool_name: str
    latency_ms: int = Field(ge=0)
    success: bool
    quality_score: float | None = Field(default=None, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utc_now)


class ToolMetrics(AutonomicBaseModel):
    error_rate: float = 0.0
    avg_latency_ms: float = 0.0
    invocation_count: int = 0


class MetricsSnapshot(AutonomicBaseModel):
    """Aggregate view of a window of invocations."""

    error_rate: float = 0.0
    latency_p95_ms: int = 0
    quality_score: float = 1.0
    invocation_count: int = 0
    timestamp: datetime = Field(default_factory=utc_now)
    tool_metrics: dict[str, ToolMetrics] = Field(default_factory=dict)

    @field_validator("error_rate", "quality_score")
    @classmethod
    def _clamp_unit(cls, v: float) -> float:
        return clamp(v, 0.0, 1.0)

    @field_validator("latency_p95_ms")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        return max(0, v)


class BaselineSnapshot(AutonomicBaseModel):
    """Learned reference values, with per-metric sample counts."""

    error_rate: float = 0.0
    error_rate_samples: int = 0
    latency_p95_ms: float = 0.0
    latency_samples: int = 0
    quality_score: float = 1.0
    quality_samples: int = 0
    updated_at: datetime = Field(default_factory=utc_now)


class HealthReport(AutonomicBaseModel):
    current_metrics: MetricsSnapshot
    baselines: BaselineSnapshot
    triggers: list[TriggerMetric] = Field(default_factory=list)
    is_healthy: bool = True
    generated_at: datetime = Field(default_factory=utc_now)

    def primary_trigger(self) -> ErrorRateTrigger | LatencyTrigger | QualityScoreTrigger | None:
        """Highest-severity trigger; earliest wins ties."""
        best = None
        for trigger in self.triggers:
            if best is None or trigger.deviation_pct() > best.deviation_pct():
                best = trigger
        return best

    def max_severity(self) -> Severity | None:
        primary = self.primary_trigger()
        return primary.severity() if primary is not None else None


# ─── Diagnoses ────────────────────────────────────────────────────


class DiagnosisStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (
            DiagnosisStatus.REJECTED,
            DiagnosisStatus.FAILED,
            DiagnosisStatus.ROLLED_BACK,
        )


class SelfDiagnosis(AutonomicBaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    trigger: TriggerMetric
    severity: Severity
    description: str
    suspected_cause: str | None = None
    suggested_action: SuggestedAction
    action_rationale: str | None = None
    status: DiagnosisStatus = DiagnosisStatus.PENDING
    rejection_reason: str | None = None
    evidence: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    tokens_used: int = 0

    def transition(self, status: DiagnosisStatus, reason: str | None = None) -> None:
        self.status = status
        self.updated_at = utc_now()
        if reason is not None:
            self.rejection_reason = reason


class DiagnosisContent(AutonomicBaseModel):
    """What the text-generation collaborator says is wrong."""

    description: str
    suspected_cause: str | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)
    tokens_used: int = 0


class ActionSelection(AutonomicBaseModel):
    action: SuggestedAction
    rationale: str | None = None
    tokens_used: int = 0


class ValidationResult(AutonomicBaseModel):
    approved: bool
    risk_level: str = "low"
    reasoning: str = ""
    modifications: str | None = None
    tokens_used: int = 0


class AnalyzerStats(AutonomicBaseModel):
    analysis_time_ms: int = 0
    tokens_used: int = 0


class AnalysisResult(AutonomicBaseModel):
    diagnosis: SelfDiagnosis
    stats: AnalyzerStats


# ─── Execution ────────────────────────────────────────────────────


class ExecutionOutcome(enum.StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class ExecutionResult(AutonomicBaseModel):
    action_id: str = Field(default_factory=new_id)
    diagnosis_id: str
    action: SuggestedAction
    outcome: ExecutionOutcome = ExecutionOutcome.PENDING
    pre_metrics: MetricsSnapshot
    post_metrics: MetricsSnapshot | None = None
    # The value actually replaced, restored on rollback
    previous_param: ParamValue | None = None
    # The scope read the global value before the change; rollback removes the override
    previous_param_inherited: bool = False
    previous_resource: int | None = None
    execution_time_ms: int = 0
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def action_type(self) -> str:
        return self.action.action


# ─── Reward & Learning ────────────────────────────────────────────


class RewardBreakdown(AutonomicBaseModel):
    error_rate_component: float = 0.0
    latency_component: float = 0.0
    quality_component: float = 0.0


class NormalizedReward(AutonomicBaseModel):
    """Positive means the action improved system health."""

    value: float = Field(ge=-1.0, le=1.0)
    breakdown: RewardBreakdown
    confidence: float = Field(ge=0.0, le=1.0)

    def is_positive(self) -> bool:
        return self.value > 0.0

    def is_negative(self) -> bool:
        return self.value < 0.0

    def is_significant(self, threshold: float) -> bool:
        return abs(self.value) > threshold and self.confidence > 0.5


class LearningSynthesis(AutonomicBaseModel):
    lessons: list[str] = Field(default_factory=list)
    future_recommendations: list[str] = Field(default_factory=list)
    pattern: str | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    tokens_used: int = 0


class LearningOutcome(AutonomicBaseModel):
    id: str = Field(default_factory=new_id)
    action_id: str
    diagnosis_id: str
    trigger_type: str
    action_type: str
    execution_outcome: ExecutionOutcome
    reward: NormalizedReward
    pre_metrics: MetricsSnapshot
    post_metrics: MetricsSnapshot
    post_sample_count: int = 0
    # Post-action value of the triggering metric is back at or past its baseline
    recovered: bool = False
    lessons: list[str] = Field(default_factory=list)
    future_recommendations: list[str] = Field(default_factory=list)
    pattern: str | None = None
    synthesis_confidence: float = 0.0
    created_at: datetime = Field(default_factory=utc_now)


# ─── Cycles ───────────────────────────────────────────────────────


class CyclePhase(enum.StrEnum):
    GATE = "gate"
    LEARN = "learn"
    MONITOR = "monitor"
    ANALYZE = "analyze"
    APPROVAL = "approval"
    EXECUTE = "execute"


class CycleOutcome(enum.StrEnum):
    INSUFFICIENT_DATA = "insufficient_data"
    HEALTHY = "healthy"
    BLOCKED = "blocked"
    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_SAMPLES = "awaiting_samples"
    NO_OP = "no_op"
    EXECUTED = "executed"
    LEARNED = "learned"
    FAILED = "failed"


class CycleResult(AutonomicBaseModel):
    cycle_id: str = Field(default_factory=new_id)
    trigger: str = "timer"  # "timer" | "manual" | "approval"
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    phase: CyclePhase = CyclePhase.GATE
    outcome: CycleOutcome = CycleOutcome.INSUFFICIENT_DATA
    error: SelfImprovementErrorKind | None = None
    blocked_reason: str | None = None
    message: str = ""
    diagnosis_id: str | None = None
    action_id: str | None = None
    learning_id: str | None = None
    duration_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.error is not None


class ControllerStatus(AutonomicBaseModel):
    enabled: bool = True
    running: bool = False
    paused_until: datetime | None = None
    pause_remaining: str | None = None
    circuit_state: str = "closed"
    circuit: dict[str, Any] = Field(default_factory=dict)
    pending_diagnoses: list[SelfDiagnosis] = Field(default_factory=list)
    in_flight_action_id: str | None = None
    total_cycles: int = 0
    failed_cycles: int = 0
    outcome_counts: dict[str, int] = Field(default_factory=dict)
    total_actions_executed: int = 0
    total_actions_rolled_back: int = 0
    total_invocations: int = 0
    current_metrics: MetricsSnapshot | None = None
    last_cycle: CycleResult | None = None
    recent_learnings: list[LearningOutcome] = Field(default_factory=list)
    learning_summary: dict[str, Any] = Field(default_factory=dict)
