"""
Autonomic — Self-Improvement

Closed-loop control over the host's runtime configuration. Watches live
metrics for drift from learned baselines, proposes a bounded corrective
action, applies it behind a circuit breaker and an allowlist, then
measures whether it helped.
"""

from autonomic.systems.self_improvement.advisor import (
    HeuristicAdvisor,
    ImprovementAdvisor,
    LLMImprovementAdvisor,
)
from autonomic.systems.self_improvement.allowlist import Allowlist, AllowlistDecision
from autonomic.systems.self_improvement.analyzer import Analyzer
from autonomic.systems.self_improvement.baseline import Baseline, BaselineCollection
from autonomic.systems.self_improvement.circuit_breaker import (
    BreakerState,
    CircuitBreaker,
    CircuitState,
)
from autonomic.systems.self_improvement.errors import (
    AnalysisBlocked,
    AnalysisBlockReason,
    AnalyzerFailedError,
    ExecutionBlocked,
    ExecutionBlockReason,
    ExecutorFailedError,
    LearnerFailedError,
    LearningBlocked,
    LearningBlockReason,
    OperatorActionError,
    RollbackRejected,
    SelfImprovementError,
    SelfImprovementErrorKind,
    UnknownRecordError,
)
from autonomic.systems.self_improvement.executor import Executor
from autonomic.systems.self_improvement.learner import Learner, compute_reward
from autonomic.systems.self_improvement.monitor import Monitor
from autonomic.systems.self_improvement.runtime_config import RuntimeConfig
from autonomic.systems.self_improvement.service import SelfImprovementService
from autonomic.systems.self_improvement.store import SelfImprovementStore
from autonomic.systems.self_improvement.types import (
    AdjustParam,
    ConfigScope,
    ControllerStatus,
    CycleOutcome,
    CycleResult,
    DiagnosisStatus,
    ErrorRateTrigger,
    ExecutionOutcome,
    ExecutionResult,
    HealthReport,
    InvocationEvent,
    LatencyTrigger,
    LearningOutcome,
    MetricsSnapshot,
    NoOp,
    NormalizedReward,
    QualityScoreTrigger,
    ResourceType,
    ScaleResource,
    SelfDiagnosis,
    Severity,
)

__all__ = [
    # Service
    "SelfImprovementService",
    # Components
    "Allowlist",
    "AllowlistDecision",
    "Analyzer",
    "Baseline",
    "BaselineCollection",
    "BreakerState",
    "CircuitBreaker",
    "CircuitState",
    "Executor",
    "Learner",
    "Monitor",
    "RuntimeConfig",
    "SelfImprovementStore",
    "compute_reward",
    # Advisors
    "HeuristicAdvisor",
    "ImprovementAdvisor",
    "LLMImprovementAdvisor",
    # Errors
    "AnalysisBlockReason",
    "AnalysisBlocked",
    "AnalyzerFailedError",
    "ExecutionBlockReason",
    "ExecutionBlocked",
    "ExecutorFailedError",
    "LearnerFailedError",
    "LearningBlockReason",
    "LearningBlocked",
    "OperatorActionError",
    "RollbackRejected",
    "SelfImprovementError",
    "SelfImprovementErrorKind",
    "UnknownRecordError",
    # Types
    "AdjustParam",
    "ConfigScope",
    "ControllerStatus",
    "CycleOutcome",
    "CycleResult",
    "DiagnosisStatus",
    "ErrorRateTrigger",
    "ExecutionOutcome",
    "ExecutionResult",
    "HealthReport",
    "InvocationEvent",
    "LatencyTrigger",
    "LearningOutcome",
    "MetricsSnapshot",
    "NoOp",
    "NormalizedReward",
    "QualityScoreTrigger",
    "ResourceType",
    "ScaleResource",
    "SelfDiagnosis",
    "Severity",
]
