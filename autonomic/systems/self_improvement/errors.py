"""
Autonomic — Self-Improvement Error Taxonomy

Gates raise ``*Blocked`` exceptions carrying a reason enum. Phase failures
raise ``SelfImprovementError`` subclasses carrying an error kind. The
controller converts both into a recorded ``CycleResult``; nothing here ever
reaches the request-serving path.
"""

from __future__ import annotations

import enum


# ─── Kinds & Reasons ──────────────────────────────────────────────


class SelfImprovementErrorKind(enum.StrEnum):
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    IN_COOLDOWN = "in_cooldown"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    MONITOR_FAILED = "monitor_failed"
    ANALYZER_FAILED = "analyzer_failed"
    EXECUTOR_FAILED = "executor_failed"
    LEARNER_FAILED = "learner_failed"
    CYCLE_IN_PROGRESS = "cycle_in_progress"


class AnalysisBlockReason(enum.StrEnum):
    CIRCUIT_OPEN = "circuit_open"
    NO_TRIGGERS = "no_triggers"
    SEVERITY_TOO_LOW = "severity_too_low"
    MAX_PENDING_REACHED = "max_pending_reached"


class ExecutionBlockReason(enum.StrEnum):
    CIRCUIT_OPEN = "circuit_open"
    COOLDOWN_ACTIVE = "cooldown_active"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    NOT_ALLOWED = "not_allowed"
    NO_OP_ACTION = "no_op_action"


class LearningBlockReason(enum.StrEnum):
    EXECUTION_NOT_COMPLETED = "execution_not_completed"
    INSUFFICIENT_SAMPLES = "insufficient_samples"


# ─── Blocked Gates ────────────────────────────────────────────────


class _Blocked(Exception):
    """A gate declined to proceed. Not a failure."""

    reason: enum.StrEnum

    def __init__(self, reason: enum.StrEnum, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class AnalysisBlocked(_Blocked):
    reason: AnalysisBlockReason

    def __init__(self, reason: AnalysisBlockReason, detail: str = "") -> None:
        super().__init__(reason, detail)

    @property
    def error_kind(self) -> SelfImprovementErrorKind | None:
        if self.reason == AnalysisBlockReason.CIRCUIT_OPEN:
            return SelfImprovementErrorKind.CIRCUIT_BREAKER_OPEN
        return None


_EXECUTION_ERROR_KINDS: dict[ExecutionBlockReason, SelfImprovementErrorKind] = {
    ExecutionBlockReason.CIRCUIT_OPEN: SelfImprovementErrorKind.CIRCUIT_BREAKER_OPEN,
    ExecutionBlockReason.COOLDOWN_ACTIVE: SelfImprovementErrorKind.IN_COOLDOWN,
    ExecutionBlockReason.RATE_LIMIT_EXCEEDED: SelfImprovementErrorKind.RATE_LIMIT_EXCEEDED,
}


class ExecutionBlocked(_Blocked):
    reason: ExecutionBlockReason

    def __init__(self, reason: ExecutionBlockReason, detail: str = "") -> None:
        super().__init__(reason, detail)

    @property
    def error_kind(self) -> SelfImprovementErrorKind | None:
        return _EXECUTION_ERROR_KINDS.get(self.reason)


class LearningBlocked(_Blocked):
    reason: LearningBlockReason

    def __init__(self, reason: LearningBlockReason, detail: str = "") -> None:
        super().__init__(reason, detail)


# ─── Failures ─────────────────────────────────────────────────────


class SelfImprovementError(Exception):
    """Base class for phase failures. ``kind`` identifies the variant."""

    kind: SelfImprovementErrorKind = SelfImprovementErrorKind.EXECUTOR_FAILED

    def __init__(self, message: str = "") -> None:
        self.message = message or self.kind.value
        super().__init__(self.message)


class AnalyzerFailedError(SelfImprovementError):
    kind = SelfImprovementErrorKind.ANALYZER_FAILED


class ExecutorFailedError(SelfImprovementError):
    kind = SelfImprovementErrorKind.EXECUTOR_FAILED


class LearnerFailedError(SelfImprovementError):
    kind = SelfImprovementErrorKind.LEARNER_FAILED


# ─── Operator Actions ─────────────────────────────────────────────


class OperatorActionError(Exception):
    """An operator command was rejected (invalid state transition)."""


class UnknownRecordError(OperatorActionError):
    """The referenced diagnosis or action does not exist."""


class RollbackRejected(OperatorActionError):
    """Rollback requested for an action that is not in Success state."""
