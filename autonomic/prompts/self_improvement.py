"""
Autonomic — Self-Improvement Prompts

Prompt builders for the four collaborator calls: diagnosis, action
selection, decision validation and learning synthesis. Kept separate from
the advisor so wording can change without touching parsing logic.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from autonomic.systems.self_improvement.types import (
        DiagnosisContent,
        HealthReport,
        LearningOutcome,
        SuggestedAction,
    )

MAX_FIELD_CHARS = 10_000
_TRUNCATION_MARKER = "...[truncated]"

# Section markers a model could mistake for prompt structure
_DELIMITERS = {"---": "- - -", "===": "= = =", "###": "# # #"}


def sanitize_multiline(text: str) -> str:
    """Make free text safe to embed in a prompt template."""
    cleaned = text.replace("{", "{{").replace("}", "}}")
    if len(cleaned) > MAX_FIELD_CHARS:
        cleaned = cleaned[:MAX_FIELD_CHARS] + _TRUNCATION_MARKER
    for marker, replacement in _DELIMITERS.items():
        cleaned = cleaned.replace(marker, replacement)
    return cleaned


# ─── System Prompts ───────────────────────────────────────────────


def build_diagnosis_system_prompt() -> str:
    return (
        "You are the diagnostic subsystem of an autonomic controller for a "
        "request-serving system. You are given live health metrics and the "
        "baselines they drifted from. Identify the most likely cause of the drift. "
        "Be specific and conservative: cite only evidence present in the metrics. "
        "Respond only with valid JSON."
    )


def build_action_system_prompt() -> str:
    return (
        "You select one bounded corrective action for a diagnosed problem. "
        "You may only adjust registered parameters or scale registered resources "
        "within the bounds you are given, or choose no_op when no safe change "
        "is likely to help. Prefer the smallest change that addresses the cause. "
        "Respond only with valid JSON."
    )


def build_validation_system_prompt() -> str:
    return (
        "You review a proposed configuration change before it is applied to a "
        "live system. Reject changes that are risky, unrelated to the diagnosis, "
        "or likely to make things worse. Respond only with valid JSON."
    )


def build_learning_system_prompt() -> str:
    return (
        "You extract lessons from the measured outcome of a configuration change. "
        "Compare metrics before and after, state what worked or did not, and give "
        "concrete recommendations for similar situations. "
        "Respond only with valid JSON."
    )


# ─── User Prompts ─────────────────────────────────────────────────


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def build_diagnosis_prompt(health: HealthReport) -> str:
    m = health.current_metrics
    b = health.baselines
    triggers = [t.model_dump() | {"deviation_pct": round(t.deviation_pct(), 1)} for t in health.triggers]
    tools = {name: tm.model_dump() for name, tm in sorted(m.tool_metrics.items())}
    return (
        "## Current metrics vs baseline\n"
        f"- error_rate: {m.error_rate:.4f} (baseline {b.error_rate:.4f})\n"
        f"- latency_p95_ms: {m.latency_p95_ms} (baseline {b.latency_p95_ms:.0f})\n"
        f"- quality_score: {m.quality_score:.3f} (baseline {b.quality_score:.3f})\n"
        f"- invocations in window: {m.invocation_count}\n\n"
        "## Triggered metrics\n"
        f"{_dumps(triggers)}\n\n"
        "## Per-tool metrics\n"
        f"{_dumps(tools)}\n\n"
        "Respond with JSON:\n"
        '{"description": "<what is wrong>", "suspected_cause": "<most likely cause>", '
        '"confidence": <0.0-1.0>, "evidence": ["<observation>", ...]}'
    )


def build_action_prompt(
    diagnosis: DiagnosisContent,
    health: HealthReport,
    runtime: dict[str, Any],
    bounds: dict[str, Any],
) -> str:
    triggers = [t.metric_type for t in health.triggers]
    cause = sanitize_multiline(diagnosis.suspected_cause or "unknown")
    return (
        "## Diagnosis\n"
        f"{sanitize_multiline(diagnosis.description)}\n"
        f"Suspected cause: {cause}\n"
        f"Triggered metrics: {', '.join(triggers) or 'none'}\n\n"
        "## Current runtime configuration\n"
        f"{_dumps(runtime)}\n\n"
        "## Allowed bounds (step = largest single change)\n"
        f"{_dumps(bounds)}\n\n"
        "## Action types\n"
        '- adjust_param: {"action": "adjust_param", "key": "<name>", '
        '"old_value": {"type": "<integer|float|string|duration_ms|boolean>", "value": ...}, '
        '"new_value": {"type": "...", "value": ...}, '
        '"scope": {"kind": "global|mode|tool", "name": null}}\n'
        '- scale_resource: {"action": "scale_resource", "resource": "<resource>", '
        '"old_value": <int>, "new_value": <int>}\n'
        '- no_op: {"action": "no_op", "reason": "<why>", "revisit_after": <seconds>}\n\n'
        "Respond with JSON:\n"
        '{"action": {<one action object>}, "rationale": "<why this action>"}'
    )


def build_validation_prompt(
    action: SuggestedAction,
    diagnosis: DiagnosisContent,
    bounds: dict[str, Any],
) -> str:
    return (
        "## Proposed change\n"
        f"{_dumps(action.model_dump(mode='json'))}\n\n"
        "## Diagnosis it addresses\n"
        f"{sanitize_multiline(diagnosis.description)}\n\n"
        "## Allowed bounds\n"
        f"{_dumps(bounds)}\n\n"
        "Respond with JSON:\n"
        '{"approved": <true|false>, "risk_level": "low|medium|high", '
        '"reasoning": "<short explanation>", "modifications": "<optional>"}'
    )


def build_learning_prompt(outcome: LearningOutcome) -> str:
    pre = outcome.pre_metrics
    post = outcome.post_metrics
    return (
        "## Action\n"
        f"type: {outcome.action_type}, addressed trigger: {outcome.trigger_type}, "
        f"execution outcome: {outcome.execution_outcome.value}\n\n"
        "## Metrics before -> after\n"
        f"- error_rate: {pre.error_rate:.4f} -> {post.error_rate:.4f}\n"
        f"- latency_p95_ms: {pre.latency_p95_ms} -> {post.latency_p95_ms}\n"
        f"- quality_score: {pre.quality_score:.3f} -> {post.quality_score:.3f}\n"
        f"- post-action samples: {outcome.post_sample_count}\n\n"
        "## Reward\n"
        f"{_dumps(outcome.reward.model_dump())}\n\n"
        "Respond with JSON:\n"
        '{"lessons": ["<lesson>", ...], "recommendations": ["<recommendation>", ...], '
        '"pattern": "<optional recurring pattern>", "confidence": <0.0-1.0>}'
    )
