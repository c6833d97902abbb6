"""
Autonomic — Improvement Advisor

The text-generation collaborator behind the Analyzer and the Learner.
``ImprovementAdvisor`` is the narrow interface; ``LLMImprovementAdvisor``
is the production implementation and ``HeuristicAdvisor`` the rule-based
one used when no model is configured.

Advisor calls may fail or hang. Callers wrap each one in a timeout and
treat any exception as a phase failure.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from autonomic.primitives.common import clamp
from autonomic.prompts.self_improvement import (
    build_action_prompt,
    build_action_system_prompt,
    build_diagnosis_prompt,
    build_diagnosis_system_prompt,
    build_learning_prompt,
    build_learning_system_prompt,
    build_validation_prompt,
    build_validation_system_prompt,
)
from autonomic.systems.self_improvement.types import (
    ActionSelection,
    AdjustParam,
    DiagnosisContent,
    DurationMsValue,
    ErrorRateTrigger,
    FloatValue,
    IntegerValue,
    LatencyTrigger,
    LearningSynthesis,
    NoOp,
    ResourceType,
    ScaleResource,
    ValidationResult,
    action_adapter,
)

if TYPE_CHECKING:
    from autonomic.clients.llm import LLMProvider
    from autonomic.systems.self_improvement.allowlist import Allowlist
    from autonomic.systems.self_improvement.runtime_config import RuntimeConfig
    from autonomic.systems.self_improvement.types import (
        HealthReport,
        LearningOutcome,
        ParamValue,
        SuggestedAction,
    )

logger = structlog.get_logger()

MAX_JSON_SIZE = 100_000
_FENCED_JSON = re.compile(r"```json\s*(.*?)```", re.DOTALL)
_FENCED_ANY = re.compile(r"```\s*(.*?)```", re.DOTALL)


class AdvisorResponseError(ValueError):
    """The collaborator answered, but not with something usable."""


def extract_json(text: str) -> str:
    """
    Pull the first JSON object out of a model response.

    Tries a balanced raw ``{...}`` first, then a ```json fence, then any
    fence. Oversized responses are refused outright.
    """
    if len(text) > MAX_JSON_SIZE:
        raise AdvisorResponseError(f"response exceeds {MAX_JSON_SIZE} characters")

    start = text.find("{")
    if start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]

    for pattern in (_FENCED_JSON, _FENCED_ANY):
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()

    raise AdvisorResponseError("no JSON object in response")


def _parse_object(text: str) -> dict[str, Any]:
    try:
        data = json.loads(extract_json(text))
    except json.JSONDecodeError as exc:
        raise AdvisorResponseError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise AdvisorResponseError("expected a JSON object")
    return data


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if str(v).strip()]


def _bump(value: ParamValue, delta: float) -> ParamValue | None:
    """Shift a numeric parameter value. None for non-numeric values."""
    if isinstance(value, IntegerValue):
        return IntegerValue(value=value.value + int(delta))
    if isinstance(value, DurationMsValue):
        return DurationMsValue(value=max(0, value.value + int(delta)))
    if isinstance(value, FloatValue):
        return FloatValue(value=value.value + delta)
    return None


class ImprovementAdvisor(ABC):
    """Interface to the diagnosis / action / validation / learning backend."""

    @abstractmethod
    async def generate_diagnosis(self, health: HealthReport) -> DiagnosisContent:
        ...

    @abstractmethod
    async def select_action(
        self, diagnosis: DiagnosisContent, health: HealthReport
    ) -> ActionSelection:
        ...

    @abstractmethod
    async def validate_decision(
        self, action: SuggestedAction, diagnosis: DiagnosisContent
    ) -> ValidationResult:
        ...

    @abstractmethod
    async def synthesize_learning(self, outcome: LearningOutcome) -> LearningSynthesis:
        ...

    async def close(self) -> None:
        return None


class _AnchoredAdvisor(ImprovementAdvisor):
    """Shared plumbing: both advisors read live config and bounds."""

    def __init__(self, runtime: RuntimeConfig, allowlist: Allowlist) -> None:
        self._runtime = runtime
        self._allowlist = allowlist

    def _anchor(self, action: SuggestedAction) -> SuggestedAction:
        """Replace the proposed old_value with what is actually live."""
        if isinstance(action, AdjustParam):
            live = self._runtime.get_param(action.key, action.scope)
            if live is not None:
                return action.model_copy(update={"old_value": live})
        elif isinstance(action, ScaleResource):
            live_resource = self._runtime.get_resource(action.resource)
            if live_resource is not None:
                return action.model_copy(update={"old_value": live_resource})
        return action


# ─── LLM-backed ───────────────────────────────────────────────────


class LLMImprovementAdvisor(_AnchoredAdvisor):
    def __init__(
        self,
        llm: LLMProvider,
        runtime: RuntimeConfig,
        allowlist: Allowlist,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> None:
        super().__init__(runtime, allowlist)
        self._llm = llm
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._logger = logger.bind(system="self_improvement", component="llm_advisor")

    async def _ask(self, system_prompt: str, prompt: str) -> tuple[dict[str, Any], int]:
        response = await self._llm.complete(
            system_prompt=system_prompt,
            prompt=prompt,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        return _parse_object(response.text), response.total_tokens

    async def generate_diagnosis(self, health: HealthReport) -> DiagnosisContent:
        data, tokens = await self._ask(
            build_diagnosis_system_prompt(), build_diagnosis_prompt(health)
        )
        description = str(data.get("description") or "").strip()
        if not description:
            raise AdvisorResponseError("diagnosis has no description")
        return DiagnosisContent(
            description=description,
            suspected_cause=data.get("suspected_cause") or None,
            confidence=clamp(float(data.get("confidence", 0.5)), 0.0, 1.0),
            evidence=_str_list(data.get("evidence")),
            tokens_used=tokens,
        )

    async def select_action(
        self, diagnosis: DiagnosisContent, health: HealthReport
    ) -> ActionSelection:
        data, tokens = await self._ask(
            build_action_system_prompt(),
            build_action_prompt(
                diagnosis, health, self._runtime.snapshot(), self._allowlist.to_dict()
            ),
        )
        raw_action = data.get("action", data)
        try:
            action = action_adapter.validate_python(raw_action)
        except ValidationError as exc:
            raise AdvisorResponseError(f"invalid action: {exc.error_count()} errors") from exc
        return ActionSelection(
            action=self._anchor(action),
            rationale=data.get("rationale") or None,
            tokens_used=tokens,
        )

    async def validate_decision(
        self, action: SuggestedAction, diagnosis: DiagnosisContent
    ) -> ValidationResult:
        data, tokens = await self._ask(
            build_validation_system_prompt(),
            build_validation_prompt(action, diagnosis, self._allowlist.to_dict()),
        )
        if "approved" not in data:
            raise AdvisorResponseError("validation has no verdict")
        return ValidationResult(
            approved=bool(data["approved"]),
            risk_level=str(data.get("risk_level", "medium")),
            reasoning=str(data.get("reasoning", "")),
            modifications=data.get("modifications") or None,
            tokens_used=tokens,
        )

    async def synthesize_learning(self, outcome: LearningOutcome) -> LearningSynthesis:
        data, tokens = await self._ask(
            build_learning_system_prompt(), build_learning_prompt(outcome)
        )
        recommendations = data.get("recommendations", data.get("future_recommendations"))
        return LearningSynthesis(
            lessons=_str_list(data.get("lessons")),
            future_recommendations=_str_list(recommendations),
            pattern=data.get("pattern") or None,
            confidence=clamp(float(data.get("confidence", 0.5)), 0.0, 1.0),
            tokens_used=tokens,
        )

    async def close(self) -> None:
        await self._llm.close()


# ─── Rule-based ───────────────────────────────────────────────────


class HeuristicAdvisor(_AnchoredAdvisor):
    """
    Deterministic advisor for deployments without a model.

    Error-rate drift raises ``max_retries`` by one; latency drift widens
    ``max_concurrent_requests``; quality drift is left for a human.
    """

    _RETRY_KEY = "max_retries"
    _CONCURRENCY_STEP = 2

    async def generate_diagnosis(self, health: HealthReport) -> DiagnosisContent:
        primary = health.primary_trigger()
        if primary is None:
            return DiagnosisContent(description="No drift detected", confidence=0.0)

        evidence = [t.describe() for t in health.triggers]
        worst = max(
            health.current_metrics.tool_metrics.items(),
            key=lambda item: item[1].error_rate,
            default=None,
        )
        if worst is not None and worst[1].error_rate > 0:
            evidence.append(f"highest tool error rate: {worst[0]} at {worst[1].error_rate:.1%}")

        if isinstance(primary, ErrorRateTrigger):
            cause = "Transient upstream failures exhausting the retry budget"
        elif isinstance(primary, LatencyTrigger):
            cause = "Request queueing from insufficient concurrency"
        else:
            cause = "Degraded upstream output quality"
        return DiagnosisContent(
            description=f"{primary.metric_type} drift: {primary.describe()}",
            suspected_cause=cause,
            confidence=0.5,
            evidence=evidence,
        )

    async def select_action(
        self, diagnosis: DiagnosisContent, health: HealthReport
    ) -> ActionSelection:
        primary = health.primary_trigger()
        action: SuggestedAction | None = None
        if isinstance(primary, ErrorRateTrigger):
            action = self._raise_retries()
        elif isinstance(primary, LatencyTrigger):
            action = self._widen_concurrency()

        if action is None:
            action = NoOp(
                reason="no safe automatic adjustment for this drift",
                revisit_after=timedelta(hours=1),
            )
            return ActionSelection(action=action, rationale="left for operator review")
        return ActionSelection(action=action, rationale=diagnosis.suspected_cause)

    def _raise_retries(self) -> SuggestedAction | None:
        current = self._runtime.get_param(self._RETRY_KEY)
        bounds = self._allowlist.param_bounds(self._RETRY_KEY)
        if current is None or bounds is None:
            return None
        proposed = _bump(current, 1)
        numeric = proposed.as_float() if proposed is not None else None
        if proposed is None or numeric is None or (bounds.max is not None and numeric > bounds.max):
            return None
        return AdjustParam(key=self._RETRY_KEY, old_value=current, new_value=proposed)

    def _widen_concurrency(self) -> SuggestedAction | None:
        resource = ResourceType.MAX_CONCURRENT_REQUESTS
        current = self._runtime.get_resource(resource)
        bounds = self._allowlist.resource_bounds(resource)
        if current is None or bounds is None:
            return None
        proposed = min(bounds.max, current + self._CONCURRENCY_STEP)
        if proposed == current:
            return None
        return ScaleResource(resource=resource, old_value=current, new_value=proposed)

    async def validate_decision(
        self, action: SuggestedAction, diagnosis: DiagnosisContent
    ) -> ValidationResult:
        decision = self._allowlist.validate(action)
        return ValidationResult(
            approved=decision.allowed,
            risk_level="low" if decision.allowed else "high",
            reasoning=decision.reason or "within registered bounds",
        )

    async def synthesize_learning(self, outcome: LearningOutcome) -> LearningSynthesis:
        reward = outcome.reward
        if reward.is_positive():
            lessons = [
                f"{outcome.action_type} improved {outcome.trigger_type} "
                f"(reward {reward.value:+.2f})"
            ]
            recommendations = [f"repeat {outcome.action_type} for {outcome.trigger_type} drift"]
        elif reward.is_negative():
            lessons = [
                f"{outcome.action_type} made {outcome.trigger_type} worse "
                f"(reward {reward.value:+.2f})"
            ]
            recommendations = [f"avoid {outcome.action_type} for {outcome.trigger_type} drift"]
        else:
            lessons = [f"{outcome.action_type} had no measurable effect"]
            recommendations = []
        return LearningSynthesis(
            lessons=lessons,
            future_recommendations=recommendations,
            confidence=reward.confidence,
        )
