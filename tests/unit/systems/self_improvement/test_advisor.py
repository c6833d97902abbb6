"""
Tests for the improvement advisors and prompt helpers.

Covers:
  - JSON extraction from model responses
  - Prompt sanitization
  - LLMImprovementAdvisor parsing against a scripted provider
  - HeuristicAdvisor rules
"""

from __future__ import annotations

import json

import pytest

from autonomic.clients.llm import LLMProvider, LLMResponse, Message
from autonomic.config import AllowlistConfig, ResourceBounds
from autonomic.prompts.self_improvement import MAX_FIELD_CHARS, sanitize_multiline
from autonomic.systems.self_improvement.advisor import (
    MAX_JSON_SIZE,
    AdvisorResponseError,
    HeuristicAdvisor,
    LLMImprovementAdvisor,
    extract_json,
)
from autonomic.systems.self_improvement.allowlist import Allowlist
from autonomic.systems.self_improvement.runtime_config import RuntimeConfig
from autonomic.systems.self_improvement.types import (
    AdjustParam,
    BaselineSnapshot,
    DiagnosisContent,
    ErrorRateTrigger,
    ExecutionOutcome,
    HealthReport,
    IntegerValue,
    LatencyTrigger,
    LearningOutcome,
    MetricsSnapshot,
    NoOp,
    NormalizedReward,
    QualityScoreTrigger,
    ResourceType,
    RewardBreakdown,
    ScaleResource,
    ToolMetrics,
)


# ─── Helpers ─────────────────────────────────────────────────────


class ScriptedLLM(LLMProvider):
    """Returns queued responses in order and records prompts."""

    def __init__(self, *responses: str) -> None:
        self._responses = list(responses)
        self.prompts: list[str] = []
        self.closed = False

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> LLMResponse:
        self.prompts.append(messages[-1].content)
        return LLMResponse(text=self._responses.pop(0), input_tokens=40, output_tokens=10)

    async def close(self) -> None:
        self.closed = True


def _make_runtime() -> RuntimeConfig:
    return RuntimeConfig(
        parameters={"max_retries": IntegerValue(value=3)},
        resources={ResourceType.MAX_CONCURRENT_REQUESTS: 10},
    )


def _make_health(trigger=None) -> HealthReport:
    trigger = trigger or ErrorRateTrigger(observed=0.10, baseline=0.04, threshold=0.05)
    return HealthReport(
        current_metrics=MetricsSnapshot(
            error_rate=0.10,
            invocation_count=100,
            tool_metrics={
                "search": ToolMetrics(error_rate=0.2, invocation_count=50),
                "fetch": ToolMetrics(error_rate=0.0, invocation_count=50),
            },
        ),
        baselines=BaselineSnapshot(error_rate=0.04),
        triggers=[trigger],
        is_healthy=False,
    )


def _make_outcome(reward: float) -> LearningOutcome:
    return LearningOutcome(
        action_id="a1",
        diagnosis_id="d1",
        trigger_type="error_rate",
        action_type="adjust_param",
        execution_outcome=ExecutionOutcome.SUCCESS,
        reward=NormalizedReward(value=reward, breakdown=RewardBreakdown(), confidence=0.4),
        pre_metrics=MetricsSnapshot(error_rate=0.1),
        post_metrics=MetricsSnapshot(error_rate=0.05),
        post_sample_count=50,
    )


_DIAGNOSIS = DiagnosisContent(description="errors up", suspected_cause="flaky upstream")


# ─── extract_json ────────────────────────────────────────────────


class TestExtractJson:
    def test_raw_object_with_surrounding_text(self):
        text = 'Here you go: {"a": {"b": 1}} and that is all.'
        assert json.loads(extract_json(text)) == {"a": {"b": 1}}

    def test_braces_inside_strings(self):
        text = '{"reason": "use {curly} braces", "n": 1}'
        assert json.loads(extract_json(text)) == {"reason": "use {curly} braces", "n": 1}

    def test_escaped_quote_inside_string(self):
        text = r'{"reason": "say \"hi\" }", "n": 2}'
        assert json.loads(extract_json(text))["n"] == 2

    def test_fenced_block(self):
        text = "```json\n[1, 2, 3]\n```"
        assert extract_json(text) == "[1, 2, 3]"

    def test_no_json(self):
        with pytest.raises(AdvisorResponseError):
            extract_json("I cannot help with that.")

    def test_oversized(self):
        with pytest.raises(AdvisorResponseError, match="exceeds"):
            extract_json("{" + "a" * MAX_JSON_SIZE + "}")


class TestSanitize:
    def test_escapes_braces_and_delimiters(self):
        assert sanitize_multiline("{x} --- y === z ###") == "{{x}} - - - y = = = z # # #"

    def test_truncates(self):
        cleaned = sanitize_multiline("a" * (MAX_FIELD_CHARS + 5))
        assert cleaned.endswith("...[truncated]")
        assert len(cleaned) == MAX_FIELD_CHARS + len("...[truncated]")


# ─── LLM advisor ─────────────────────────────────────────────────


class TestLLMAdvisor:
    def _make(self, *responses: str) -> tuple[LLMImprovementAdvisor, ScriptedLLM]:
        llm = ScriptedLLM(*responses)
        advisor = LLMImprovementAdvisor(llm, _make_runtime(), Allowlist(AllowlistConfig()))
        return advisor, llm

    @pytest.mark.asyncio
    async def test_generate_diagnosis(self):
        advisor, llm = self._make(
            '{"description": "Retries exhausted", "suspected_cause": "upstream 503s", '
            '"confidence": 1.7, "evidence": ["search at 20%", ""]}'
        )
        content = await advisor.generate_diagnosis(_make_health())

        assert content.description == "Retries exhausted"
        assert content.confidence == 1.0
        assert content.evidence == ["search at 20%"]
        assert content.tokens_used == 50
        assert "error_rate: 0.1000 (baseline 0.0400)" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_diagnosis_without_description_fails(self):
        advisor, _ = self._make('{"suspected_cause": "unknown"}')
        with pytest.raises(AdvisorResponseError):
            await advisor.generate_diagnosis(_make_health())

    @pytest.mark.asyncio
    async def test_select_action_anchors_old_value(self):
        advisor, _ = self._make(
            json.dumps(
                {
                    "action": {
                        "action": "adjust_param",
                        "key": "max_retries",
                        "old_value": {"type": "integer", "value": 7},
                        "new_value": {"type": "integer", "value": 5},
                    },
                    "rationale": "absorb transient failures",
                }
            )
        )
        selection = await advisor.select_action(_DIAGNOSIS, _make_health())

        assert isinstance(selection.action, AdjustParam)
        assert selection.action.old_value == IntegerValue(value=3)
        assert selection.action.new_value == IntegerValue(value=5)
        assert selection.rationale == "absorb transient failures"

    @pytest.mark.asyncio
    async def test_select_noop(self):
        advisor, _ = self._make('{"action": {"action": "no_op", "reason": "wait", "revisit_after": 600}}')
        selection = await advisor.select_action(_DIAGNOSIS, _make_health())
        assert isinstance(selection.action, NoOp)
        assert selection.action.revisit_after.total_seconds() == 600

    @pytest.mark.asyncio
    async def test_select_invalid_action(self):
        advisor, _ = self._make('{"action": {"action": "reboot_host"}}')
        with pytest.raises(AdvisorResponseError, match="invalid action"):
            await advisor.select_action(_DIAGNOSIS, _make_health())

    @pytest.mark.asyncio
    async def test_validate_decision(self):
        advisor, _ = self._make(
            '```json\n{"approved": false, "risk_level": "high", "reasoning": "too big"}\n```'
        )
        verdict = await advisor.validate_decision(
            AdjustParam(
                key="max_retries", old_value=IntegerValue(value=3), new_value=IntegerValue(value=5)
            ),
            _DIAGNOSIS,
        )
        assert not verdict.approved
        assert verdict.risk_level == "high"

    @pytest.mark.asyncio
    async def test_validate_without_verdict_fails(self):
        advisor, _ = self._make('{"risk_level": "low"}')
        with pytest.raises(AdvisorResponseError):
            await advisor.validate_decision(NoOp(reason="x"), _DIAGNOSIS)

    @pytest.mark.asyncio
    async def test_synthesize_learning(self):
        advisor, _ = self._make(
            '{"lessons": ["retries help"], "recommendations": ["keep at 5"], '
            '"pattern": "transient_errors", "confidence": 0.6}'
        )
        synthesis = await advisor.synthesize_learning(_make_outcome(0.3))
        assert synthesis.lessons == ["retries help"]
        assert synthesis.future_recommendations == ["keep at 5"]
        assert synthesis.pattern == "transient_errors"

    @pytest.mark.asyncio
    async def test_close_closes_provider(self):
        advisor, llm = self._make()
        await advisor.close()
        assert llm.closed


# ─── Heuristic advisor ───────────────────────────────────────────


class TestHeuristicAdvisor:
    def _make(self, runtime: RuntimeConfig | None = None) -> HeuristicAdvisor:
        return HeuristicAdvisor(runtime or _make_runtime(), Allowlist(AllowlistConfig()))

    @pytest.mark.asyncio
    async def test_error_rate_raises_retries(self):
        advisor = self._make()
        health = _make_health()
        content = await advisor.generate_diagnosis(health)
        selection = await advisor.select_action(content, health)

        assert "highest tool error rate: search" in content.evidence[-1]
        assert selection.action == AdjustParam(
            key="max_retries", old_value=IntegerValue(value=3), new_value=IntegerValue(value=4)
        )
        verdict = await advisor.validate_decision(selection.action, content)
        assert verdict.approved

    @pytest.mark.asyncio
    async def test_retries_at_max_becomes_noop(self):
        runtime = RuntimeConfig(parameters={"max_retries": IntegerValue(value=10)})
        advisor = self._make(runtime)
        health = _make_health()
        selection = await advisor.select_action(await advisor.generate_diagnosis(health), health)
        assert isinstance(selection.action, NoOp)

    @pytest.mark.asyncio
    async def test_latency_widens_concurrency(self):
        advisor = self._make()
        health = _make_health(LatencyTrigger(observed_p95_ms=900, baseline_ms=300, threshold_ms=450))
        selection = await advisor.select_action(await advisor.generate_diagnosis(health), health)
        assert selection.action == ScaleResource(
            resource=ResourceType.MAX_CONCURRENT_REQUESTS, old_value=10, new_value=12
        )

    @pytest.mark.asyncio
    async def test_latency_at_resource_max_becomes_noop(self):
        runtime = RuntimeConfig(resources={ResourceType.MAX_CONCURRENT_REQUESTS: 100})
        allowlist = Allowlist(AllowlistConfig())
        allowlist.register_resource(
            ResourceType.MAX_CONCURRENT_REQUESTS, ResourceBounds(min=1, max=100)
        )
        advisor = HeuristicAdvisor(runtime, allowlist)
        health = _make_health(LatencyTrigger(observed_p95_ms=900, baseline_ms=300, threshold_ms=450))
        selection = await advisor.select_action(await advisor.generate_diagnosis(health), health)
        assert isinstance(selection.action, NoOp)

    @pytest.mark.asyncio
    async def test_quality_left_for_operator(self):
        advisor = self._make()
        health = _make_health(QualityScoreTrigger(observed=0.5, baseline=0.9, minimum=0.81))
        selection = await advisor.select_action(await advisor.generate_diagnosis(health), health)
        assert isinstance(selection.action, NoOp)

    @pytest.mark.asyncio
    async def test_validate_rejects_out_of_bounds(self):
        advisor = self._make()
        verdict = await advisor.validate_decision(
            AdjustParam(
                key="max_retries", old_value=IntegerValue(value=3), new_value=IntegerValue(value=50)
            ),
            _DIAGNOSIS,
        )
        assert not verdict.approved
        assert verdict.risk_level == "high"

    @pytest.mark.asyncio
    async def test_synthesis_follows_reward_sign(self):
        advisor = self._make()
        positive = await advisor.synthesize_learning(_make_outcome(0.3))
        negative = await advisor.synthesize_learning(_make_outcome(-0.3))
        neutral = await advisor.synthesize_learning(_make_outcome(0.0))

        assert "improved" in positive.lessons[0]
        assert negative.future_recommendations[0].startswith("avoid")
        assert neutral.future_recommendations == []
        assert positive.confidence == 0.4
