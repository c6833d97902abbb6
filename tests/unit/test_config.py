"""
Tests for configuration loading: YAML defaults plus env overrides.
"""

from __future__ import annotations

from pathlib import Path

from autonomic.config import AutonomicConfig, load_config
from autonomic.systems.self_improvement.types import (
    DurationMsValue,
    IntegerValue,
    ResourceType,
    Severity,
)

DEFAULT_YAML = Path(__file__).resolve().parents[2] / "config" / "default.yaml"


def test_defaults_without_file():
    config = load_config(None)
    assert isinstance(config, AutonomicConfig)
    assert config.self_improvement.circuit_breaker.failure_threshold == 3
    assert config.postgres.enabled is False


def test_default_yaml(monkeypatch):
    monkeypatch.delenv("AUTONOMIC_LLM_API_KEY", raising=False)
    config = load_config(DEFAULT_YAML)
    si = config.self_improvement

    assert config.instance_id == "autonomic-local"
    assert si.analyzer.min_severity == Severity.WARNING
    assert si.runtime.parameters["max_retries"] == IntegerValue(value=3)
    assert si.runtime.parameters["request_timeout_ms"] == DurationMsValue(value=30_000)
    assert si.runtime.resources[ResourceType.CACHE_SIZE] == 1_000
    assert si.allowlist.parameters["max_retries"].step == 3
    assert si.learner.weights["latency"].latency == 0.6
    assert not config.llm.configured


def test_env_overrides(monkeypatch, tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("self_improvement:\n  require_approval: false\n")
    monkeypatch.setenv("AUTONOMIC_LLM_API_KEY", "  secret  ")
    monkeypatch.setenv("AUTONOMIC_SELF_IMPROVEMENT__REQUIRE_APPROVAL", "true")
    monkeypatch.setenv("AUTONOMIC_INSTANCE_ID", "node-7")

    config = load_config(path)

    assert config.llm.api_key == "secret"
    assert config.llm.configured
    assert config.self_improvement.require_approval is True
    assert config.instance_id == "node-7"


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yaml")
    assert config.self_improvement.cycle_interval_s == 300.0
