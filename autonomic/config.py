"""
Autonomic — Configuration

Pydantic sub-configs under a pydantic-settings root. Loaded from YAML,
then overridden by AUTONOMIC_* environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from autonomic.systems.self_improvement.types import (
    BooleanValue,
    DurationMsValue,
    IntegerValue,
    ParamValue,
    ResourceType,
    Severity,
)

# ─── Infrastructure ───────────────────────────────────────────────


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class PostgresConfig(BaseModel):
    # When disabled the store runs in-memory only
    enabled: bool = False
    host: str = "localhost"
    port: int = 5432
    database: str = "autonomic"
    username: str = "autonomic"
    password: str = "autonomic_dev"
    pool_size: int = 5
    ssl: bool = False

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.username}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class LLMConfig(BaseModel):
    provider: str = "anthropic"  # "anthropic" | "ollama"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    endpoint: str = "http://localhost:11434"  # ollama only
    max_tokens: int = 1024
    temperature: float = 0.2

    @model_validator(mode="after")
    def _strip_api_key(self) -> LLMConfig:
        if self.api_key:
            object.__setattr__(self, "api_key", self.api_key.strip())
        return self

    @property
    def configured(self) -> bool:
        return self.provider == "ollama" or bool(self.api_key)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Self-Improvement ─────────────────────────────────────────────


class ParamBounds(BaseModel):
    """Valid range for an adjustable parameter."""

    min: float | None = None
    max: float | None = None
    # Largest change a single action may make
    step: float | None = None
    # Only for string/boolean parameters
    allowed_values: list[str] | None = None


class ResourceBounds(BaseModel):
    min: int
    max: int
    step: int | None = None


def _default_param_bounds() -> dict[str, ParamBounds]:
    return {
        "max_retries": ParamBounds(min=1, max=10, step=3),
        "request_timeout_ms": ParamBounds(min=1_000, max=120_000, step=30_000),
        "retry_delay_ms": ParamBounds(min=100, max=10_000, step=2_000),
        "degraded_mode": ParamBounds(allowed_values=["true", "false"]),
    }


def _default_resource_bounds() -> dict[ResourceType, ResourceBounds]:
    return {
        ResourceType.MAX_CONCURRENT_REQUESTS: ResourceBounds(min=1, max=100, step=20),
        ResourceType.CONNECTION_POOL_SIZE: ResourceBounds(min=1, max=50, step=10),
        ResourceType.CACHE_SIZE: ResourceBounds(min=10, max=10_000, step=2_000),
        ResourceType.TIMEOUT_MS: ResourceBounds(min=1_000, max=120_000, step=30_000),
        ResourceType.MAX_RETRIES: ResourceBounds(min=0, max=10, step=3),
        ResourceType.RETRY_DELAY_MS: ResourceBounds(min=100, max=10_000, step=2_000),
    }


def _default_parameters() -> dict[str, ParamValue]:
    return {
        "max_retries": IntegerValue(value=3),
        "request_timeout_ms": DurationMsValue(value=30_000),
        "retry_delay_ms": DurationMsValue(value=500),
        "degraded_mode": BooleanValue(value=False),
    }


def _default_resources() -> dict[ResourceType, int]:
    return {
        ResourceType.MAX_CONCURRENT_REQUESTS: 10,
        ResourceType.CONNECTION_POOL_SIZE: 10,
        ResourceType.CACHE_SIZE: 1_000,
        ResourceType.TIMEOUT_MS: 30_000,
        ResourceType.MAX_RETRIES: 3,
        ResourceType.RETRY_DELAY_MS: 500,
    }


class BaselineConfig(BaseModel):
    ema_alpha: float = Field(default=0.1, gt=0.0, le=1.0)
    rolling_window_size: int = Field(default=100, ge=1)
    # Samples before a baseline is trusted
    min_samples: int = 10


class MonitorConfig(BaseModel):
    # Invocations needed since the last check before check_health reports
    min_samples: int = 10
    window_size: int = 1_000
    # Deviation (percent) past which each metric triggers
    error_rate_threshold_pct: float = 25.0
    latency_threshold_pct: float = 50.0
    quality_threshold_pct: float = 10.0
    # Error rates at or below this never trigger
    error_rate_floor: float = 0.01
    # Health checks folded into the global baselines before they are trusted
    baseline_min_checks: int = 3


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=3, ge=1, le=10)
    reset_timeout_s: float = 300.0
    success_threshold: int = Field(default=2, ge=1)


class AllowlistConfig(BaseModel):
    parameters: dict[str, ParamBounds] = Field(default_factory=_default_param_bounds)
    resources: dict[ResourceType, ResourceBounds] = Field(
        default_factory=_default_resource_bounds
    )


class AnalyzerConfig(BaseModel):
    min_severity: Severity = Severity.WARNING
    max_pending: int = 5
    collaborator_timeout_s: float = 30.0
    # Ask the collaborator to review each selected action
    validate_actions: bool = True


class ExecutorConfig(BaseModel):
    cooldown_s: float = 60.0
    max_actions_per_window: int = 10
    rate_window_s: float = 3_600.0


class RewardWeights(BaseModel):
    error_rate: float = 0.34
    latency: float = 0.33
    quality: float = 0.33


def _default_reward_weights() -> dict[str, RewardWeights]:
    return {
        "error_rate": RewardWeights(error_rate=0.6, latency=0.2, quality=0.2),
        "latency": RewardWeights(error_rate=0.2, latency=0.6, quality=0.2),
        "quality_score": RewardWeights(error_rate=0.2, latency=0.2, quality=0.6),
    }


class LearnerConfig(BaseModel):
    min_post_samples: int = 10
    collaborator_timeout_s: float = 30.0
    # Keyed by trigger metric type; anything missing uses default_weights
    weights: dict[str, RewardWeights] = Field(default_factory=_default_reward_weights)
    default_weights: RewardWeights = Field(default_factory=RewardWeights)
    significance_threshold: float = 0.1
    max_outcomes: int = 1_000


class RuntimeDefaultsConfig(BaseModel):
    """Initial values of the shared runtime configuration."""

    parameters: dict[str, ParamValue] = Field(default_factory=_default_parameters)
    resources: dict[ResourceType, int] = Field(default_factory=_default_resources)


class SelfImprovementConfig(BaseModel):
    enabled: bool = True
    require_approval: bool = False
    cycle_interval_s: float = 300.0
    max_history: int = Field(default=200, ge=1)
    recent_learnings: int = 10
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    baseline: BaselineConfig = Field(default_factory=BaselineConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    allowlist: AllowlistConfig = Field(default_factory=AllowlistConfig)
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    learner: LearnerConfig = Field(default_factory=LearnerConfig)
    runtime: RuntimeDefaultsConfig = Field(default_factory=RuntimeDefaultsConfig)

    @field_validator("cycle_interval_s")
    @classmethod
    def _clamp_interval(cls, v: float) -> float:
        return min(3_600.0, max(30.0, v))


# ─── Root ─────────────────────────────────────────────────────────


class AutonomicConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTONOMIC_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "autonomic-default"

    server: ServerConfig = Field(default_factory=ServerConfig)
    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    self_improvement: SelfImprovementConfig = Field(default_factory=SelfImprovementConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: str | Path | None = None) -> AutonomicConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    # Init kwargs outrank env in pydantic-settings, so secrets are injected here
    if llm_key := os.environ.get("AUTONOMIC_LLM_API_KEY"):
        raw.setdefault("llm", {})["api_key"] = llm_key
    if llm_provider := os.environ.get("AUTONOMIC_LLM__PROVIDER"):
        raw.setdefault("llm", {})["provider"] = llm_provider
    if llm_model := os.environ.get("AUTONOMIC_LLM__MODEL"):
        raw.setdefault("llm", {})["model"] = llm_model
    if pg_host := os.environ.get("AUTONOMIC_POSTGRES__HOST"):
        raw.setdefault("postgres", {})["host"] = pg_host
    if pg_pw := os.environ.get("AUTONOMIC_POSTGRES_PASSWORD"):
        raw.setdefault("postgres", {})["password"] = pg_pw
    if pg_enabled := os.environ.get("AUTONOMIC_POSTGRES__ENABLED"):
        raw.setdefault("postgres", {})["enabled"] = pg_enabled.lower() in ("true", "1", "yes")
    if approval := os.environ.get("AUTONOMIC_SELF_IMPROVEMENT__REQUIRE_APPROVAL"):
        raw.setdefault("self_improvement", {})["require_approval"] = (
            approval.lower() in ("true", "1", "yes")
        )
    if instance_id := os.environ.get("AUTONOMIC_INSTANCE_ID"):
        raw["instance_id"] = instance_id

    return AutonomicConfig(**raw)
