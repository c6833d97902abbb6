"""
Autonomic — Baselines

Per-metric drift trackers: an exponential moving average plus a windowed
rolling average and a sample count. Pure data structures; the Monitor
owns the locking.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from autonomic.primitives.common import utc_now
from autonomic.systems.self_improvement.types import BaselineSnapshot

if TYPE_CHECKING:
    from autonomic.config import BaselineConfig


class Baseline:
    """EMA + rolling average tracker for a single metric."""

    def __init__(self, alpha: float = 0.1, window: int = 100) -> None:
        self._alpha = alpha
        self._values: deque[float] = deque(maxlen=window)
        self._sum: float = 0.0
        self.ema: float = 0.0
        self.sample_count: int = 0

    @classmethod
    def from_config(cls, config: BaselineConfig) -> Baseline:
        return cls(alpha=config.ema_alpha, window=config.rolling_window_size)

    def update(self, value: float) -> None:
        if len(self._values) == self._values.maxlen:
            self._sum -= self._values[0]
        self._values.append(value)
        self._sum += value
        self.sample_count += 1
        if self.sample_count == 1:
            self.ema = value
        else:
            self.ema = self._alpha * value + (1 - self._alpha) * self.ema

    @property
    def rolling_avg(self) -> float:
        if not self._values:
            return 0.0
        return self._sum / len(self._values)

    def value(self) -> float:
        return self.ema

    def is_valid(self, min_samples: int) -> bool:
        return self.sample_count >= min_samples

    def reset(self) -> None:
        self._values.clear()
        self._sum = 0.0
        self.ema = 0.0
        self.sample_count = 0

    def to_dict(self) -> dict[str, float | int]:
        return {
            "ema": round(self.ema, 6),
            "rolling_avg": round(self.rolling_avg, 6),
            "sample_count": self.sample_count,
        }


class ToolBaselines:
    def __init__(self, config: BaselineConfig) -> None:
        self.error_rate = Baseline.from_config(config)
        self.latency_ms = Baseline.from_config(config)
        self.quality_score = Baseline.from_config(config)

    def to_dict(self) -> dict[str, dict[str, float | int]]:
        return {
            "error_rate": self.error_rate.to_dict(),
            "latency_ms": self.latency_ms.to_dict(),
            "quality_score": self.quality_score.to_dict(),
        }


class BaselineCollection:
    """
    Global baselines for the three health metrics, plus per-tool baselines.

    Per-tool baselines are fed one sample per invocation. The global
    baselines are fed one window aggregate per health check.
    """

    def __init__(self, config: BaselineConfig) -> None:
        self._config = config
        self.error_rate = Baseline.from_config(config)
        self.latency_p95 = Baseline.from_config(config)
        self.quality_score = Baseline.from_config(config)
        self.tools: dict[str, ToolBaselines] = {}

    def update_tool(
        self,
        tool_name: str,
        success: bool,
        latency_ms: float,
        quality_score: float | None,
    ) -> None:
        tool = self.tools.get(tool_name)
        if tool is None:
            tool = ToolBaselines(self._config)
            self.tools[tool_name] = tool
        tool.error_rate.update(0.0 if success else 1.0)
        tool.latency_ms.update(latency_ms)
        if quality_score is not None:
            tool.quality_score.update(quality_score)

    def is_valid(self, min_checks: int) -> bool:
        return self.error_rate.is_valid(min_checks) and self.latency_p95.is_valid(min_checks)

    def tool_is_valid(self, tool_name: str) -> bool:
        tool = self.tools.get(tool_name)
        return tool is not None and tool.error_rate.is_valid(self._config.min_samples)

    def snapshot(self) -> BaselineSnapshot:
        return BaselineSnapshot(
            error_rate=self.error_rate.value(),
            error_rate_samples=self.error_rate.sample_count,
            latency_p95_ms=self.latency_p95.value(),
            latency_samples=self.latency_p95.sample_count,
            quality_score=(
                self.quality_score.value() if self.quality_score.sample_count else 1.0
            ),
            quality_samples=self.quality_score.sample_count,
            updated_at=utc_now(),
        )

    def reset(self) -> None:
        self.error_rate.reset()
        self.latency_p95.reset()
        self.quality_score.reset()
        self.tools.clear()

    def to_dict(self) -> dict[str, object]:
        return {
            "error_rate": self.error_rate.to_dict(),
            "latency_p95_ms": self.latency_p95.to_dict(),
            "quality_score": self.quality_score.to_dict(),
            "tools": {
                name: {**t.to_dict(), "valid": self.tool_is_valid(name)}
                for name, t in sorted(self.tools.items())
            },
        }
