"""
Autonomic — Monitor

Ingests invocation events from the host and turns them into health
reports. Recording is a short critical section so the request path never
waits on anything slower than a deque append.

Each health check compares the current window against the baselines as
they stood at the previous check, then folds the window into the
baselines. Comparing against a frozen reference keeps a regression from
diluting its own baseline before it is measured.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from typing import TYPE_CHECKING, Any

import structlog

from autonomic.systems.self_improvement.baseline import BaselineCollection
from autonomic.systems.self_improvement.types import (
    ErrorRateTrigger,
    HealthReport,
    LatencyTrigger,
    MetricsSnapshot,
    QualityScoreTrigger,
    ToolMetrics,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from autonomic.config import BaselineConfig, MonitorConfig
    from autonomic.systems.self_improvement.types import (
        BaselineSnapshot,
        InvocationEvent,
        TriggerMetric,
    )

logger = structlog.get_logger()


def percentile(values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile. 0.0 for an empty sequence."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100.0 * len(ordered)))
    return ordered[rank - 1]


def aggregate(events: Sequence[InvocationEvent], quality_fallback: float = 1.0) -> MetricsSnapshot:
    """Collapse a window of events into a MetricsSnapshot."""
    if not events:
        return MetricsSnapshot(quality_score=quality_fallback)

    failures = sum(1 for e in events if not e.success)
    scores = [e.quality_score for e in events if e.quality_score is not None]

    per_tool: dict[str, list[InvocationEvent]] = {}
    for event in events:
        per_tool.setdefault(event.tool_name, []).append(event)

    tool_metrics = {
        name: ToolMetrics(
            error_rate=sum(1 for e in tool_events if not e.success) / len(tool_events),
            avg_latency_ms=sum(e.latency_ms for e in tool_events) / len(tool_events),
            invocation_count=len(tool_events),
        )
        for name, tool_events in per_tool.items()
    }

    return MetricsSnapshot(
        error_rate=failures / len(events),
        latency_p95_ms=int(percentile([e.latency_ms for e in events], 95.0)),
        quality_score=sum(scores) / len(scores) if scores else quality_fallback,
        invocation_count=len(events),
        timestamp=events[-1].timestamp,
        tool_metrics=tool_metrics,
    )


class Monitor:
    """
    Rolling window of invocation events plus the learned baselines.

    A single mutex guards the window, the counters and the baselines.
    ``record_invocation`` holds it for O(1) work; checks hold it while they
    aggregate so no reader sees a half-applied update.
    """

    def __init__(self, config: MonitorConfig, baseline_config: BaselineConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._events: deque[InvocationEvent] = deque(maxlen=config.window_size)
        self._baselines = BaselineCollection(baseline_config)
        self._reference: BaselineSnapshot | None = None
        self._last_report: HealthReport | None = None
        self._logger = logger.bind(system="self_improvement", component="monitor")

        self._since_check: int = 0
        self._total_events: int = 0
        self._total_checks: int = 0
        self._total_triggers: int = 0

    # ─── Ingestion ─────────────────────────────────────────────────

    def record_invocation(self, event: InvocationEvent) -> None:
        with self._lock:
            self._events.append(event)
            self._since_check += 1
            self._total_events += 1
            self._baselines.update_tool(
                event.tool_name, event.success, float(event.latency_ms), event.quality_score
            )

    # ─── Checks ────────────────────────────────────────────────────

    def check_health(self) -> HealthReport | None:
        """None until ``min_samples`` invocations arrived since the last check."""
        with self._lock:
            if self._since_check < self._config.min_samples:
                return None
            return self._check_locked()

    def force_check(self) -> HealthReport | None:
        """Check regardless of the sample gate. None only with no events at all."""
        with self._lock:
            if not self._events:
                return None
            return self._check_locked()

    def _check_locked(self) -> HealthReport:
        window = self._window_locked()
        reference = self._reference
        fallback_quality = reference.quality_score if reference is not None else 1.0
        current = aggregate(window, quality_fallback=fallback_quality)
        scored = any(e.quality_score is not None for e in window)

        triggers = self._evaluate(current, reference, scored) if reference is not None else []

        self._baselines.error_rate.update(current.error_rate)
        self._baselines.latency_p95.update(float(current.latency_p95_ms))
        if scored:
            self._baselines.quality_score.update(current.quality_score)
        self._reference = self._baselines.snapshot()

        self._since_check = 0
        self._total_checks += 1
        self._total_triggers += len(triggers)

        report = HealthReport(
            current_metrics=current,
            baselines=reference if reference is not None else self._reference,
            triggers=triggers,
            is_healthy=not triggers,
        )
        self._last_report = report

        if triggers:
            self._logger.info(
                "health_triggers_detected",
                count=len(triggers),
                metrics=[t.metric_type for t in triggers],
                error_rate=round(current.error_rate, 4),
                latency_p95_ms=current.latency_p95_ms,
                quality_score=round(current.quality_score, 4),
            )
        else:
            self._logger.debug("health_check_clean", samples=len(window))
        return report

    def _window_locked(self) -> list[InvocationEvent]:
        events = list(self._events)
        if 0 < self._since_check < len(events):
            return events[-self._since_check:]
        return events

    def _evaluate(
        self,
        current: MetricsSnapshot,
        reference: BaselineSnapshot,
        scored: bool,
    ) -> list[TriggerMetric]:
        cfg = self._config
        min_checks = cfg.baseline_min_checks
        triggers: list[TriggerMetric] = []

        if reference.error_rate_samples >= min_checks and current.error_rate > cfg.error_rate_floor:
            base = reference.error_rate
            error = ErrorRateTrigger(
                observed=current.error_rate,
                baseline=base,
                threshold=base * (1 + cfg.error_rate_threshold_pct / 100.0),
            )
            if error.deviation_pct() > cfg.error_rate_threshold_pct:
                triggers.append(error)

        if reference.latency_samples >= min_checks:
            base_ms = round(reference.latency_p95_ms)
            latency = LatencyTrigger(
                observed_p95_ms=current.latency_p95_ms,
                baseline_ms=base_ms,
                threshold_ms=round(base_ms * (1 + cfg.latency_threshold_pct / 100.0)),
            )
            if latency.deviation_pct() > cfg.latency_threshold_pct:
                triggers.append(latency)

        if scored and reference.quality_samples >= min_checks:
            base = reference.quality_score
            quality = QualityScoreTrigger(
                observed=current.quality_score,
                baseline=base,
                minimum=base * (1 - cfg.quality_threshold_pct / 100.0),
            )
            if quality.deviation_pct() > cfg.quality_threshold_pct:
                triggers.append(quality)

        return triggers

    # ─── Snapshots ─────────────────────────────────────────────────

    @property
    def total_events(self) -> int:
        return self._total_events

    def current_metrics(self) -> MetricsSnapshot:
        """Aggregate of the events since the last check (or the whole window)."""
        with self._lock:
            fallback = self._reference.quality_score if self._reference else 1.0
            return aggregate(self._window_locked(), quality_fallback=fallback)

    def snapshot_since(self, mark: int) -> MetricsSnapshot:
        """
        Aggregate of the events recorded after ``total_events`` was ``mark``.

        ``invocation_count`` is the true count even when the window has
        already evicted some of those events.
        """
        with self._lock:
            count = max(0, self._total_events - mark)
            events = list(self._events)[-count:] if count else []
            fallback = self._reference.quality_score if self._reference else 1.0
            snapshot = aggregate(events, quality_fallback=fallback)
            return snapshot.model_copy(update={"invocation_count": count})

    def reference_baselines(self) -> BaselineSnapshot:
        with self._lock:
            return self._reference or self._baselines.snapshot()

    @property
    def last_report(self) -> HealthReport | None:
        return self._last_report

    def baselines(self) -> dict[str, Any]:
        with self._lock:
            data = self._baselines.to_dict()
            data["valid"] = self._baselines.is_valid(self._config.baseline_min_checks)
            return data

    def reset_baselines(self) -> None:
        with self._lock:
            self._baselines.reset()
            self._reference = None
        self._logger.info("baselines_reset")

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_events": self._total_events,
            "events_since_check": self._since_check,
            "window_size": len(self._events),
            "total_checks": self._total_checks,
            "total_triggers": self._total_triggers,
        }
