"""
Tests for EMA/rolling baselines and the baseline collection.
"""

from __future__ import annotations

import pytest

from autonomic.config import BaselineConfig
from autonomic.systems.self_improvement.baseline import Baseline, BaselineCollection


class TestBaseline:
    def test_first_sample_seeds_ema(self):
        baseline = Baseline(alpha=0.1, window=10)
        baseline.update(5.0)
        assert baseline.value() == 5.0
        assert baseline.sample_count == 1

    def test_ema_update(self):
        baseline = Baseline(alpha=0.5, window=10)
        baseline.update(10.0)
        baseline.update(20.0)
        assert baseline.value() == pytest.approx(15.0)

    def test_rolling_average_evicts(self):
        baseline = Baseline(alpha=0.1, window=2)
        for value in (1.0, 2.0, 9.0):
            baseline.update(value)
        assert baseline.rolling_avg == pytest.approx(5.5)
        assert baseline.sample_count == 3

    def test_validity_and_reset(self):
        baseline = Baseline()
        baseline.update(1.0)
        assert not baseline.is_valid(2)
        baseline.update(1.0)
        assert baseline.is_valid(2)

        baseline.reset()
        assert baseline.sample_count == 0
        assert baseline.rolling_avg == 0.0


class TestBaselineCollection:
    def test_per_tool_baselines(self):
        collection = BaselineCollection(BaselineConfig(min_samples=2))
        collection.update_tool("search", success=False, latency_ms=100.0, quality_score=None)
        assert not collection.tool_is_valid("search")
        collection.update_tool("search", success=True, latency_ms=300.0, quality_score=0.9)

        assert collection.tool_is_valid("search")
        assert not collection.tool_is_valid("unknown")
        tool = collection.tools["search"]
        assert tool.error_rate.sample_count == 2
        assert tool.quality_score.sample_count == 1

    def test_snapshot_without_quality_defaults_to_one(self):
        collection = BaselineCollection(BaselineConfig())
        collection.error_rate.update(0.04)
        snapshot = collection.snapshot()
        assert snapshot.error_rate == pytest.approx(0.04)
        assert snapshot.error_rate_samples == 1
        assert snapshot.quality_score == 1.0
        assert snapshot.quality_samples == 0

    def test_is_valid_requires_error_and_latency(self):
        collection = BaselineCollection(BaselineConfig())
        for _ in range(3):
            collection.error_rate.update(0.01)
        assert not collection.is_valid(3)
        for _ in range(3):
            collection.latency_p95.update(100.0)
        assert collection.is_valid(3)

    def test_to_dict_lists_tools(self):
        collection = BaselineCollection(BaselineConfig())
        collection.update_tool("b", True, 10.0, None)
        collection.update_tool("a", True, 10.0, None)
        data = collection.to_dict()
        assert list(data["tools"]) == ["a", "b"]
        assert data["tools"]["a"]["valid"] is False
