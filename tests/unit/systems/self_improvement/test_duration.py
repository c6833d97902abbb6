"""
Tests for duration parsing and display.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from autonomic.systems.self_improvement.duration import format_duration, parse_duration


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("500ms", timedelta(milliseconds=500)),
            ("30s", timedelta(seconds=30)),
            ("30m", timedelta(minutes=30)),
            ("1h", timedelta(hours=1)),
            ("2d", timedelta(days=2)),
            ("0s", timedelta(0)),
            ("  1H ", timedelta(hours=1)),
        ],
    )
    def test_valid(self, text: str, expected: timedelta):
        assert parse_duration(text) == expected

    def test_empty(self):
        with pytest.raises(ValueError, match="Empty"):
            parse_duration("   ")

    def test_unknown_unit(self):
        with pytest.raises(ValueError, match="Unknown duration unit"):
            parse_duration("3w")

    @pytest.mark.parametrize("text", ["h", "1.5h", "-1h", "abcm"])
    def test_bad_amount(self, text: str):
        with pytest.raises(ValueError, match="Invalid duration amount"):
            parse_duration(text)


class TestFormatDuration:
    @pytest.mark.parametrize(
        ("duration", "expected"),
        [
            (timedelta(seconds=45), "45s"),
            (timedelta(minutes=5), "5m"),
            (timedelta(minutes=5, seconds=30), "5m 30s"),
            (timedelta(hours=2), "2h"),
            (timedelta(hours=2, minutes=15), "2h 15m"),
            (timedelta(days=1), "1d"),
            (timedelta(days=1, hours=3), "1d 3h"),
        ],
    )
    def test_format(self, duration: timedelta, expected: str):
        assert format_duration(duration) == expected

    def test_negative_clamps_to_zero(self):
        assert format_duration(timedelta(seconds=-10)) == "0s"
