"""
Autonomic — Durations

Human-friendly duration strings for operator input ("30m", "1h", "500ms")
and compact display of remaining cooldowns and pauses.
"""

from __future__ import annotations

from datetime import timedelta

_UNITS: tuple[tuple[str, str], ...] = (
    ("ms", "milliseconds"),
    ("s", "seconds"),
    ("m", "minutes"),
    ("h", "hours"),
    ("d", "days"),
)


def parse_duration(text: str) -> timedelta:
    """
    Parse an integer followed by one of ms, s, m, h, d.

    Raises ValueError for empty input, an unknown unit, or a non-integer
    amount.
    """
    raw = text.strip().lower()
    if not raw:
        raise ValueError("Empty duration string")

    for suffix, unit in _UNITS:
        if raw.endswith(suffix):
            number = raw[: -len(suffix)].strip()
            if not number.isdigit():
                raise ValueError(f"Invalid duration amount: {number!r}")
            return timedelta(**{unit: int(number)})

    raise ValueError(f"Unknown duration unit in {text!r} (use ms, s, m, h or d)")


def format_duration(duration: timedelta) -> str:
    secs = max(0, int(duration.total_seconds()))
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        mins, rem = divmod(secs, 60)
        return f"{mins}m" if rem == 0 else f"{mins}m {rem}s"
    if secs < 86400:
        hours, rem = divmod(secs, 3600)
        mins = rem // 60
        return f"{hours}h" if mins == 0 else f"{hours}h {mins}m"
    days, rem = divmod(secs, 86400)
    hours = rem // 3600
    return f"{days}d" if hours == 0 else f"{days}d {hours}h"
