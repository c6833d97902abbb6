"""
Autonomic — Common Primitives

Base model and small utilities shared by every system.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class AutonomicBaseModel(BaseModel):
    """Base model for all Autonomic data types."""

    model_config = {"populate_by_name": True, "from_attributes": True}
