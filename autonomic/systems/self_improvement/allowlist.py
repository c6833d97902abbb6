"""
Autonomic — Allowlist

Static table of valid ranges for adjustable parameters and resources.
Every action passes through ``validate()`` before it can touch runtime
configuration. Anything not explicitly registered is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from autonomic.systems.self_improvement.types import (
    AdjustParam,
    BooleanValue,
    NoOp,
    ResourceType,
    ScaleResource,
    StringValue,
)

if TYPE_CHECKING:
    from autonomic.config import AllowlistConfig, ParamBounds, ResourceBounds
    from autonomic.systems.self_improvement.types import SuggestedAction

logger = structlog.get_logger()


@dataclass(frozen=True)
class AllowlistDecision:
    allowed: bool
    reason: str = ""


_ALLOWED = AllowlistDecision(allowed=True)


class Allowlist:
    """Hard gate over every proposed configuration change."""

    def __init__(self, config: AllowlistConfig | None = None) -> None:
        self._params: dict[str, ParamBounds] = {}
        self._resources: dict[ResourceType, ResourceBounds] = {}
        if config is not None:
            self._params.update(config.parameters)
            self._resources.update(config.resources)
        self._logger = logger.bind(system="self_improvement", component="allowlist")

    def register_param(self, key: str, bounds: ParamBounds) -> None:
        self._params[key] = bounds

    def register_resource(self, resource: ResourceType, bounds: ResourceBounds) -> None:
        self._resources[resource] = bounds

    def param_bounds(self, key: str) -> ParamBounds | None:
        return self._params.get(key)

    def resource_bounds(self, resource: ResourceType) -> ResourceBounds | None:
        return self._resources.get(resource)

    def validate(self, action: SuggestedAction) -> AllowlistDecision:
        if isinstance(action, AdjustParam):
            decision = self._validate_param(action)
        elif isinstance(action, ScaleResource):
            decision = self._validate_resource(action)
        elif isinstance(action, NoOp):
            decision = AllowlistDecision(False, "no-op actions are never executed")
        else:
            decision = AllowlistDecision(False, f"unknown action type {type(action).__name__}")

        if not decision.allowed:
            self._logger.info(
                "action_not_allowed",
                action=action.action,
                reason=decision.reason,
            )
        return decision

    def _validate_param(self, action: AdjustParam) -> AllowlistDecision:
        bounds = self._params.get(action.key)
        if bounds is None:
            return AllowlistDecision(False, f"parameter '{action.key}' is not registered")

        if action.new_value.type != action.old_value.type:
            return AllowlistDecision(
                False,
                f"type change {action.old_value.type} -> {action.new_value.type} "
                f"for '{action.key}'",
            )

        if isinstance(action.new_value, (StringValue, BooleanValue)):
            if not bounds.allowed_values:
                return AllowlistDecision(
                    False, f"parameter '{action.key}' has no allowed values registered"
                )
            if action.new_value.display() not in bounds.allowed_values:
                return AllowlistDecision(
                    False,
                    f"{action.new_value.display()} not in allowed values for '{action.key}'",
                )
            return _ALLOWED

        new = action.new_value.as_float()
        old = action.old_value.as_float()
        if new is None or old is None or bounds.min is None or bounds.max is None:
            return AllowlistDecision(
                False, f"parameter '{action.key}' has no numeric range registered"
            )
        if not bounds.min <= new <= bounds.max:
            return AllowlistDecision(
                False,
                f"{action.key}={action.new_value.display()} outside "
                f"[{bounds.min:g}, {bounds.max:g}]",
            )
        if bounds.step is not None and abs(new - old) > bounds.step:
            return AllowlistDecision(
                False,
                f"{action.key} change of {abs(new - old):g} exceeds step {bounds.step:g}",
            )
        return _ALLOWED

    def _validate_resource(self, action: ScaleResource) -> AllowlistDecision:
        bounds = self._resources.get(action.resource)
        if bounds is None:
            return AllowlistDecision(
                False, f"resource '{action.resource.value}' is not registered"
            )
        if not bounds.min <= action.new_value <= bounds.max:
            return AllowlistDecision(
                False,
                f"{action.resource.value}={action.new_value} outside "
                f"[{bounds.min}, {bounds.max}]",
            )
        delta = abs(action.new_value - action.old_value)
        if bounds.step is not None and delta > bounds.step:
            return AllowlistDecision(
                False,
                f"{action.resource.value} change of {delta} exceeds step {bounds.step}",
            )
        return _ALLOWED

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameters": {k: v.model_dump() for k, v in sorted(self._params.items())},
            "resources": {
                k.value: v.model_dump() for k, v in sorted(self._resources.items())
            },
        }
