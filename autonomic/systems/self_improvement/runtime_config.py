"""
Autonomic — Runtime Configuration

The shared, mutable configuration the host reads on its request path and
the Executor adjusts. Parameters are keyed by scope and name, resources
by type. Every read and write is atomic under an internal lock.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from autonomic.systems.self_improvement.types import ConfigScope, ResourceType, ScopeKind

if TYPE_CHECKING:
    from autonomic.systems.self_improvement.types import ParamValue


class ConfigMutationError(Exception):
    """The requested change cannot be applied to the live configuration."""


class RuntimeConfig:
    def __init__(
        self,
        parameters: dict[str, ParamValue] | None = None,
        resources: dict[ResourceType, int] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        global_scope = ConfigScope().display()
        self._params: dict[tuple[str, str], ParamValue] = {
            (global_scope, key): value for key, value in (parameters or {}).items()
        }
        self._resources: dict[ResourceType, int] = dict(resources or {})

    # ─── Reads ─────────────────────────────────────────────────────

    def get_param(self, key: str, scope: ConfigScope | None = None) -> ParamValue | None:
        """Scoped value if one is set, otherwise the global value."""
        with self._lock:
            return self._lookup(key, scope or ConfigScope())

    def is_inherited(self, key: str, scope: ConfigScope) -> bool:
        """True when ``scope`` has no value of its own and reads the global one."""
        if scope.kind == ScopeKind.GLOBAL:
            return False
        with self._lock:
            return (scope.display(), key) not in self._params

    def get_resource(self, resource: ResourceType) -> int | None:
        with self._lock:
            return self._resources.get(resource)

    def _lookup(self, key: str, scope: ConfigScope) -> ParamValue | None:
        value = self._params.get((scope.display(), key))
        if value is None:
            value = self._params.get((ConfigScope().display(), key))
        return value

    # ─── Writes ────────────────────────────────────────────────────

    def set_param(self, key: str, value: ParamValue, scope: ConfigScope | None = None) -> ParamValue:
        """Apply a parameter change. Returns the value it replaced."""
        scope = scope or ConfigScope()
        with self._lock:
            current = self._lookup(key, scope)
            if current is None:
                raise ConfigMutationError(f"parameter '{key}' is not provisioned")
            if current.type != value.type:
                raise ConfigMutationError(
                    f"parameter '{key}' holds {current.type}, cannot set {value.type}"
                )
            self._params[(scope.display(), key)] = value
            return current

    def clear_param(self, key: str, scope: ConfigScope) -> ParamValue:
        """Remove a scoped override so the scope falls back to the global value."""
        if scope.kind == ScopeKind.GLOBAL:
            raise ConfigMutationError(f"cannot clear the global value of '{key}'")
        with self._lock:
            removed = self._params.pop((scope.display(), key), None)
        if removed is None:
            raise ConfigMutationError(f"no {scope.display()} override for '{key}'")
        return removed

    def set_resource(self, resource: ResourceType, value: int) -> int:
        """Apply a resource change. Returns the value it replaced."""
        if value < 0:
            raise ConfigMutationError(f"{resource.value} cannot be negative")
        with self._lock:
            current = self._resources.get(resource)
            if current is None:
                raise ConfigMutationError(f"resource '{resource.value}' is not available")
            self._resources[resource] = value
            return current

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            params: dict[str, dict[str, Any]] = {}
            for (scope, key), value in sorted(self._params.items()):
                params.setdefault(scope, {})[key] = value.model_dump()
            return {
                "parameters": params,
                "resources": {k.value: v for k, v in sorted(self._resources.items())},
            }
