"""
Autonomic — Self-Improvement REST Router

Operator surface for the control loop.

Endpoints:
  GET  /api/v1/self-improvement/status            - breaker, pending diagnoses, learnings
  GET  /api/v1/self-improvement/history           - executed actions (?limit, ?outcome)
  GET  /api/v1/self-improvement/diagnostics       - health score and issues (?verbose)
  GET  /api/v1/self-improvement/config            - effective config, allowlist, overrides
  GET  /api/v1/self-improvement/circuit-breaker   - breaker state and counters
  POST /api/v1/self-improvement/circuit-breaker/reset
  GET  /api/v1/self-improvement/baselines         - learned baselines
  GET  /api/v1/self-improvement/cycles            - recent cycle results
  POST /api/v1/self-improvement/pause             - {"duration": "30m"}
  POST /api/v1/self-improvement/rollback/{id}
  POST /api/v1/self-improvement/approve/{id}
  POST /api/v1/self-improvement/reject/{id}       - {"reason": "..."}
  POST /api/v1/self-improvement/cycle             - run a cycle now
  POST /api/v1/self-improvement/invocations       - record invocation events
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from autonomic.systems.self_improvement.duration import parse_duration
from autonomic.systems.self_improvement.errors import (
    ExecutorFailedError,
    OperatorActionError,
    UnknownRecordError,
)
from autonomic.systems.self_improvement.types import ExecutionOutcome, InvocationEvent

if TYPE_CHECKING:
    from autonomic.systems.self_improvement.service import SelfImprovementService

logger = structlog.get_logger("autonomic.api.self_improvement")

router = APIRouter(prefix="/api/v1/self-improvement")


class PauseRequest(BaseModel):
    duration: str


class RejectRequest(BaseModel):
    reason: str | None = None


class InvocationBatch(BaseModel):
    events: list[InvocationEvent]


def _service(request: Request) -> SelfImprovementService:
    return request.app.state.self_improvement  # type: ignore[no-any-return]


def _ok(data: Any) -> dict[str, Any]:
    return {"status": "ok", "data": data}


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error": error, "detail": detail},
    )


def _operator_error(exc: Exception) -> JSONResponse:
    if isinstance(exc, UnknownRecordError):
        return _error(404, "not_found", str(exc))
    if isinstance(exc, ExecutorFailedError):
        return _error(409, exc.kind.value, exc.message)
    return _error(409, "invalid_operation", str(exc))


# ─── Reads ────────────────────────────────────────────────────────


@router.get("/status")
async def get_status(request: Request) -> dict[str, Any]:
    return _ok(_service(request).status().model_dump(mode="json"))


@router.get("/history", response_model=None)
async def get_history(
    request: Request, limit: int = 10, outcome: str | None = None
) -> dict[str, Any] | JSONResponse:
    """Executed actions, newest first. ``outcome`` is success, failed or rolled_back."""
    parsed: ExecutionOutcome | None = None
    if outcome is not None:
        try:
            parsed = ExecutionOutcome(outcome.lower())
        except ValueError:
            return _error(400, "invalid_outcome", f"unknown outcome {outcome!r}")
    return _ok(_service(request).history(limit=max(1, limit), outcome=parsed))


@router.get("/diagnostics")
async def get_diagnostics(request: Request, verbose: bool = False) -> dict[str, Any]:
    return _ok(_service(request).diagnostics(verbose=verbose))


@router.get("/config")
async def get_config(request: Request) -> dict[str, Any]:
    return _ok(_service(request).config_view())


@router.get("/circuit-breaker")
async def get_circuit_breaker(request: Request) -> dict[str, Any]:
    return _ok(_service(request).circuit_breaker())


@router.get("/baselines")
async def get_baselines(request: Request) -> dict[str, Any]:
    return _ok(_service(request).baselines())


@router.get("/cycles")
async def get_cycles(request: Request, limit: int = 20) -> dict[str, Any]:
    cycles = _service(request).cycles(limit=max(1, limit))
    return _ok([c.model_dump(mode="json") for c in cycles])


# ─── Operator Actions ─────────────────────────────────────────────


@router.post("/circuit-breaker/reset")
async def reset_circuit_breaker(request: Request) -> dict[str, Any]:
    logger.info("operator_circuit_breaker_reset")
    return _ok(_service(request).force_reset_breaker())


@router.post("/pause", response_model=None)
async def pause(request: Request, body: PauseRequest) -> dict[str, Any] | JSONResponse:
    try:
        duration = parse_duration(body.duration)
    except ValueError as exc:
        return _error(400, "invalid_duration", str(exc))
    status = await _service(request).pause(duration)
    return _ok(status.model_dump(mode="json"))


@router.post("/rollback/{action_id}", response_model=None)
async def rollback(request: Request, action_id: str) -> dict[str, Any] | JSONResponse:
    try:
        result = await _service(request).rollback(action_id)
    except (OperatorActionError, ExecutorFailedError) as exc:
        logger.warning("operator_rollback_failed", action_id=action_id, error=str(exc))
        return _operator_error(exc)
    return _ok(result.model_dump(mode="json"))


@router.post("/approve/{diagnosis_id}", response_model=None)
async def approve(request: Request, diagnosis_id: str) -> dict[str, Any] | JSONResponse:
    try:
        result = await _service(request).approve(diagnosis_id)
    except OperatorActionError as exc:
        return _operator_error(exc)
    return _ok(result.model_dump(mode="json"))


@router.post("/reject/{diagnosis_id}", response_model=None)
async def reject(
    request: Request, diagnosis_id: str, body: RejectRequest | None = None
) -> dict[str, Any] | JSONResponse:
    reason = body.reason if body is not None else None
    try:
        diagnosis = await _service(request).reject(diagnosis_id, reason)
    except OperatorActionError as exc:
        return _operator_error(exc)
    return _ok(diagnosis.model_dump(mode="json"))


@router.post("/cycle")
async def run_cycle(request: Request) -> dict[str, Any]:
    result = await _service(request).trigger_cycle()
    return _ok(result.model_dump(mode="json"))


@router.post("/invocations")
async def record_invocations(request: Request, body: InvocationBatch) -> dict[str, Any]:
    service = _service(request)
    for event in body.events:
        service.on_invocation(event)
    return _ok({"recorded": len(body.events)})
