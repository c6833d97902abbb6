"""
Autonomic — Operator CLI

Talks to a running Autonomic service over its HTTP API.

Usage:
    autonomic status
    autonomic history --limit 20 --outcome success
    autonomic diagnostics --verbose
    autonomic pause 1h
    autonomic approve <DIAGNOSIS_ID>
    autonomic reject <DIAGNOSIS_ID> "Risk too high"

Override the API location with AUTONOMIC_API_URL.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

import httpx

from autonomic.systems.self_improvement.duration import parse_duration

API_BASE = os.getenv("AUTONOMIC_API_URL", "http://localhost:8000")
API_PREFIX = "/api/v1/self-improvement"
REQUEST_TIMEOUT_S = 60.0

_OUTCOMES = ("success", "failed", "rolled_back")


class CLIError(Exception):
    """A request the operator must correct, or a failed API call."""


# ── Argument parsing ──────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autonomic",
        description="Operate the self-improvement control loop.",
    )
    parser.add_argument(
        "--url",
        default=API_BASE,
        help=f"Service base URL (default: {API_BASE})",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw JSON payload",
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    commands.add_parser("status", help="Show current system status")

    history = commands.add_parser("history", help="Show action history")
    history.add_argument("--limit", "-l", type=int, default=10, help="Maximum records (default: 10)")
    history.add_argument("--outcome", "-o", choices=_OUTCOMES, help="Filter by outcome")

    diagnostics = commands.add_parser(
        "diagnostics", aliases=["diag"], help="Show diagnostic information"
    )
    diagnostics.add_argument("--verbose", "-v", action="store_true", help="Show component stats")

    commands.add_parser("config", help="Show current configuration")

    breaker = commands.add_parser(
        "circuit-breaker", aliases=["cb"], help="Show circuit breaker status"
    )
    breaker.add_argument("--reset", action="store_true", help="Force the breaker closed")

    commands.add_parser("baselines", help="Show current baselines")

    pause = commands.add_parser("pause", help="Temporarily pause the system")
    pause.add_argument("duration", help='e.g. "1h", "30m", "2d"; "0s" resumes')

    rollback = commands.add_parser("rollback", help="Roll back a specific action")
    rollback.add_argument("action_id")

    approve = commands.add_parser("approve", help="Approve a pending diagnosis")
    approve.add_argument("diagnosis_id")

    reject = commands.add_parser("reject", help="Reject a pending diagnosis")
    reject.add_argument("diagnosis_id")
    reject.add_argument("reason", nargs="*", help="Optional reason for rejection")

    commands.add_parser("cycle", help="Run one improvement cycle now")
    return parser


# ── Requests ──────────────────────────────────────────────────────────────────


_Request = tuple[str, str, dict[str, Any] | None, dict[str, Any] | None]


def _request_for(args: argparse.Namespace) -> _Request:
    """Map parsed arguments to (method, path, query params, json body)."""
    command = args.command
    if command == "status":
        return "GET", "/status", None, None
    if command == "history":
        if args.limit < 1:
            raise CLIError("--limit must be at least 1")
        params: dict[str, Any] = {"limit": args.limit}
        if args.outcome:
            params["outcome"] = args.outcome
        return "GET", "/history", params, None
    if command in ("diagnostics", "diag"):
        return "GET", "/diagnostics", {"verbose": str(args.verbose).lower()}, None
    if command == "config":
        return "GET", "/config", None, None
    if command in ("circuit-breaker", "cb"):
        if args.reset:
            return "POST", "/circuit-breaker/reset", None, None
        return "GET", "/circuit-breaker", None, None
    if command == "baselines":
        return "GET", "/baselines", None, None
    if command == "pause":
        try:
            parse_duration(args.duration)
        except ValueError as exc:
            raise CLIError(str(exc)) from exc
        return "POST", "/pause", None, {"duration": args.duration}
    if command == "rollback":
        return "POST", f"/rollback/{args.action_id}", None, None
    if command == "approve":
        return "POST", f"/approve/{args.diagnosis_id}", None, None
    if command == "reject":
        reason = " ".join(args.reason).strip() or None
        return "POST", f"/reject/{args.diagnosis_id}", None, {"reason": reason}
    if command == "cycle":
        return "POST", "/cycle", None, None
    raise CLIError(f"unknown command {command!r}")


async def call_api(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    params: dict[str, Any] | None = None,
    body: dict[str, Any] | None = None,
) -> Any:
    try:
        response = await client.request(method, f"{API_PREFIX}{path}", params=params, json=body)
    except httpx.ConnectError as exc:
        raise CLIError(
            f"could not connect to {client.base_url}; is the Autonomic service running?"
        ) from exc
    except httpx.TimeoutException as exc:
        raise CLIError(f"request timed out after {REQUEST_TIMEOUT_S:.0f}s") from exc

    try:
        payload = response.json()
    except ValueError as exc:
        raise CLIError(f"non-JSON response (HTTP {response.status_code}): {response.text}") from exc

    if response.status_code != 200 or payload.get("status") != "ok":
        detail = payload.get("detail") or payload.get("error") or payload
        raise CLIError(f"HTTP {response.status_code}: {detail}")
    return payload["data"]


# ── Output ────────────────────────────────────────────────────────────────────


def format_status(data: dict[str, Any]) -> str:
    metrics = data.get("current_metrics") or {}
    lines = [
        "=" * 60,
        f"  ENABLED         : {data.get('enabled')}",
        f"  PAUSED          : {data.get('pause_remaining') or 'no'}",
        f"  CIRCUIT BREAKER : {str(data.get('circuit_state', 'unknown')).upper()}",
        f"  INVOCATIONS     : {data.get('total_invocations', 0)}",
        f"  CYCLES          : {data.get('total_cycles', 0)} ({data.get('failed_cycles', 0)} failed)",
        f"  ACTIONS         : {data.get('total_actions_executed', 0)} executed, "
        f"{data.get('total_actions_rolled_back', 0)} rolled back",
        f"  PENDING         : {len(data.get('pending_diagnoses') or [])}",
        f"  IN FLIGHT       : {data.get('in_flight_action_id') or 'none'}",
    ]
    if metrics:
        lines.append(
            f"  METRICS         : error_rate={metrics.get('error_rate', 0.0):.4f} "
            f"p95={metrics.get('latency_p95_ms', 0)}ms "
            f"quality={metrics.get('quality_score', 0.0):.3f}"
        )
    last = data.get("last_cycle")
    if last:
        lines.append(f"  LAST CYCLE      : {last.get('outcome')} at {last.get('completed_at')}")
    for diagnosis in data.get("pending_diagnoses") or []:
        lines.append(f"  - pending {diagnosis['id']} [{diagnosis['severity']}] {diagnosis['description']}")
    lines.append("=" * 60)
    return "\n".join(lines)


def format_history(data: dict[str, Any]) -> str:
    actions = data.get("actions") or []
    if not actions:
        return "No actions recorded."
    lines = [f"{len(actions)} of {data.get('total_count', len(actions))} actions:"]
    for entry in actions:
        reward = entry.get("reward")
        reward_text = f"{reward:+.3f}" if reward is not None else "n/a"
        lines.append(
            f"  {entry['id']}  {entry['outcome']:<11}  {entry['action']}  "
            f"({entry['execution_time_ms']}ms, reward {reward_text})"
        )
    return "\n".join(lines)


def render(command: str, data: Any, raw: bool) -> str:
    if not raw and command == "status":
        return format_status(data)
    if not raw and command == "history":
        return format_history(data)
    return json.dumps(data, indent=2, default=str)


# ── Main ──────────────────────────────────────────────────────────────────────


async def run(argv: list[str] | None = None, client: httpx.AsyncClient | None = None) -> int:
    """Parse ``argv``, call the API and print the result. Returns the exit code."""
    args = build_parser().parse_args(argv)
    try:
        method, path, params, body = _request_for(args)
    except CLIError as exc:
        print(f"[!] {exc}", file=sys.stderr)
        return 2

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(base_url=args.url, timeout=REQUEST_TIMEOUT_S)
    try:
        data = await call_api(client, method, path, params, body)
    except CLIError as exc:
        print(f"[!] {exc}", file=sys.stderr)
        return 1
    finally:
        if owns_client:
            await client.aclose()

    print(render(args.command, data, args.json))
    return 0


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
