"""
Autonomic — Application Entry Point

FastAPI application hosting the self-improvement controller and its
operator API.

uvicorn autonomic.main:app
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI

# Load .env file before any configuration is loaded
load_dotenv()

from autonomic.api.routers.self_improvement import router as self_improvement_router
from autonomic.clients.llm import create_llm_provider
from autonomic.clients.postgres import PostgresClient
from autonomic.config import load_config
from autonomic.systems.self_improvement.service import SelfImprovementService
from autonomic.telemetry.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown sequence."""
    # ── 1. Load configuration ─────────────────────────────────
    config_path = os.environ.get("AUTONOMIC_CONFIG_PATH", "config/default.yaml")
    config = load_config(config_path)
    app.state.config = config

    # ── 2. Set up logging ─────────────────────────────────────
    setup_logging(config.logging, instance_id=config.instance_id)
    logger.info("autonomic_starting", instance_id=config.instance_id, config_path=config_path)

    # ── 3. Connect to data stores ─────────────────────────────
    postgres: PostgresClient | None = None
    if config.postgres.enabled:
        postgres = PostgresClient(config.postgres)
        await postgres.connect()
    app.state.postgres = postgres

    # ── 4. Text-generation backend ────────────────────────────
    llm = create_llm_provider(config.llm) if config.llm.configured else None
    if llm is None:
        logger.info("llm_not_configured", fallback="heuristic_advisor")

    # ── 5. Self-improvement controller ────────────────────────
    service = SelfImprovementService(
        config.self_improvement,
        llm=llm,
        llm_max_tokens=config.llm.max_tokens,
        llm_temperature=config.llm.temperature,
        postgres=postgres,
    )
    await service.initialize()
    app.state.self_improvement = service

    logger.info("autonomic_ready")

    yield

    # ── Shutdown ──────────────────────────────────────────────
    logger.info("autonomic_shutting_down")
    await service.shutdown()
    if postgres is not None:
        await postgres.close()
    logger.info("autonomic_shutdown_complete")


# ─── FastAPI Application ─────────────────────────────────────────

app = FastAPI(
    title="Autonomic",
    description="Self-improvement control loop: operator API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(self_improvement_router)


@app.get("/health")
async def health() -> dict[str, Any]:
    """System health check."""
    service_health = await app.state.self_improvement.health()
    postgres = app.state.postgres
    postgres_health = (
        await postgres.health_check() if postgres is not None else {"status": "disabled"}
    )

    overall = "healthy"
    if postgres_health.get("status") == "disconnected":
        overall = "degraded"
    if service_health.get("circuit_state") == "open":
        overall = "degraded"

    return {
        "status": overall,
        "self_improvement": service_health,
        "postgres": postgres_health,
    }
