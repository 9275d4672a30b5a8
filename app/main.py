"""FastAPI application entrypoint — lifespan, routers, middleware."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text

from app.config import get_settings
from app.database import engine
from app.middleware.logging import RequestLoggingMiddleware, configure_structured_logging
from app.routes import crops, tasks

logger = logging.getLogger("sproutline")


async def _run_readiness_checks(app: FastAPI) -> dict[str, dict[str, Any]]:
    """Probe the database and, when configured, Redis."""
    checks: dict[str, dict[str, Any]] = {}
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        checks["database"] = {"ok": True, "message": "ok"}
    except Exception as exc:
        checks["database"] = {"ok": False, "message": str(exc)}

    redis: Redis | None = getattr(app.state, "redis", None)
    if redis is None:
        checks["redis"] = {"ok": True, "message": "disabled"}
    else:
        try:
            await redis.ping()
            checks["redis"] = {"ok": True, "message": "ok"}
        except Exception as exc:
            checks["redis"] = {"ok": False, "message": str(exc)}
    return checks


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup / shutdown lifecycle.

    Startup:
      1. Initialize structured logging
      2. Verify database connectivity
      3. Connect to Redis (alerts fall back to the log when disabled)

    Shutdown:
      1. Close Redis connection pool
      2. Dispose SQLAlchemy engine
    """
    configure_structured_logging()
    settings = get_settings()
    logger.info(
        "Sproutline starting",
        extra={
            "log_level": settings.log_level,
            "farm_timezone": settings.farm_timezone,
        },
    )

    redis: Redis | None = None
    app.state.redis = None
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))

        if settings.redis_url:
            redis = Redis.from_url(settings.redis_url, decode_responses=True)
            await redis.ping()
            app.state.redis = redis
    except Exception as exc:
        logger.exception("startup failure", extra={"error": str(exc)})
        raise

    yield

    logger.info("Sproutline shutting down")
    if redis is not None:
        await redis.aclose()
    await engine.dispose()


app = FastAPI(
    title="Sproutline API",
    description=(
        "Microgreens crop lifecycle API — stage transitions for batches of "
        "trays, recipe-driven task scheduling and due-task dispatch."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS ────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# ── Health check ────────────────────────────────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Basic health check — verifies the API process is alive."""
    return {
        "status": "ok",
        "service": "sproutline",
        "version": "0.1.0",
    }


@app.get("/health/ready", tags=["system"])
async def readiness_check() -> JSONResponse:
    """Readiness — database and Redis reachable."""
    checks = await _run_readiness_checks(app)
    healthy = all(check["ok"] for check in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "checks": checks},
    )


# ── Router registration ────────────────────────────────────────────────────
app.include_router(crops.router, prefix="/api/v1")
app.include_router(tasks.router, prefix="/api/v1")
