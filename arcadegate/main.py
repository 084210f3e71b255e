"""ArcadeGate FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app()         — testable application factory
  - lifespan             — @asynccontextmanager startup/shutdown sequence
  - startup_services()   — wires store, lifecycle engine, sessions, rate limiter
  - shutdown_services()  — reverse of startup_services()
  - app = create_app()   — module-level instance for uvicorn

Startup sequence:
  1. KeyStore.initialize()          → schema created / migrated, chmod 0600
  2. ensure_owner_key()             → OWNER seeded on first boot (code logged once)
  3. SessionIssuer                  → app.state.sessions
  4. RateLimiter + AttemptStore     → app.state.rate_limiter
  5. Rate-limit pruner task         → evicts idle addresses every interval
  6. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → cancel pruner → close attempt store → close key store
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from arcadegate.auth.errors import AccessError
from arcadegate.auth.keys import KeyLifecycle
from arcadegate.auth.limiter import (
    AttemptStore,
    MemoryAttemptStore,
    RateLimiter,
    SQLiteAttemptStore,
    limiter,
)
from arcadegate.auth.router import router as auth_router
from arcadegate.auth.sessions import SessionIssuer
from arcadegate.auth.store import KeyStore, resolve_database_path
from arcadegate.config import Config, load_config
from arcadegate.health import router as health_router
from arcadegate.middleware import RequestIdMiddleware
from arcadegate.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)

root_router = APIRouter(tags=["root"])


@root_router.get("/api")
async def root() -> dict[str, str]:
    """Service identity / discovery."""
    return {
        "service": "ArcadeGate",
        "validate": "/api/validate-key",
        "health": "/health",
    }


# ─── Service wiring ──────────────────────────────────────────────────────────


async def startup_services(app: FastAPI) -> None:
    """Open the key store and attach every core service to ``app.state``.

    Raises:
        RuntimeError: key store schema is newer than supported.
    """
    config: Config = app.state.config

    store = KeyStore(resolve_database_path(config.store.database_url))
    await store.initialize()
    logger.info("Key store ready", path=str(store.db_path))

    lifecycle = KeyLifecycle(store)
    owner, created = await lifecycle.ensure_owner_key()
    if not created:
        logger.info("Owner key present", key_id=owner.id)

    sessions = SessionIssuer(
        config.session.secret or "",
        ttl=timedelta(days=config.session.ttl_days),
        algorithm=config.session.algorithm,
    )

    attempt_store: AttemptStore
    if config.rate_limit.backend == "sqlite":
        sqlite_attempts = SQLiteAttemptStore(store.connection, write_lock=store.write_lock)
        await sqlite_attempts.initialize()
        attempt_store = sqlite_attempts
    else:
        attempt_store = MemoryAttemptStore()

    app.state.lifecycle = lifecycle
    app.state.sessions = sessions
    app.state.rate_limiter = RateLimiter(
        attempt_store,
        max_attempts=config.rate_limit.max_attempts,
        window_seconds=config.rate_limit.window_seconds,
    )
    logger.info(
        "Rate limiter ready",
        backend=config.rate_limit.backend,
        max_attempts=config.rate_limit.max_attempts,
        window_seconds=config.rate_limit.window_seconds,
    )


async def shutdown_services(app: FastAPI) -> None:
    rate_limiter: Optional[RateLimiter] = getattr(app.state, "rate_limiter", None)
    if rate_limiter is not None:
        await rate_limiter.store.close()

    lifecycle: Optional[KeyLifecycle] = getattr(app.state, "lifecycle", None)
    if lifecycle is not None:
        await lifecycle.store.close()


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("ArcadeGate starting up...")

    await startup_services(app)

    pruner_task: asyncio.Task[None] = asyncio.create_task(
        app.state.rate_limiter.run_pruner(app.state.config.rate_limit.prune_interval_seconds)
    )
    logger.debug(
        "Rate limit pruner started",
        interval_s=app.state.config.rate_limit.prune_interval_seconds,
    )

    app.state.ready = True
    logger.info("ArcadeGate ready")

    yield

    logger.info("ArcadeGate shutting down...")
    app.state.ready = False

    if not pruner_task.done():
        pruner_task.cancel()
        try:
            await pruner_task
        except asyncio.CancelledError:
            pass

    await shutdown_services(app)
    logger.info("ArcadeGate shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the ArcadeGate FastAPI application.

    Call this function directly in tests to get an isolated app instance:
        app = create_app(config)

    Args:
        config: Pre-built configuration. Loaded via load_config() when None.

    Returns:
        Configured FastAPI application with lifespan, routers, and middleware.
    """
    config = config or load_config()

    application = FastAPI(
        title="ArcadeGate",
        description="Access-code gate for a web game catalog",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    application.state.ready = False
    application.state.config = config

    # Coarse cap on key management endpoints. slowapi reads it from app state.
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_allow_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    application.add_middleware(SlowAPIMiddleware)
    # Registered last so it runs first and every log line carries the id.
    application.add_middleware(RequestIdMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(auth_router, prefix="/api")

    # ── Exception handlers ────────────────────────────────────────────────────

    @application.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
        logger.info(
            "Request rejected",
            code=exc.code,
            status_code=exc.status_code,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @application.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.info("Malformed request", path=str(request.url.path), errors=len(exc.errors()))
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Static site (index, games, admin pages). Mounted after every API route.
    static_dir = Path(config.catalog.static_dir)
    if static_dir.is_dir():
        application.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")
        logger.info("Static directory mounted", path=str(static_dir))
    else:
        logger.debug("Static directory not found — not mounted", path=str(static_dir))

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────
#   uvicorn arcadegate.main:app --host 127.0.0.1 --port 3030

app = create_app()
