"""FastAPI application — skane endpoints, middleware and error mapping.

This module wires together all infrastructure:
- CORS, API key auth, correlation id and error middleware
- Database initialisation and the session lifecycle manager
- Per-client feedback throttling
- Engine error → HTTP status mapping
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from skane_engine import __version__
from skane_engine.api.middleware import setup_middleware
from skane_engine.api.routes.skane import router as skane_router
from skane_engine.api.throttle import RequestThrottle, TTLCounterStore
from skane_engine.config import get_settings
from skane_engine.errors import (
    CooldownActiveError,
    DependencyError,
    InvalidTransitionError,
    SkaneError,
    UnknownSessionError,
    ValidationFailure,
)
from skane_engine.sessions.lifecycle import create_session_manager
from skane_engine.storage.database import init_db

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hooks."""
    settings = get_settings()

    await init_db()
    logger.info("server.db_ready")

    app.state.manager = create_session_manager(settings)
    app.state.feedback_throttle = RequestThrottle(
        TTLCounterStore(),
        limit=settings.feedback_rate_limit_per_minute,
        window=60.0,
        scope="feedback",
        trust_forwarded=settings.trust_forwarded_for,
    )
    logger.info("server.started", port=settings.api_port)

    yield  # ← application runs

    logger.info("server.stopped")


app = FastAPI(
    title="Skane Session Engine",
    description="Activation classification, micro-action selection and banded wellness scoring.",
    version=__version__,
    lifespan=lifespan,
)

setup_middleware(app)
app.include_router(skane_router)


# ── Error mapping ─────────────────────────────────────────────

_STATUS_BY_ERROR: tuple[tuple[type[SkaneError], int], ...] = (
    (ValidationFailure, 400),
    (UnknownSessionError, 404),
    (CooldownActiveError, 409),
    (InvalidTransitionError, 409),
    (DependencyError, 500),
)


@app.exception_handler(SkaneError)
async def skane_error_handler(request: Request, exc: SkaneError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    body = exc.to_dict()
    if status >= 500:
        logger.error("http.engine_error", path=request.url.path, error=exc.code)
        body = {"error": exc.code, "message": "Service temporarily unavailable."}
    body["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in e["loc"] if p != "body"), "message": e["msg"]}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_failed",
            "message": "Invalid request.",
            "errors": errors,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ── Health ────────────────────────────────────────────────────


@app.get("/health", tags=["system"])
async def health(request: Request):
    manager = getattr(request.app.state, "manager", None)
    return {
        "status": "ok",
        "version": __version__,
        "catalog_size": len(manager.catalog) if manager else 0,
    }
