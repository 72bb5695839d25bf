"""Middleware — CORS, API key authentication, correlation ids, error handling."""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from skane_engine.config import get_settings
from skane_engine.logger import bind_request_context

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_PLACEHOLDER_KEYS = ("change-me-to-a-random-secret", "")


# ── CORS ──────────────────────────────────────────────────────


def add_cors(app: FastAPI) -> None:
    """Configure CORS from ``settings.cors_origins`` (comma-separated or ``"*"``)."""
    origins_raw = get_settings().cors_origins.strip()

    if origins_raw == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in origins_raw.split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )


# ── API key authentication ────────────────────────────────────

_PUBLIC_PATHS: set[str] = {"/health", "/docs", "/openapi.json", "/redoc"}


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Verify ``X-API-Key`` or ``Authorization: Bearer <key>`` on protected routes.

    Disabled while ``api_secret_key`` is the default placeholder.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        settings = get_settings()
        if settings.api_secret_key in _PLACEHOLDER_KEYS:
            return await call_next(request)

        if request.url.path in _PUBLIC_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or _extract_bearer(
            request.headers.get("Authorization", "")
        )
        if api_key != settings.api_secret_key:
            return JSONResponse(
                status_code=401,
                content={"error": "unauthorized", "message": "Invalid or missing API key."},
            )
        return await call_next(request)


# ── Correlation id + request logging ──────────────────────────


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a correlation id for the request and log method, path, status, duration.

    An incoming ``X-Request-ID`` is reused; otherwise one is generated.  The
    id is echoed on the response and carried by every log line of the request.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        bind_request_context(request_id)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)
        response.headers[REQUEST_ID_HEADER] = request_id

        if request.url.path != "/health":
            logger.info(
                "http.request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=duration_ms,
            )
        return response


# ── Global error handler ─────────────────────────────────────


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch unhandled exceptions and return a clean 500 with the correlation id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception("http.unhandled_error", path=request.url.path, error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": "Internal server error.",
                    "request_id": getattr(request.state, "request_id", None),
                },
            )


# ── Setup helper ──────────────────────────────────────────────


def setup_middleware(app: FastAPI) -> None:
    """Wire all middleware into the FastAPI application.

    Outermost first:
    1. Request context (correlation id, access log)
    2. Error handler
    3. API key auth
    4. CORS
    """
    # Added innermost → outermost
    add_cors(app)
    app.add_middleware(APIKeyMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestContextMiddleware)


def _extract_bearer(auth_header: str) -> str:
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""
