"""
ReelStage API - FastAPI Application Entry Point.

Initializes the FastAPI application for the ReelStage video staging service:

- Lifespan management: logging setup, MongoDB connect/close
- CORS middleware for the web client
- Request logging middleware with timing headers
- API v1 router registration under /api/v1
- Root and health endpoints
- JSON handlers for unknown routes and unhandled errors

Usage:
    # Run with uvicorn directly (from the backend directory)
    uvicorn app.main:app --host 0.0.0.0 --port 8091 --reload

    # Run as Python script
    python -m app.main
"""

import logging
import time

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import uvicorn

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.api.v1 import api_router
from app.config import get_settings
from app.core.database import close_db, init_db
from app.utils.logger import setup_logging


logger = logging.getLogger(__name__)

# Status codes >= 400 are logged at WARNING
HTTP_ERROR_THRESHOLD = 400


# =============================================================================
# Application Lifespan Management
# =============================================================================


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Configure logging and open the MongoDB connection for the app's lifetime.

    Startup fails if MongoDB cannot be reached: no endpoint can serve a
    request without the video record store.
    """
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)

    logger.info(
        "%s API starting",
        settings.app_name,
        extra={
            "app_env": settings.app_env,
            "debug": settings.debug,
            "host": settings.host,
            "port": settings.port,
            "bucket": settings.s3_bucket_name,
            "max_upload_size_bytes": settings.max_upload_size_bytes,
        },
    )

    try:
        await init_db(settings)
    except Exception as e:
        logger.exception("Failed to initialize MongoDB")
        raise RuntimeError(f"MongoDB initialization failed: {e}") from e

    logger.info("%s API ready to accept requests", settings.app_name)

    yield

    logger.info("%s API shutting down", settings.app_name)
    await close_db()
    logger.info("%s API shutdown complete", settings.app_name)


# =============================================================================
# FastAPI Application Instance
# =============================================================================

_settings = get_settings()

app = FastAPI(
    title="ReelStage API",
    description=(
        "Video upload staging service. Uploaded MP4 files are classified by aspect "
        "ratio, remuxed for fast-start playback and stored in S3-compatible storage; "
        "records return short-lived signed playback URLs."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=_settings.debug,
)


# =============================================================================
# Middleware Configuration
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next) -> Response:
    """Log each request with its status and duration, and add timing headers."""
    request_id = f"{time.time_ns()}"
    start_time = time.perf_counter()

    logger.debug(
        "Request started: %s %s",
        request.method,
        request.url.path,
        extra={"request_id": request_id},
    )

    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "Request failed: %s %s",
            request.method,
            request.url.path,
            extra={"request_id": request_id},
        )
        raise

    process_time_ms = round((time.perf_counter() - start_time) * 1000, 2)
    response.headers["X-Process-Time"] = f"{process_time_ms}ms"
    response.headers["X-Request-ID"] = request_id

    log_level = logging.DEBUG if response.status_code < HTTP_ERROR_THRESHOLD else logging.WARNING
    logger.log(
        log_level,
        "Request completed: %s %s [%d]",
        request.method,
        request.url.path,
        response.status_code,
        extra={"request_id": request_id, "process_time_ms": process_time_ms},
    )

    return response


# =============================================================================
# API Router Registration
# =============================================================================

app.include_router(api_router, prefix="/api/v1")


# =============================================================================
# Core Endpoints
# =============================================================================


@app.get("/", tags=["root"], summary="API Root")
async def root() -> dict[str, Any]:
    """Return API name, version and documentation links."""
    return {
        "name": "ReelStage API",
        "version": __version__,
        "documentation": {
            "swagger": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json",
        },
        "api_prefix": "/api/v1",
        "endpoints": {
            "videos": "/api/v1/videos",
        },
    }


@app.get("/health", tags=["health"], summary="Health Check")
async def health_check() -> dict[str, Any]:
    """Liveness probe; does not check MongoDB or S3."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": __version__,
        "service": "ReelStage API",
    }


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(404)
async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    JSON 404 for unknown routes.

    Endpoint-raised 404s carry their own detail and are passed through.
    """
    if isinstance(exc, HTTPException) and isinstance(exc.detail, dict):
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": f"The requested path '{request.url.path}' was not found",
            "status_code": 404,
            "path": str(request.url.path),
        },
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unhandled error and return a generic JSON 500."""
    logger.error(
        "Internal server error on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later.",
            "status_code": 500,
        },
    )


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level=_settings.log_level.lower(),
        access_log=_settings.debug,
    )
