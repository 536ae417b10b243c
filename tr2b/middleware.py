"""
Request pipeline for the app: request logging, CORS, error boundary, and
the exception handlers that turn domain errors into JSON responses.

The pipeline runs for every request, matched or not. Outermost first:

    request logging -> CORS -> error boundary -> routing
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tr2b.errors import AppError, ValidationError, utc_timestamp

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI, *, cors_origins: list[str]) -> None:
    """Install the pipeline. Starlette runs the last added middleware first."""
    app.middleware("http")(error_boundary)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)


async def log_requests(request: Request, call_next):
    received_at = utc_timestamp()
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s %d %.1fms (received %s)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
        received_at,
    )
    return response


async def error_boundary(request: Request, call_next):
    """Catch-all: nothing escapes to the ASGI server, no internals leak."""
    try:
        return await call_next(request)
    except Exception:
        timestamp = utc_timestamp()
        logger.exception(
            "Unhandled exception on %s %s at %s",
            request.method,
            request.url.path,
            timestamp,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred",
                "timestamp": timestamp,
            },
        )


def register_error_handlers(app: FastAPI) -> None:
    """Register domain and validation error handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        log = logger.error if exc.http_status >= 500 else logger.info
        log(
            "%s on %s %s: %s",
            exc.code,
            request.method,
            request.url.path,
            exc.message,
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info(
            "Validation error on %s %s: %s",
            request.method,
            request.url.path,
            exc.errors(),
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_build_validation_error_response(exc),
        )


def _build_validation_error_response(exc: RequestValidationError) -> dict:
    response = ValidationError("Invalid request data").to_response()
    response["details"] = [
        {
            "field": ".".join(str(loc) for loc in e["loc"]),
            "message": e["msg"],
            "type": e["type"],
        }
        for e in exc.errors()
    ]
    return response
