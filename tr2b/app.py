"""
FastAPI application entry point for the TR2B backend.

One app serves both deployment models; only the injected storage differs.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from tr2b.config import Settings, get_settings
from tr2b.credentials import CredentialVerifier, PlaintextCredentials
from tr2b.dependencies import build_storage
from tr2b.errors import utc_timestamp
from tr2b.logging_config import configure_logging
from tr2b.middleware import register_error_handlers, register_middleware
from tr2b.records import Clock, utc_now
from tr2b.routes import router
from tr2b.sessions import SessionManager
from tr2b.spa import SpaDocument
from tr2b.storage import GuardedStorage, StorageAdapter

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _is_api_path(path: str, api_prefix: str) -> bool:
    prefix = api_prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def create_app(
    settings: Optional[Settings] = None,
    *,
    storage: Optional[StorageAdapter] = None,
    clock: Optional[Clock] = None,
    credentials: Optional[CredentialVerifier] = None,
) -> FastAPI:
    settings = settings or get_settings()
    guarded = GuardedStorage(
        storage if storage is not None else build_storage(settings),
        timeout=settings.store_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        logger.info(
            "%s started (%s mode, %s)",
            settings.app_name,
            settings.deployment_mode,
            guarded.backend_name,
        )
        yield
        await guarded.close()
        logger.info("%s shutting down", settings.app_name)

    app = FastAPI(title=f"{settings.app_name} Backend", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = guarded
    app.state.sessions = SessionManager(
        guarded,
        ttl_seconds=settings.session_ttl_seconds,
        clock=clock or utc_now,
    )
    app.state.credentials = credentials or PlaintextCredentials()

    register_error_handlers(app)
    register_middleware(app, cors_origins=settings.cors_origins)
    app.include_router(router, prefix=settings.api_prefix)

    spa = SpaDocument(
        settings.static_dir,
        title=settings.app_name,
        api_prefix=settings.api_prefix,
    )
    # Mounted after the API routes and before the fallback.
    if spa.assets_dir is not None:
        app.mount("/assets", StaticFiles(directory=spa.assets_dir), name="assets")

    async def unmatched(request: Request):
        path = request.url.path
        if _is_api_path(path, settings.api_prefix):
            return JSONResponse(
                status_code=404,
                content={"error": "Not Found", "path": path, "timestamp": utc_timestamp()},
            )
        return HTMLResponse(spa.html)

    app.add_api_route(
        "/{full_path:path}",
        unmatched,
        methods=ALL_METHODS,
        include_in_schema=False,
    )
    return app


app = create_app()
