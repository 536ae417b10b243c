"""
Dependency wiring for the FastAPI app.

Backends are built once in ``create_app`` and kept on ``app.state``; the
accessors below hand them to route handlers per request.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis
from fastapi import Request

from tr2b.config import Settings
from tr2b.credentials import CredentialVerifier
from tr2b.records import USERS
from tr2b.sessions import SessionManager
from tr2b.storage import GuardedStorage, InMemoryAdapter, KeyValueAdapter, StorageAdapter

logger = logging.getLogger(__name__)


def build_storage(settings: Settings) -> StorageAdapter:
    """
    Select the backing store for this deployment.
    """
    if settings.deployment_mode == "edge" and not settings.redis_url:
        raise RuntimeError(
            "Edge deployment needs a shared key/value store; set TR2B_REDIS_URL"
        )
    if settings.use_in_memory_backends or not settings.redis_url:
        logger.info("Using in-memory storage")
        return InMemoryAdapter()

    client = redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.store_timeout_seconds,
        socket_connect_timeout=settings.store_timeout_seconds,
    )
    logger.info("Using key/value storage at prefix %s", settings.redis_key_prefix)
    return KeyValueAdapter(
        client,
        key_prefix=settings.redis_key_prefix,
        use_scripts=settings.kv_use_scripts,
        unique_fields={USERS: {"username"}},
    )


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> GuardedStorage:
    return request.app.state.storage


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_credentials(request: Request) -> CredentialVerifier:
    return request.app.state.credentials
