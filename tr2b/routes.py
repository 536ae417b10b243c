"""
HTTP routes for the TR2B API.

Handlers validate input through the schemas, call the storage layer or the
session manager, and shape the response. Domain failures are raised as
``tr2b.errors`` exceptions and mapped to status codes by the app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from tr2b.config import Settings
from tr2b.context import RequestContext, get_request_context
from tr2b.credentials import CredentialVerifier
from tr2b.dependencies import (
    get_app_settings,
    get_credentials,
    get_session_manager,
    get_storage,
)
from tr2b.errors import Conflict, NotFound, Unauthorized, ValidationError, utc_timestamp
from tr2b.records import DATA, USERS, DataItemRecord, UserRecord, new_id
from tr2b.schemas import (
    CredentialsPayload,
    DataListResponse,
    EnvResponse,
    HealthResponse,
    LoginResponse,
    MessageResponse,
    SessionCreatePayload,
    SessionResponse,
    UserListResponse,
    UserResponse,
)
from tr2b.sessions import SessionManager
from tr2b.storage import GuardedStorage

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.headers.get("x-session-id") or None


def _sorted_by_creation(records: list[dict]) -> list[dict]:
    return sorted(records, key=lambda r: (r.get("createdAt", ""), r.get("id", "")))


@router.get("/health", response_model=HealthResponse)
def health(settings: Settings = Depends(get_app_settings)):
    return HealthResponse(
        status="ok",
        timestamp=utc_timestamp(),
        environment=settings.environment,
        platform=settings.platform,
        message=f"{settings.app_name} server is running",
    )


@router.get("/env", response_model=EnvResponse)
def env(
    ctx: RequestContext = Depends(get_request_context),
    settings: Settings = Depends(get_app_settings),
    storage: GuardedStorage = Depends(get_storage),
):
    return EnvResponse(
        platform=settings.platform,
        timestamp=utc_timestamp(),
        environment=settings.environment,
        deployment=settings.deployment_mode,
        edge=settings.deployment_mode == "edge" or ctx.is_edge,
        storage=storage.backend_name,
        region=ctx.region,
        country=ctx.country,
    )


@router.get("/data", response_model=DataListResponse)
async def list_data(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    storage: GuardedStorage = Depends(get_storage),
):
    items = _sorted_by_creation(await storage.scan(DATA))
    offset = (page - 1) * limit
    return DataListResponse(
        items=items[offset : offset + limit],
        total=len(items),
        page=page,
        limit=limit,
    )


@router.post("/data", status_code=201)
async def create_data(
    ctx: RequestContext = Depends(get_request_context),
    storage: GuardedStorage = Depends(get_storage),
) -> dict:
    if not isinstance(ctx.body, dict):
        raise ValidationError("Request body must be a JSON object")
    item = DataItemRecord(id=new_id(), fields=ctx.body)
    await storage.put(DATA, item.as_dict())
    logger.info("Created data item %s (region=%s)", item.id, ctx.region or "local")
    return item.as_dict()


@router.get("/data/{item_id}")
async def get_data(item_id: str, storage: GuardedStorage = Depends(get_storage)) -> dict:
    item = await storage.get(DATA, item_id)
    if item is None:
        raise NotFound("Item not found")
    return item


@router.get("/users", response_model=UserListResponse)
async def list_users(storage: GuardedStorage = Depends(get_storage)):
    users = [
        UserRecord.from_dict(stored).public_dict()
        for stored in _sorted_by_creation(await storage.scan(USERS))
    ]
    return UserListResponse(users=users, total=len(users))


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, storage: GuardedStorage = Depends(get_storage)):
    stored = await storage.get(USERS, user_id)
    if stored is None:
        raise NotFound("User not found")
    return UserRecord.from_dict(stored).public_dict()


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    payload: CredentialsPayload,
    storage: GuardedStorage = Depends(get_storage),
    credentials: CredentialVerifier = Depends(get_credentials),
):
    user = UserRecord(
        id=new_id(),
        username=payload.username,
        secret=credentials.prepare(payload.secret),
    )
    try:
        await storage.create_if_absent(USERS, user.as_dict(), "username")
    except Conflict as exc:
        raise Conflict("Username already exists", namespace=USERS, field="username") from exc
    logger.info("Created user %s", user.id)
    return user.public_dict()


@router.post("/auth/login", response_model=LoginResponse)
async def login(
    payload: CredentialsPayload,
    storage: GuardedStorage = Depends(get_storage),
    sessions: SessionManager = Depends(get_session_manager),
    credentials: CredentialVerifier = Depends(get_credentials),
):
    stored = await storage.find_by(USERS, "username", payload.username)
    # Unknown user and wrong secret must be indistinguishable.
    if stored is None or not credentials.verify(stored["secret"], payload.secret):
        raise Unauthorized("Invalid credentials")
    user = UserRecord.from_dict(stored)
    session = await sessions.create(user.id)
    return LoginResponse(
        user=user.public_dict(),
        token=session.id,
        message="Login successful",
    )


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
):
    token = _session_token(request)
    if token:
        await sessions.revoke(token)
    return MessageResponse(message="Logout successful")


@router.post("/session", response_model=SessionResponse, status_code=201)
async def create_session(
    payload: Optional[SessionCreatePayload] = Body(None),
    sessions: SessionManager = Depends(get_session_manager),
):
    if payload is not None and payload.subjectId is not None:
        subject_id = str(payload.subjectId)
    else:
        subject_id = new_id()
    session = await sessions.create(subject_id)
    return session.as_dict()


async def _resolve_or_404(sessions: SessionManager, session_id: Optional[str]) -> dict:
    session = await sessions.resolve(session_id) if session_id else None
    if session is None:
        raise NotFound("Session not found")
    return session.as_dict()


@router.get("/session", response_model=SessionResponse)
async def current_session(
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
):
    return await _resolve_or_404(sessions, _session_token(request))


@router.get("/session/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager),
):
    return await _resolve_or_404(sessions, session_id)
