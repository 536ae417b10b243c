"""
Pydantic schemas for the TR2B API.
"""

from __future__ import annotations

from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


class CredentialsPayload(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    # Older clients still send "password".
    secret: str = Field(
        ...,
        min_length=1,
        max_length=1024,
        validation_alias=AliasChoices("secret", "password"),
    )


class SessionCreatePayload(BaseModel):
    subjectId: Optional[UUID] = None


class UserResponse(BaseModel):
    id: str
    username: str
    createdAt: str


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int


class LoginResponse(BaseModel):
    user: UserResponse
    token: str
    message: str


class MessageResponse(BaseModel):
    message: str


class SessionResponse(BaseModel):
    id: str
    subjectId: str
    createdAt: str
    expiresAt: str


class DataListResponse(BaseModel):
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    environment: str
    platform: str
    message: str


class EnvResponse(BaseModel):
    platform: str
    timestamp: str
    environment: str
    deployment: str
    edge: bool
    storage: str
    region: Optional[str] = None
    country: Optional[str] = None
