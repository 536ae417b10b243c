"""
Records owned by the storage layer.

Adapters persist the ``as_dict()`` form (camelCase keys, ISO-8601 UTC
timestamps); handlers rebuild records with ``from_dict()``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

Clock = Callable[[], datetime]

USERS = "users"
DATA = "data"
SESSIONS = "sessions"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class UserRecord:
    id: str
    username: str
    secret: str
    created_at: datetime = field(default_factory=utc_now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "secret": self.secret,
            "createdAt": self.created_at.isoformat(),
        }

    def public_dict(self) -> dict:
        """The record as sent to clients: never includes the secret."""
        data = self.as_dict()
        data.pop("secret")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "UserRecord":
        return cls(
            id=data["id"],
            username=data["username"],
            secret=data["secret"],
            created_at=parse_timestamp(data["createdAt"]),
        )


@dataclass
class DataItemRecord:
    id: str
    fields: dict[str, Any]
    created_at: datetime = field(default_factory=utc_now)

    def as_dict(self) -> dict:
        # Generated keys win over caller-supplied ones.
        return {
            **self.fields,
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class SessionRecord:
    id: str
    subject_id: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def issue(cls, subject_id: str, ttl_seconds: int, now: datetime) -> "SessionRecord":
        return cls(
            id=new_id(),
            subject_id=subject_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "subjectId": self.subject_id,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionRecord":
        return cls(
            id=data["id"],
            subject_id=data["subjectId"],
            created_at=parse_timestamp(data["createdAt"]),
            expires_at=parse_timestamp(data["expiresAt"]),
        )
