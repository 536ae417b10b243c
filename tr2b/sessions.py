"""
Session issuing and lookup on top of a StorageAdapter.
"""

from __future__ import annotations

import logging
from typing import Optional

from tr2b.errors import AppError
from tr2b.records import SESSIONS, Clock, SessionRecord, utc_now
from tr2b.storage import StorageAdapter

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 3600


class SessionManager:
    """
    Issues sessions with a fixed TTL and hides them once expired.

    Expiry is checked on every read against the stored ``expiresAt``, so a
    session is invisible after that instant even when the backing store has
    not evicted it yet. There is no background sweeper.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        *,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        clock: Clock = utc_now,
    ):
        self.storage = storage
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def create(self, subject_id: str) -> SessionRecord:
        session = SessionRecord.issue(subject_id, self.ttl_seconds, self.clock())
        await self.storage.put(SESSIONS, session.as_dict(), ttl=self.ttl_seconds)
        logger.info("Issued session %s for subject %s", session.id, subject_id)
        return session

    async def resolve(self, session_id: str) -> Optional[SessionRecord]:
        stored = await self.storage.get(SESSIONS, session_id)
        if stored is None:
            return None
        session = SessionRecord.from_dict(stored)
        if not session.is_expired(self.clock()):
            return session
        try:
            await self.storage.delete(SESSIONS, session_id)
        except AppError as exc:
            # The record is already hidden; physical cleanup can wait for TTL.
            logger.warning("Could not delete expired session %s: %s", session_id, exc)
        return None

    async def revoke(self, session_id: str) -> None:
        await self.storage.delete(SESSIONS, session_id)
        logger.info("Revoked session %s", session_id)
