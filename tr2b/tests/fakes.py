"""
Test doubles shared by the test modules.
"""

from __future__ import annotations

import asyncio
import fnmatch
from datetime import datetime, timedelta, timezone

from redis import exceptions as redis_exceptions

from tr2b.storage import CREATE_IF_ABSENT_SCRIPT, DELETE_SCRIPT


class FakeAsyncRedis:
    """
    In-process stand-in for ``redis.asyncio.Redis``.

    Every command yields to the event loop first so concurrent callers
    interleave the way they would over a network. EVAL understands the
    adapter's own scripts only, and runs each one without yielding, the way
    a server runs a script atomically.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.px: dict[str, int] = {}
        self.failures = 0
        self.closed = False
        self.scans = 0

    async def _tick(self) -> None:
        await asyncio.sleep(0)
        if self.failures:
            self.failures -= 1
            raise redis_exceptions.ConnectionError("connection reset by peer")

    async def get(self, key):
        await self._tick()
        return self.data.get(key)

    async def set(self, key, value, nx=False, px=None):
        await self._tick()
        if nx and key in self.data:
            return None
        self.data[key] = value
        if px is not None:
            self.px[key] = px
        return True

    async def delete(self, *keys):
        await self._tick()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def mget(self, keys):
        await self._tick()
        return [self.data.get(key) for key in keys]

    async def eval(self, script, numkeys, *keys_and_args):
        await self._tick()
        keys, args = keys_and_args[:numkeys], keys_and_args[numkeys:]
        if script == CREATE_IF_ABSENT_SCRIPT:
            index_key, record_key = keys
            record_id, payload = args
            owner = self.data.get(index_key)
            if owner is not None:
                return owner
            self.data[index_key] = record_id
            self.data[record_key] = payload
            return record_id
        if script == DELETE_SCRIPT:
            for index_key in keys[1:]:
                if self.data.get(index_key) == args[0]:
                    del self.data[index_key]
            return 1 if self.data.pop(keys[0], None) is not None else 0
        raise redis_exceptions.ResponseError("NOSCRIPT unknown script")

    async def scan_iter(self, match=None):
        await self._tick()
        self.scans += 1
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        self.closed = True


class FrozenClock:
    """Callable clock for SessionManager; advance it by hand."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)
