"""
Storage abstraction for an in-process map and a Redis-protocol key/value
store, plus a guard that puts every call under a timeout and a single retry.

Records are JSON-compatible dicts grouped by namespace and keyed by their
``id``. Both adapters expose the same coroutine interface so handlers never
know which one is underneath.
"""

from __future__ import annotations

import asyncio
import heapq
import json
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

from redis import exceptions as redis_exceptions

from tr2b.errors import BackendUnavailable, Conflict, InternalError

logger = logging.getLogger(__name__)


class StorageAdapter(Protocol):
    """Defines the operations handlers and the session manager need."""

    async def get(self, namespace: str, record_id: str) -> Optional[dict]:
        ...

    async def find_by(self, namespace: str, field: str, value: str) -> Optional[dict]:
        ...

    async def create_if_absent(self, namespace: str, record: dict, unique_field: str) -> dict:
        ...

    async def put(self, namespace: str, record: dict, ttl: float | None = None) -> None:
        ...

    async def delete(self, namespace: str, record_id: str) -> None:
        ...

    async def scan(self, namespace: str) -> list[dict]:
        ...

    async def close(self) -> None:
        ...


def _copy(record: dict) -> dict:
    # Use a JSON round trip to mimic what a remote store hands back.
    return json.loads(json.dumps(record, default=str))


def _conflict(namespace: str, field: str, value: str) -> Conflict:
    return Conflict(
        f"{namespace} record with {field}={value!r} already exists",
        namespace=namespace,
        field=field,
    )


class InMemoryAdapter:
    """
    Map-backed store for a single long-lived process.

    No method ever suspends, so on one event loop a call is never
    interleaved with another and create_if_absent is atomic as written.
    Not shareable across processes.

    Expired records are dropped when read, and every put also sweeps the
    records whose deadline has passed, so memory stays bounded by the live
    set without a background task.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.records: dict[str, dict[str, dict]] = {}
        self.expiry: dict[tuple[str, str], float] = {}
        self.deadlines: list[tuple[float, str, str]] = []
        self.unique: dict[tuple[str, str, str], str] = {}
        self._clock = clock

    def _live(self, namespace: str, record_id: str) -> Optional[dict]:
        record = self.records.get(namespace, {}).get(record_id)
        if record is None:
            return None
        deadline = self.expiry.get((namespace, record_id))
        if deadline is not None and self._clock() >= deadline:
            self._evict(namespace, record_id)
            return None
        return record

    def _evict(self, namespace: str, record_id: str) -> None:
        self.records.get(namespace, {}).pop(record_id, None)
        self.expiry.pop((namespace, record_id), None)
        stale = [
            key
            for key, owner in self.unique.items()
            if key[0] == namespace and owner == record_id
        ]
        for key in stale:
            del self.unique[key]

    async def get(self, namespace: str, record_id: str) -> Optional[dict]:
        record = self._live(namespace, record_id)
        return _copy(record) if record is not None else None

    async def find_by(self, namespace: str, field: str, value: str) -> Optional[dict]:
        owner = self.unique.get((namespace, field, value))
        if owner is not None:
            return await self.get(namespace, owner)
        for record_id in list(self.records.get(namespace, {})):
            record = self._live(namespace, record_id)
            if record is not None and record.get(field) == value:
                return _copy(record)
        return None

    async def create_if_absent(self, namespace: str, record: dict, unique_field: str) -> dict:
        value = record[unique_field]
        key = (namespace, unique_field, value)
        owner = self.unique.get(key)
        if owner is not None and self._live(namespace, owner) is not None:
            if owner == record["id"]:
                return _copy(self.records[namespace][owner])
            raise _conflict(namespace, unique_field, value)
        self.unique[key] = record["id"]
        self.records.setdefault(namespace, {})[record["id"]] = _copy(record)
        return _copy(record)

    async def put(self, namespace: str, record: dict, ttl: float | None = None) -> None:
        self._sweep()
        self.records.setdefault(namespace, {})[record["id"]] = _copy(record)
        if ttl:
            self.expiry[(namespace, record["id"])] = self._clock() + ttl
            heapq.heappush(
                self.deadlines, (self.expiry[(namespace, record["id"])], namespace, record["id"])
            )
        else:
            self.expiry.pop((namespace, record["id"]), None)

    def _sweep(self) -> None:
        now = self._clock()
        while self.deadlines and self.deadlines[0][0] <= now:
            deadline, namespace, record_id = heapq.heappop(self.deadlines)
            # Skip entries superseded by a later put or already deleted.
            if self.expiry.get((namespace, record_id)) == deadline:
                self._evict(namespace, record_id)

    async def delete(self, namespace: str, record_id: str) -> None:
        self._evict(namespace, record_id)

    async def scan(self, namespace: str) -> list[dict]:
        items = []
        for record_id in list(self.records.get(namespace, {})):
            record = self._live(namespace, record_id)
            if record is not None:
                items.append(_copy(record))
        return items

    async def close(self) -> None:
        return None

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.records.clear()
        self.expiry.clear()
        self.deadlines.clear()
        self.unique.clear()


# KEYS[1] = unique index key, KEYS[2] = record key
# ARGV[1] = record id, ARGV[2] = record JSON
# Returns the id that owns the index after the call.
CREATE_IF_ABSENT_SCRIPT = """
local owner = redis.call('GET', KEYS[1])
if owner then
  return owner
end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('SET', KEYS[2], ARGV[2])
return ARGV[1]
"""

# KEYS[1] = record key, KEYS[2..n] = candidate unique index keys
# ARGV[1] = record id
# Index keys are only removed while they still point at this record.
DELETE_SCRIPT = """
for i = 2, #KEYS do
  if redis.call('GET', KEYS[i]) == ARGV[1] then
    redis.call('DEL', KEYS[i])
  end
end
return redis.call('DEL', KEYS[1])
"""


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class KeyValueAdapter:
    """
    Store backed by a Redis-protocol server via ``redis.asyncio``.

    Layout:
        <prefix><namespace>:<id>                  record JSON
        <prefix>idx:<namespace>:<field>:<value>   id owning a unique value

    create_if_absent runs as one Lua script, so the index check and both
    writes happen atomically on the server. With ``use_scripts=False`` (for
    stores without EVAL) uniqueness is still decided by SET NX on the index
    key, but the record is written in a second round trip: if the caller dies
    between the two, the index entry is left without a record. find_by then
    reports the value as absent while create_if_absent keeps rejecting it
    until the index key is removed.

    Fields named in ``unique_fields`` (and any field passed to
    create_if_absent) are looked up through their index only. Other fields
    fall back to a namespace scan.
    """

    def __init__(
        self,
        client,
        *,
        key_prefix: str = "tr2b:",
        use_scripts: bool = True,
        unique_fields: Optional[dict[str, set[str]]] = None,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self.use_scripts = use_scripts
        self.unique_fields: dict[str, set[str]] = {
            namespace: set(fields) for namespace, fields in (unique_fields or {}).items()
        }

    def _record_key(self, namespace: str, record_id: str) -> str:
        return f"{self.key_prefix}{namespace}:{record_id}"

    def _index_key(self, namespace: str, field: str, value: str) -> str:
        return f"{self.key_prefix}idx:{namespace}:{field}:{value}"

    async def _call(self, op: Callable[..., Awaitable], *args, **kwargs):
        try:
            return await op(*args, **kwargs)
        except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as exc:
            raise BackendUnavailable(f"Key/value store unavailable: {exc}") from exc

    async def get(self, namespace: str, record_id: str) -> Optional[dict]:
        raw = await self._call(self.client.get, self._record_key(namespace, record_id))
        if raw is None:
            return None
        return json.loads(raw)

    async def find_by(self, namespace: str, field: str, value: str) -> Optional[dict]:
        owner = await self._call(self.client.get, self._index_key(namespace, field, value))
        if owner is not None:
            return await self.get(namespace, _text(owner))
        if field in self.unique_fields.get(namespace, ()):
            return None
        for record in await self.scan(namespace):
            if record.get(field) == value:
                return record
        return None

    async def create_if_absent(self, namespace: str, record: dict, unique_field: str) -> dict:
        value = record[unique_field]
        record_id = record["id"]
        self.unique_fields.setdefault(namespace, set()).add(unique_field)
        index_key = self._index_key(namespace, unique_field, value)
        record_key = self._record_key(namespace, record_id)
        payload = json.dumps(record, default=str)

        if self.use_scripts:
            owner = await self._call(
                self.client.eval,
                CREATE_IF_ABSENT_SCRIPT,
                2,
                index_key,
                record_key,
                record_id,
                payload,
            )
            if _text(owner) != record_id:
                raise _conflict(namespace, unique_field, value)
            return _copy(record)

        created = await self._call(self.client.set, index_key, record_id, nx=True)
        if not created:
            owner = await self._call(self.client.get, index_key)
            # Same id means an earlier attempt of this call already won.
            if _text(owner) != record_id:
                raise _conflict(namespace, unique_field, value)
        await self._call(self.client.set, record_key, payload)
        return _copy(record)

    async def put(self, namespace: str, record: dict, ttl: float | None = None) -> None:
        payload = json.dumps(record, default=str)
        key = self._record_key(namespace, record["id"])
        if ttl:
            await self._call(self.client.set, key, payload, px=int(ttl * 1000))
        else:
            await self._call(self.client.set, key, payload)

    async def delete(self, namespace: str, record_id: str) -> None:
        record_key = self._record_key(namespace, record_id)
        record = await self.get(namespace, record_id)
        index_keys = []
        if record is not None:
            index_keys = [
                self._index_key(namespace, field, record[field])
                for field in sorted(self.unique_fields.get(namespace, ()))
                if isinstance(record.get(field), str)
            ]
        if not index_keys:
            await self._call(self.client.delete, record_key)
            return

        if self.use_scripts:
            await self._call(
                self.client.eval,
                DELETE_SCRIPT,
                1 + len(index_keys),
                record_key,
                *index_keys,
                record_id,
            )
            return

        owners = await self._call(self.client.mget, index_keys)
        owned = [key for key, owner in zip(index_keys, owners) if _text(owner) == record_id]
        await self._call(self.client.delete, record_key, *owned)

    async def _scan_keys(self, pattern: str) -> list:
        return [key async for key in self.client.scan_iter(match=pattern)]

    async def scan(self, namespace: str) -> list[dict]:
        keys = await self._call(self._scan_keys, f"{self.key_prefix}{namespace}:*")
        if not keys:
            return []
        values = await self._call(self.client.mget, keys)
        # Keys can expire between SCAN and MGET.
        return [json.loads(raw) for raw in values if raw is not None]

    async def close(self) -> None:
        await self.client.aclose()


def _discard_result(task: asyncio.Future) -> None:
    # Mark abandoned results as retrieved so asyncio does not warn about them.
    if not task.cancelled():
        task.exception()


class GuardedStorage:
    """
    Wraps an adapter so every call gets a timeout and at most one retry.

    A timeout counts as BackendUnavailable. The second failure escalates to
    InternalError. Each attempt runs shielded: when the request is cancelled
    or the attempt times out, the store operation itself still completes.
    Conflict and other errors pass through untouched.
    """

    def __init__(self, adapter: StorageAdapter, *, timeout: float = 2.0, retries: int = 1):
        self.adapter = adapter
        self.timeout = timeout
        self.retries = retries

    @property
    def backend_name(self) -> str:
        return type(self.adapter).__name__

    async def _run(self, name: str, factory: Callable[[], Awaitable]):
        attempts = self.retries + 1
        reason = ""
        for attempt in range(1, attempts + 1):
            task = asyncio.ensure_future(factory())
            task.add_done_callback(_discard_result)
            try:
                return await asyncio.wait_for(asyncio.shield(task), self.timeout)
            except asyncio.TimeoutError:
                reason = f"timed out after {self.timeout}s"
            except BackendUnavailable as exc:
                reason = exc.message
            if attempt < attempts:
                logger.warning("Storage %s failed (%s), retrying", name, reason)
        logger.error("Storage %s failed after %d attempts: %s", name, attempts, reason)
        raise InternalError(f"Storage operation '{name}' failed: {reason}")

    async def get(self, namespace: str, record_id: str) -> Optional[dict]:
        return await self._run("get", lambda: self.adapter.get(namespace, record_id))

    async def find_by(self, namespace: str, field: str, value: str) -> Optional[dict]:
        return await self._run(
            "find_by", lambda: self.adapter.find_by(namespace, field, value)
        )

    async def create_if_absent(self, namespace: str, record: dict, unique_field: str) -> dict:
        return await self._run(
            "create_if_absent",
            lambda: self.adapter.create_if_absent(namespace, record, unique_field),
        )

    async def put(self, namespace: str, record: dict, ttl: float | None = None) -> None:
        await self._run("put", lambda: self.adapter.put(namespace, record, ttl))

    async def delete(self, namespace: str, record_id: str) -> None:
        await self._run("delete", lambda: self.adapter.delete(namespace, record_id))

    async def scan(self, namespace: str) -> list[dict]:
        return await self._run("scan", lambda: self.adapter.scan(namespace))

    async def close(self) -> None:
        await self.adapter.close()
