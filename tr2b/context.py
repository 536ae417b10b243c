"""
Per-request context handed to handlers.

Handlers still declare their path parameters so FastAPI validates and
documents them. The context mirrors them next to the decoded JSON body and
the platform metadata forwarded by an edge proxy.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from fastapi import Request

from tr2b.errors import ValidationError

BODY_METHODS = ("POST", "PUT", "PATCH")


@dataclass(frozen=True)
class RequestContext:
    """Read-only view of one request. Discarded once the response is sent."""

    path_params: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    region: Optional[str] = None
    country: Optional[str] = None

    @property
    def is_edge(self) -> bool:
        return self.region is not None


def _region_from_headers(request: Request) -> Optional[str]:
    # CF-Ray looks like "8a1b2c3d4e5f6a7b-SJC"; the suffix is the point of presence.
    ray = request.headers.get("cf-ray")
    if ray and "-" in ray:
        return ray.rsplit("-", 1)[1]
    return request.headers.get("x-edge-region")


def _country_from_headers(request: Request) -> Optional[str]:
    return request.headers.get("cf-ipcountry") or request.headers.get("x-country")


async def _parsed_body(request: Request) -> Any:
    if request.method not in BODY_METHODS:
        return None
    if "json" not in request.headers.get("content-type", ""):
        return None
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Malformed JSON body") from exc


async def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        path_params=MappingProxyType(dict(request.path_params)),
        body=await _parsed_body(request),
        region=_region_from_headers(request),
        country=_country_from_headers(request),
    )
