"""Bucket key derivation from inbound requests.

The default key is base64("<ip>:<user-agent>") truncated to 32 characters.
It is a best-effort bucketing heuristic, not a client identity: both parts
are trivially spoofable and the truncation lets distinct clients collide.
"""

from __future__ import annotations

import base64
from typing import Any, Optional

from bucketguard.constants import KEY_LENGTH, UNKNOWN_CLIENT


def _header(request: Any, name: str) -> Optional[str]:
    headers = getattr(request, "headers", None)
    if headers is None:
        return None
    value = headers.get(name)
    return value or None


def client_ip(request: Any) -> str:
    """Resolve the caller's IP from proxy headers or the socket peer."""
    forwarded = _header(request, "x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = _header(request, "x-real-ip")
    if real_ip:
        return real_ip

    client = getattr(request, "client", None)
    host = getattr(client, "host", None) if client else None
    return host or UNKNOWN_CLIENT


def user_agent(request: Any) -> str:
    return _header(request, "user-agent") or UNKNOWN_CLIENT


def default_key_generator(request: Any) -> str:
    """Derive the bucket key for a request. Never raises on missing fields."""
    raw = f"{client_ip(request)}:{user_agent(request)}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")[:KEY_LENGTH]
