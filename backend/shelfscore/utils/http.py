"""Shared outbound HTTP client.

One ``httpx.AsyncClient`` serves every stage of every pipeline run; each
call still passes its own per-request timeout.
"""

from __future__ import annotations

import httpx

from shelfscore.config import Settings

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=5.0)
DEFAULT_LIMITS = httpx.Limits(max_connections=100, max_keepalive_connections=20)


def build_http_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the process-wide client (``transport`` is for tests)."""
    return httpx.AsyncClient(
        timeout=DEFAULT_TIMEOUT,
        limits=DEFAULT_LIMITS,
        headers={"User-Agent": settings.user_agent},
        transport=transport,
    )


def body_excerpt(response: httpx.Response, limit: int = 500) -> str:
    """Best-effort text of an error response, truncated for logs and error bodies."""
    try:
        return response.text[:limit]
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""
