"""Health check endpoint with a real store connectivity probe.

The probe has a short timeout so it never blocks the response. A store
reporting "disconnected" does not change the overall status ("ok"); the
endpoint always returns 200 so load balancers keep routing.
"""

from __future__ import annotations

import asyncio
import time

import structlog
from fastapi import APIRouter, Request

from shelfscore import __version__
from shelfscore.config import settings

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds


async def _check_store(request: Request) -> str:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None or not pipeline.store.enabled:
        return "disabled"
    try:
        alive = await asyncio.wait_for(pipeline.store.ping(), timeout=_CHECK_TIMEOUT)
    except Exception as exc:
        logger.debug("health_store_failed", error=str(exc))
        return "disconnected"
    return "connected" if alive else "disconnected"


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Confirms the API process is alive and reports store connectivity."""
    started_at = getattr(request.app.state, "started_at", None)
    uptime = round(time.monotonic() - started_at, 1) if started_at is not None else 0.0
    return {
        "status": "ok",
        "version": __version__,
        "environment": settings.environment,
        "uptime_seconds": uptime,
        "postgres": await _check_store(request),
    }
