"""Candidate URL validation: shape check, then a HEAD liveness probe."""

from __future__ import annotations

import urllib.parse

import httpx
import structlog

from shelfscore.models.outcomes import StageFailure, UrlOk

log = structlog.get_logger("pipeline.url_check")

ALLOWED_SCHEMES = ("http", "https")
GONE_STATUSES = (404, 410)


def is_well_formed(url: str | None) -> bool:
    """True for an absolute http(s) URL with a host."""
    if not url or any(ch.isspace() for ch in url):
        return False
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in ALLOWED_SCHEMES and bool(parsed.hostname)


async def validate(
    url: str,
    *,
    http_client: httpx.AsyncClient,
    timeout: float,
) -> UrlOk | StageFailure:
    if not is_well_formed(url):
        log.warning("url_invalid", url=url[:200])
        return StageFailure(
            kind="input_invalid",
            message="Resolved product URL is invalid.",
            reason="invalid_url",
        )

    try:
        resp = await http_client.head(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as exc:
        log.warning("url_probe_failed", url=url, error=type(exc).__name__)
        return StageFailure(
            kind="upstream_unreachable",
            message="Could not verify product URL before scrape.",
            reason="probe_failed",
        )

    status = resp.status_code
    if status in GONE_STATUSES or not resp.is_success:
        log.warning("url_unreachable", url=url, status=status)
        return StageFailure(
            kind="upstream_unreachable",
            message=f"Resolved product URL is not reachable (status: {status}).",
            reason="gone" if status in GONE_STATUSES else "unreachable",
            upstream_status=status,
        )

    log.info("url_probe_ok", url=url, status=status)
    return UrlOk(url=url, status_code=status)
