"""Page content extraction through the scraping service.

The scrape runs under a hard deadline. On expiry the in-flight request is
cancelled (``asyncio.wait_for``), which closes its connection before the
timeout outcome is returned.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from shelfscore.models.outcomes import ExtractedContent, StageFailure
from shelfscore.utils.http import body_excerpt

log = structlog.get_logger("pipeline.extractor")

DEFAULT_FORMATS = ("html",)
# Looked up in order; older API versions used "content".
CONTENT_FIELDS = ("html", "markdown", "content", "rawHtml")


def _content_from(data: dict[str, Any]) -> tuple[str, str] | None:
    for key in CONTENT_FIELDS:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return key, value
    return None


async def _post_scrape(
    http_client: httpx.AsyncClient,
    endpoint: str,
    api_key: str,
    body: dict[str, Any],
    timeout: float,
) -> httpx.Response:
    return await http_client.post(
        endpoint,
        headers={"Authorization": f"Bearer {api_key}"},
        json=body,
        timeout=timeout,
    )


async def extract(
    url: str,
    *,
    http_client: httpx.AsyncClient,
    base_url: str,
    api_key: str,
    timeout: float,
    formats: tuple[str, ...] = DEFAULT_FORMATS,
) -> ExtractedContent | StageFailure:
    endpoint = f"{base_url.rstrip('/')}/v1/scrape"
    body = {"url": url, "formats": list(formats)}
    log.info("extract_start", url=url, formats=list(formats), timeout=timeout)

    try:
        resp = await asyncio.wait_for(
            _post_scrape(http_client, endpoint, api_key, body, timeout),
            timeout=timeout,
        )
    except (TimeoutError, httpx.TimeoutException):
        log.warning("extract_timeout", url=url, timeout=timeout)
        return StageFailure(
            kind="upstream_timeout",
            message="Scrape request timed out.",
            reason="timeout",
        )
    except httpx.RequestError as exc:
        log.error("extract_transport_error", url=url, error=type(exc).__name__)
        return StageFailure(
            kind="upstream_error",
            message="Scraping service could not be reached.",
            reason="transport",
        )

    if not resp.is_success:
        detail = body_excerpt(resp)
        log.error("extract_service_error", url=url, status=resp.status_code, body=detail)
        return StageFailure(
            kind="upstream_error",
            message=f"Scraping service returned HTTP {resp.status_code}.",
            reason="service_error",
            upstream_status=resp.status_code,
            upstream_body=detail,
        )

    try:
        payload = resp.json()
    except ValueError:
        log.error("extract_invalid_json", url=url)
        return StageFailure(
            kind="upstream_error",
            message="Scraping service returned a non-JSON response.",
            reason="service_error",
            upstream_status=resp.status_code,
            upstream_body=body_excerpt(resp),
        )

    if not isinstance(payload, dict):
        payload = {}

    if payload.get("success") is False:
        log.error("extract_unsuccessful", url=url, error=payload.get("error"))
        return StageFailure(
            kind="upstream_error",
            message="Scraping service reported failure.",
            reason="service_error",
            upstream_status=resp.status_code,
            upstream_body=str(payload.get("error") or "")[:500] or None,
        )

    data = payload.get("data")
    found = _content_from(data) if isinstance(data, dict) else None
    if found is None:
        log.error("extract_no_data", url=url)
        return StageFailure(
            kind="upstream_error",
            message="Scraping service returned no data.",
            reason="no_data",
            upstream_status=resp.status_code,
        )

    fmt, content = found
    metadata = data.get("metadata")  # type: ignore[union-attr]
    if not isinstance(metadata, dict):
        metadata = {}
    log.info("extract_complete", url=url, format=fmt, chars=len(content))
    return ExtractedContent(url=url, body=content, format=fmt, metadata=metadata)
