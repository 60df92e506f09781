"""Product API endpoints — thin adapter over the scoring pipeline.

The pipeline returns a ``PipelineOutcome`` that already carries the HTTP
status, body and headers; this module only extracts the client key and
serializes.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shelfscore.models.contracts import ErrorResponse, ScoreRequest, ScoreResponse
from shelfscore.models.outcomes import HTTP_STATUS, RETRYABLE
from shelfscore.pipeline import barcode
from shelfscore.pipeline.orchestrator import ProductPipeline, response_from_stored
from shelfscore.store import StoreError

logger = structlog.get_logger()

router = APIRouter(tags=["products"])


def client_key(request: Request) -> str:
    """Rate-limit key: first X-Forwarded-For hop, X-Real-IP, then the peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _pipeline(request: Request) -> ProductPipeline:
    return request.app.state.pipeline


def _error(kind: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_STATUS[kind],
        content=ErrorResponse(
            error=kind, message=message, retryable=kind in RETRYABLE
        ).model_dump(),
    )


@router.post(
    "/products/score",
    response_model=ScoreResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def score_product(body: ScoreRequest, request: Request):
    """Resolve, extract and score the product behind a barcode."""
    key = client_key(request)
    logger.info("score_requested", upc=body.upc, has_url=body.product_url is not None)
    outcome = await _pipeline(request).run(body, key)
    return JSONResponse(
        status_code=outcome.http_status,
        content=outcome.body(),
        headers=outcome.headers(),
    )


@router.get(
    "/products/{upc}",
    response_model=ScoreResponse,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def get_product(upc: str, request: Request):
    """Return the last stored result for a barcode without running the pipeline."""
    store_key = barcode.canonical(upc)
    if store_key is None:
        return _error("input_invalid", "Invalid UPC format. Expected a 1-13 digit UPC/EAN barcode.")

    store = _pipeline(request).store
    try:
        stored = await store.get(store_key)
    except StoreError as exc:
        logger.error("product_read_failed", upc=store_key, error=str(exc))
        return _error("upstream_unreachable", "Product store is unavailable")

    if stored is None:
        return _error("not_found", "No stored result for this barcode")
    return JSONResponse(content=response_from_stored(stored).model_dump(mode="json"))
