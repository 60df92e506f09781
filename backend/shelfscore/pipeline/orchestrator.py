"""Pipeline orchestrator — barcode in, scored product page out.

States, terminal on the first blocking failure:

    start → rate_check → lookup → resolve → validate_url → extract → score → persist → done

Each stage hands back a tagged outcome; this module is the only place those
outcomes become caller-visible statuses and bodies. Scoring cannot abort a
run, and a failed write still returns the computed score with a
persistence flag (best-effort durability).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog

from shelfscore.config import Settings
from shelfscore.models.contracts import (
    ErrorResponse,
    ScoreRequest,
    ScoreResponse,
    ScoreResult,
    StoredProduct,
)
from shelfscore.models.outcomes import (
    Denied,
    ExtractedContent,
    PipelineStage,
    ResolvedIdentity,
    StageFailure,
)
from shelfscore.pipeline import barcode, extractor, resolver, scoring, url_check
from shelfscore.pipeline.rate_limit import RateLimiter
from shelfscore.store import ProductStore, StoreError
from shelfscore.utils.completions import CompletionClient

logger = structlog.get_logger("pipeline.orchestrator")


@dataclass
class PipelineOutcome:
    """Terminal result of one run: a response body or a blocking failure."""

    stage: PipelineStage
    response: ScoreResponse | None = None
    failure: StageFailure | None = None
    product_url: str | None = None
    retry_after: float | None = None

    @property
    def ok(self) -> bool:
        return self.response is not None

    @property
    def http_status(self) -> int:
        if self.response is not None:
            return 200
        assert self.failure is not None
        return self.failure.http_status

    def body(self) -> dict[str, Any]:
        if self.response is not None:
            return self.response.model_dump()
        assert self.failure is not None
        return ErrorResponse(
            error=self.failure.kind,
            message=self.failure.message,
            retryable=self.failure.retryable,
            detail=_failure_detail(self.failure),
            stage=self.stage,
            product_url=self.product_url,
        ).model_dump()

    def headers(self) -> dict[str, str]:
        if self.retry_after is None:
            return {}
        return {"Retry-After": str(max(int(self.retry_after + 0.999), 1))}


def _failure_detail(failure: StageFailure) -> str | None:
    parts: list[str] = []
    if failure.reason:
        parts.append(failure.reason)
    if failure.upstream_status is not None:
        parts.append(f"upstream status {failure.upstream_status}")
    if failure.upstream_body:
        parts.append(failure.upstream_body[:300])
    return "; ".join(parts) or None


@dataclass
class _Run:
    """Mutable bookkeeping for one run (used to report where it stopped)."""

    stage: PipelineStage = "start"
    product_url: str | None = None


class ProductPipeline:
    """Runs the barcode → score chain against injected collaborators."""

    def __init__(
        self,
        *,
        settings: Settings,
        http_client: httpx.AsyncClient,
        completions: CompletionClient,
        store: ProductStore,
        rate_limiter: RateLimiter,
        search_model: str,
        scoring_model: str,
    ) -> None:
        self.settings = settings
        self.http_client = http_client
        self.completions = completions
        self.store = store
        self.rate_limiter = rate_limiter
        self.search_model = search_model
        self.scoring_model = scoring_model

    async def run(self, request: ScoreRequest, client_key: str) -> PipelineOutcome:
        run = _Run()
        with structlog.contextvars.bound_contextvars(upc=request.upc, client_key=client_key):
            try:
                outcome = await self._run(request, client_key, run)
            except Exception:
                logger.exception("pipeline_internal_error", stage=run.stage)
                return PipelineOutcome(
                    stage=run.stage,
                    failure=StageFailure(
                        kind="internal_error",
                        message="An unexpected error occurred",
                    ),
                    product_url=run.product_url,
                )

            if outcome.ok:
                logger.info(
                    "pipeline_complete",
                    stage=outcome.stage,
                    status=outcome.response.status,  # type: ignore[union-attr]
                )
            else:
                logger.warning(
                    "pipeline_stage_failed",
                    stage=outcome.stage,
                    kind=outcome.failure.kind,  # type: ignore[union-attr]
                    reason=outcome.failure.reason,  # type: ignore[union-attr]
                )
            return outcome

    def _fail(
        self, run: _Run, failure: StageFailure, retry_after: float | None = None
    ) -> PipelineOutcome:
        return PipelineOutcome(
            stage=run.stage,
            failure=failure,
            product_url=run.product_url,
            retry_after=retry_after,
        )

    async def _run(self, request: ScoreRequest, client_key: str, run: _Run) -> PipelineOutcome:
        cfg = self.settings

        # start: reject malformed input before any network call
        variants = barcode.variants(request.upc)
        store_key = barcode.canonical(request.upc)
        if not variants or store_key is None:
            return self._fail(
                run,
                StageFailure(
                    kind="input_invalid",
                    message="Invalid UPC format. Expected a 1-13 digit UPC/EAN barcode.",
                    reason="invalid_upc",
                ),
            )
        if request.product_url is not None and not url_check.is_well_formed(request.product_url):
            return self._fail(
                run,
                StageFailure(
                    kind="input_invalid",
                    message="Invalid product_url. Expected an absolute http(s) URL.",
                    reason="invalid_url",
                ),
            )
        upc = barcode.clean(request.upc)

        run.stage = "rate_check"
        decision = self.rate_limiter.admit(client_key)
        if isinstance(decision, Denied):
            return self._fail(
                run,
                StageFailure(
                    kind="rate_limited",
                    message="Rate limit exceeded. Try again shortly.",
                ),
                retry_after=decision.retry_after,
            )

        run.stage = "lookup"
        if not request.force_refresh and request.product_url is None:
            cached = await self._cached(store_key)
            if cached is not None:
                run.stage = "done"
                return PipelineOutcome(
                    stage="done",
                    response=_response_from_stored(cached, upc, status="cached"),
                    product_url=cached.product_url,
                )

        run.stage = "resolve"
        resolution = await resolver.resolve(
            variants,
            upc=request.upc,
            http_client=self.http_client,
            completions=self.completions,
            off_base_url=cfg.off_base_url,
            search_model=self.search_model,
            lookup_timeout=cfg.lookup_timeout_seconds,
            search_timeout=cfg.ai_timeout_seconds,
            known_url=request.product_url,
        )
        if isinstance(resolution, StageFailure):
            return self._fail(run, resolution)
        if not resolution.candidate_url:
            return self._fail(
                run,
                StageFailure(
                    kind="not_found",
                    message="Could not resolve product URL from any source.",
                    reason="no_candidate_url",
                ),
            )
        identity = resolution.identity
        run.product_url = resolution.candidate_url

        run.stage = "validate_url"
        checked = await url_check.validate(
            resolution.candidate_url,
            http_client=self.http_client,
            timeout=cfg.probe_timeout_seconds,
        )
        if isinstance(checked, StageFailure):
            return self._fail(run, checked)

        run.stage = "extract"
        content = await extractor.extract(
            checked.url,
            http_client=self.http_client,
            base_url=cfg.scraper_base_url,
            api_key=cfg.scraper_api_key,
            timeout=cfg.extract_timeout_seconds,
        )
        if isinstance(content, StageFailure):
            return self._fail(run, content)

        run.stage = "score"
        result = await scoring.score(
            identity,
            content,
            completions=self.completions,
            model=self.scoring_model,
            timeout=cfg.ai_timeout_seconds,
            content_chars=cfg.score_content_chars,
        )

        run.stage = "persist"
        persistence_error = await self._persist(store_key, checked.url, identity, result, content)

        run.stage = "done"
        return PipelineOutcome(
            stage="done",
            response=ScoreResponse(
                status="success",
                upc=upc,
                product_url=checked.url,
                source=identity.source,
                name=identity.name,
                brand=identity.brand,
                image_url=identity.image_url,
                score=result.score,
                summary=result.summary,
                highlights=result.highlights,
                persisted=self.store.enabled and persistence_error is None,
                persistence_error=persistence_error,
            ),
            product_url=checked.url,
        )

    async def _cached(self, store_key: str) -> StoredProduct | None:
        """Return a fresh stored result, ignoring read failures."""
        ttl_hours = self.settings.cache_ttl_hours
        if ttl_hours <= 0 or not self.store.enabled:
            return None
        try:
            stored = await self.store.get(store_key)
        except StoreError as exc:
            logger.warning("pipeline_cache_read_failed", error=str(exc))
            return None
        if stored is None:
            return None
        if not _is_fresh(stored.updated_at, timedelta(hours=ttl_hours)):
            logger.info("pipeline_cache_stale", updated_at=str(stored.updated_at))
            return None
        logger.info("pipeline_cache_hit", product_url=stored.product_url)
        return stored

    async def _persist(
        self,
        store_key: str,
        product_url: str,
        identity: ResolvedIdentity,
        result: ScoreResult,
        content: ExtractedContent,
    ) -> str | None:
        """Upsert the scored product. Returns an error message instead of raising."""
        product = StoredProduct(
            upc=store_key,
            name=identity.name,
            brand=identity.brand,
            image_url=identity.image_url,
            product_url=product_url,
            source=identity.source,
            score=result.score,
            summary=result.summary,
            highlights=result.highlights,
        )
        try:
            await self.store.upsert(product, raw_html=content.body)
        except StoreError as exc:
            logger.error("pipeline_persist_failed", error=str(exc))
            return str(exc)
        except Exception as exc:
            logger.exception("pipeline_persist_crashed")
            return f"unexpected store error: {type(exc).__name__}"
        return None


def _is_fresh(updated_at: datetime | None, ttl: timedelta) -> bool:
    if updated_at is None:
        return False
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=UTC)
    return datetime.now(UTC) - updated_at <= ttl


def _response_from_stored(stored: StoredProduct, upc: str, *, status: str) -> ScoreResponse:
    return ScoreResponse(
        status=status,  # type: ignore[arg-type]
        upc=upc,
        product_url=stored.product_url,
        source=stored.source,
        name=stored.name,
        brand=stored.brand,
        image_url=stored.image_url,
        score=stored.score,
        summary=stored.summary,
        highlights=stored.highlights,
        persisted=True,
    )


def response_from_stored(stored: StoredProduct) -> ScoreResponse:
    """Caller-facing view of a stored product (used by the read endpoint)."""
    return _response_from_stored(stored, stored.upc, status="cached")
