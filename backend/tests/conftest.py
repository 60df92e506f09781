from __future__ import annotations

from typing import Any

import httpx
import pytest
from fakes import FakeCompletions, FakeStore, FakeWeb, make_settings
from httpx import ASGITransport, AsyncClient

from shelfscore.main import app
from shelfscore.pipeline.orchestrator import ProductPipeline
from shelfscore.pipeline.rate_limit import RateLimiter


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
async def http_client(web: FakeWeb):
    async with httpx.AsyncClient(transport=httpx.MockTransport(web)) as c:
        yield c


@pytest.fixture
def build_pipeline(http_client: httpx.AsyncClient, store: FakeStore):
    """Factory: ``build_pipeline(completions, max_requests=..., **settings)``."""

    def _build(
        completions: FakeCompletions | None = None,
        *,
        max_requests: int = 5,
        **overrides: Any,
    ) -> ProductPipeline:
        return ProductPipeline(
            settings=make_settings(**overrides),
            http_client=http_client,
            completions=completions or FakeCompletions(),
            store=store,
            rate_limiter=RateLimiter(window_seconds=60.0, max_requests=max_requests),
            search_model="test/search",
            scoring_model="test/scoring",
        )

    return _build


@pytest.fixture
async def client(build_pipeline):
    """ASGI client with a fake-backed pipeline on app.state.

    ASGITransport does not run the lifespan, so state is installed here.
    """
    app.state.pipeline = build_pipeline()
    app.state.started_at = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
