import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shelfscore import __version__
from shelfscore.api.routes import health, products
from shelfscore.config import settings
from shelfscore.logging import configure_logging
from shelfscore.pipeline.orchestrator import ProductPipeline
from shelfscore.pipeline.rate_limit import RateLimiter
from shelfscore.store import build_store
from shelfscore.utils.completions import build_completion_client, models_for
from shelfscore.utils.http import build_http_client

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared HTTP client and pipeline once per process."""
    http_client = build_http_client(settings)
    search_model, scoring_model = models_for(settings)
    app.state.started_at = time.monotonic()
    app.state.pipeline = ProductPipeline(
        settings=settings,
        http_client=http_client,
        completions=build_completion_client(settings, http_client),
        store=build_store(settings.database_url, settings.store_timeout_seconds),
        rate_limiter=RateLimiter(
            window_seconds=settings.rate_limit_window_seconds,
            max_requests=settings.rate_limit_max_requests,
        ),
        search_model=search_model,
        scoring_model=scoring_model,
    )
    if not settings.scraper_api_key:
        logger.warning("scraper_api_key_missing")
    logger.info(
        "app_started",
        environment=settings.environment,
        ai_provider=settings.ai_provider,
        search_model=search_model,
        scoring_model=scoring_model,
    )
    try:
        yield
    finally:
        await http_client.aclose()
        logger.info("app_stopped")


app = FastAPI(
    title="shelfscore API",
    version=__version__,
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-request-id"],
    max_age=86400,
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", request.headers.get("X-Request-ID", ""))


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request ID to every request for log correlation.

    Bound into structlog context vars for the duration of the request and
    echoed in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Malformed request bodies are the caller's to fix: 400 input_invalid."""
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=400,
        content={
            "error": "input_invalid",
            "message": "; ".join(messages) or "Invalid request body",
            "retryable": False,
        },
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled exceptions get the ErrorResponse shape, never a stack trace."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


app.include_router(health.router)
app.include_router(products.router, prefix="/api/v1")
