"""Tagged stage outcomes and the caller-facing error taxonomy.

Every pipeline stage returns either its own success type or a
``StageFailure``. Nothing here raises; the orchestrator inspects the tag
and decides whether the run continues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

FailureKind = Literal[
    "input_invalid",
    "rate_limited",
    "not_found",
    "upstream_unreachable",
    "upstream_timeout",
    "upstream_error",
    "persistence_error",
    "internal_error",
]

PipelineStage = Literal[
    "start",
    "rate_check",
    "lookup",
    "resolve",
    "validate_url",
    "extract",
    "score",
    "persist",
    "done",
]

IdentitySource = Literal["structured-database", "ai-search", "caller", "none"]

# persistence_error never reaches the caller as a status; it is a flag on success.
HTTP_STATUS: dict[FailureKind, int] = {
    "input_invalid": 400,
    "not_found": 404,
    "rate_limited": 429,
    "internal_error": 500,
    "upstream_error": 502,
    "upstream_unreachable": 503,
    "upstream_timeout": 504,
}

RETRYABLE: frozenset[FailureKind] = frozenset(
    {
        "rate_limited",
        "upstream_unreachable",
        "upstream_timeout",
        "upstream_error",
        "internal_error",
    }
)


@dataclass(frozen=True)
class StageFailure:
    """A blocking failure reported by one stage."""

    kind: FailureKind
    message: str
    reason: str | None = None
    upstream_status: int | None = None
    upstream_body: str | None = None

    @property
    def http_status(self) -> int:
        return HTTP_STATUS.get(self.kind, 500)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE


@dataclass(frozen=True)
class Allowed:
    count: int


@dataclass(frozen=True)
class Denied:
    count: int
    retry_after: float


@dataclass(frozen=True)
class ResolvedIdentity:
    name: str | None = None
    brand: str | None = None
    image_url: str | None = None
    source: IdentitySource = "none"


@dataclass(frozen=True)
class Resolution:
    """Output of the source ladder: identity plus the page to scrape (if any)."""

    identity: ResolvedIdentity
    candidate_url: str | None = None


@dataclass(frozen=True)
class UrlOk:
    url: str
    status_code: int


@dataclass(frozen=True)
class ExtractedContent:
    url: str
    body: str
    format: str = "html"
    metadata: dict[str, Any] = field(default_factory=dict)

    def bounded(self, limit: int) -> str:
        """First ``limit`` characters of the body."""
        return self.body[: max(limit, 0)]
