"""API and result contracts for shelfscore.

Request/response shapes are what the mobile client depends on; keep changes
additive (new optional fields) unless the client is updated in lockstep.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from shelfscore.models.outcomes import IdentitySource, PipelineStage

NO_SUMMARY = "No summary available."
MAX_HIGHLIGHTS = 3

# === Scoring ===


class ScoreResult(BaseModel):
    score: int = Field(default=0, ge=0, le=100)
    summary: str = NO_SUMMARY
    highlights: list[str] = Field(default_factory=list, max_length=MAX_HIGHLIGHTS)


# === Persistence ===


class StoredProduct(BaseModel):
    """A scored product as held by the persistent store."""

    upc: str
    name: str | None = None
    brand: str | None = None
    image_url: str | None = None
    product_url: str
    source: IdentitySource = "none"
    score: int = Field(default=0, ge=0, le=100)
    summary: str = NO_SUMMARY
    highlights: list[str] = []
    updated_at: datetime | None = None


# === API Request/Response Models ===


class ScoreRequest(BaseModel):
    upc: str = Field(min_length=1, max_length=64)
    product_url: str | None = None  # known page; skips URL resolution
    force_refresh: bool = False

    @field_validator("product_url")
    @classmethod
    def _blank_url_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value.strip() if value else value


class ScoreResponse(BaseModel):
    status: Literal["success", "cached"]
    upc: str
    product_url: str
    source: IdentitySource
    name: str | None = None
    brand: str | None = None
    image_url: str | None = None
    score: int = Field(ge=0, le=100)
    summary: str
    highlights: list[str] = []
    persisted: bool = False
    persistence_error: str | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    detail: str | None = None
    stage: PipelineStage | None = None
    product_url: str | None = None
