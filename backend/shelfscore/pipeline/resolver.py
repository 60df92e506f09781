"""Source ladder — barcode database first, AI web search second.

1. Look up each code variant in the structured barcode database; the first
   record carrying a direct product URL ends the ladder.
2. Otherwise pull best-effort name/brand/image from the record (if any).
3. Ask the search model for the official product page, giving it the
   cleanest context available: valid name/brand, else the raw record,
   else just the barcode.

A failed variant lookup only means "no match for this variant". A failed
AI search call is blocking: nothing downstream can run without a URL.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import httpx
import structlog

from shelfscore.models.outcomes import ResolvedIdentity, Resolution, StageFailure
from shelfscore.pipeline.parsing import parse_delimited_url
from shelfscore.utils.completions import CompletionClient, CompletionError

log = structlog.get_logger("pipeline.resolver")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

NAME_FIELDS = ("product_name", "product_name_en", "product_name_original", "generic_name")
IMAGE_FIELDS = ("image_front_url", "image_url")
MIN_NAME_LENGTH = 4
MIN_BRAND_LENGTH = 2
PLACEHOLDER_TOKEN = "unknown"

SEARCH_SYSTEM_PROMPT = (
    "You are an expert web research assistant that returns only the requested URL. "
    "Reply with exactly one product page URL wrapped as <url>https://...</url>, "
    "or <url>NOT_FOUND</url> if no product page exists."
)

_BRAND_SPLIT_RE = re.compile(r"[;,]")


# === Step 1: Structured database lookup ===


async def lookup_barcode(
    http_client: httpx.AsyncClient,
    base_url: str,
    code: str,
    timeout: float,
) -> dict[str, Any] | None:
    """Fetch one code from the barcode database. Any failure returns None."""
    url = f"{base_url.rstrip('/')}/api/v0/product/{code}.json"
    try:
        resp = await http_client.get(url, timeout=timeout)
    except httpx.TimeoutException:
        log.warning("resolver_lookup_timeout", code=code)
        return None
    except httpx.RequestError as exc:
        log.warning("resolver_lookup_failed", code=code, error=type(exc).__name__)
        return None

    if resp.status_code >= 400:
        log.warning("resolver_lookup_http_error", code=code, status=resp.status_code)
        return None

    try:
        data = resp.json()
    except ValueError:
        log.warning("resolver_lookup_invalid_json", code=code)
        return None
    return data if isinstance(data, dict) else None


def _found_product(data: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return the product record when the lookup reported status 1."""
    if not data or data.get("status") != 1:
        return None
    product = data.get("product")
    return product if isinstance(product, dict) and product else None


# === Step 2: Best-effort identity ===


def _first_text(record: dict[str, Any], fields: tuple[str, ...]) -> str | None:
    for key in fields:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_brand(raw_brands: Any) -> str | None:
    """First brand of a comma/semicolon separated list, trimmed."""
    if not isinstance(raw_brands, str):
        return None
    first = _BRAND_SPLIT_RE.split(raw_brands, maxsplit=1)[0].strip()
    return first or None


def identity_from_record(
    record: dict[str, Any] | None,
) -> tuple[str | None, str | None, str | None]:
    """Return (name, brand, image_url) from a barcode database record."""
    if not record:
        return None, None, None
    return (
        _first_text(record, NAME_FIELDS),
        extract_brand(record.get("brands")),
        _first_text(record, IMAGE_FIELDS),
    )


def _is_valid(value: str | None, min_length: int) -> bool:
    if not value:
        return False
    return len(value) > min_length and PLACEHOLDER_TOKEN not in value.lower()


def is_valid_name(name: str | None) -> bool:
    return _is_valid(name, MIN_NAME_LENGTH)


def is_valid_brand(brand: str | None) -> bool:
    return _is_valid(brand, MIN_BRAND_LENGTH)


# === Step 3: AI search ===


def build_search_context(
    upc: str,
    name: str | None,
    brand: str | None,
    record: dict[str, Any] | None,
) -> str:
    """Pick the leanest prompt context that still identifies the product."""
    if is_valid_name(name) or is_valid_brand(brand):
        return f"Product Name: {name or 'N/A'}\nBrand: {brand or 'N/A'}\nUPC: {upc}"
    if record:
        raw = json.dumps(record, indent=2, ensure_ascii=False, default=str)
        return f"UPC: {upc}\n\nBarcode database raw product JSON:\n<OFF_JSON>\n{raw}\n</OFF_JSON>"
    return f"UPC: {upc}"


_search_prompt_cache: str | None = None


def _load_search_prompt() -> str:
    """Load the URL search prompt template (cached after first read)."""
    global _search_prompt_cache  # noqa: PLW0603
    if _search_prompt_cache is None:
        _search_prompt_cache = (PROMPTS_DIR / "url_search.txt").read_text()
    return _search_prompt_cache


def build_search_prompt(context: str) -> str:
    return _load_search_prompt().format(context=context)


async def search_product_url(
    completions: CompletionClient,
    model: str,
    prompt: str,
    timeout: float,
) -> str | None:
    """Run the AI search. Raises CompletionError when the call itself fails."""
    text = await completions.complete(
        model,
        [
            {"role": "system", "content": SEARCH_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        temperature=0.0,
        timeout=timeout,
    )
    url = parse_delimited_url(text)
    if url is None:
        log.warning("resolver_search_no_url", model=model, response=text[:200])
    return url


# === Ladder ===


async def resolve(
    variants: tuple[str, ...],
    *,
    upc: str,
    http_client: httpx.AsyncClient,
    completions: CompletionClient,
    off_base_url: str,
    search_model: str,
    lookup_timeout: float,
    search_timeout: float,
    known_url: str | None = None,
) -> Resolution | StageFailure:
    """Resolve a barcode to an identity and candidate page URL.

    With ``known_url`` the database is still consulted for name/brand, but
    its URL is ignored and no AI search runs.
    """
    record: dict[str, Any] | None = None

    for code in variants:
        product = _found_product(
            await lookup_barcode(http_client, off_base_url, code, lookup_timeout)
        )
        if product is None:
            log.info("resolver_variant_miss", code=code)
            continue

        record = product
        direct_url = product.get("url")
        if known_url is None and isinstance(direct_url, str) and direct_url.strip():
            name, brand, image_url = identity_from_record(product)
            log.info("resolver_database_url", code=code, url=direct_url)
            return Resolution(
                identity=ResolvedIdentity(
                    name=name, brand=brand, image_url=image_url, source="structured-database"
                ),
                candidate_url=direct_url.strip(),
            )
        if known_url is not None:
            break
        log.info("resolver_record_without_url", code=code)

    name, brand, image_url = identity_from_record(record)
    log.info(
        "resolver_identity",
        has_record=record is not None,
        name=name,
        brand=brand,
        name_valid=is_valid_name(name),
        brand_valid=is_valid_brand(brand),
    )

    if known_url is not None:
        return Resolution(
            identity=ResolvedIdentity(name=name, brand=brand, image_url=image_url, source="caller"),
            candidate_url=known_url,
        )

    prompt = build_search_prompt(build_search_context(upc, name, brand, record))
    try:
        url = await search_product_url(completions, search_model, prompt, search_timeout)
    except CompletionError as exc:
        log.error("resolver_search_failed", status=exc.status, error=str(exc))
        return StageFailure(
            kind="upstream_error",
            message="Failed to communicate with AI service for URL lookup.",
            reason="search_failed",
            upstream_status=exc.status,
            upstream_body=exc.body,
        )

    return Resolution(
        identity=ResolvedIdentity(
            name=name,
            brand=brand,
            image_url=image_url,
            source="ai-search" if url else "none",
        ),
        candidate_url=url,
    )
