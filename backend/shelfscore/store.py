"""Persistent store for scored products (PostgreSQL via asyncpg).

Only the read/upsert contract lives here; schema management does not.
Expected tables::

    products(upc text primary key, name text, brand text, image_url text,
             product_url text not null, source text, score int,
             summary text, highlights jsonb, updated_at timestamptz)
    raw_pages(product_url text primary key, upc text, raw_html text,
              source text, updated_at timestamptz)

Writes merge/overwrite on conflict.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol

import asyncpg
import structlog

from shelfscore.models.contracts import NO_SUMMARY, StoredProduct

logger = structlog.get_logger("store")

_UPSERT_PRODUCT = """
INSERT INTO products (upc, name, brand, image_url, product_url, source, score, summary, highlights, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, now())
ON CONFLICT (upc) DO UPDATE SET
    name = EXCLUDED.name,
    brand = EXCLUDED.brand,
    image_url = EXCLUDED.image_url,
    product_url = EXCLUDED.product_url,
    source = EXCLUDED.source,
    score = EXCLUDED.score,
    summary = EXCLUDED.summary,
    highlights = EXCLUDED.highlights,
    updated_at = now()
"""

_UPSERT_RAW_PAGE = """
INSERT INTO raw_pages (product_url, upc, raw_html, source, updated_at)
VALUES ($1, $2, $3, $4, now())
ON CONFLICT (product_url) DO UPDATE SET
    upc = EXCLUDED.upc,
    raw_html = EXCLUDED.raw_html,
    source = EXCLUDED.source,
    updated_at = now()
"""

_SELECT_PRODUCT = """
SELECT upc, name, brand, image_url, product_url, source, score, summary, highlights, updated_at
FROM products WHERE upc = $1
"""

RAW_PAGE_SOURCE = "scraper"

_STORE_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


class StoreError(Exception):
    """A read or write against the persistent store failed."""


class ProductStore(Protocol):
    enabled: bool

    async def get(self, upc: str) -> StoredProduct | None: ...

    async def upsert(self, product: StoredProduct, raw_html: str | None = None) -> None: ...

    async def ping(self) -> bool: ...


def _pg_dsn(database_url: str) -> str:
    """Convert SQLAlchemy-style URL to plain PostgreSQL DSN for asyncpg."""
    return database_url.replace("postgresql+asyncpg://", "postgresql://")


def _row_to_product(row: Any) -> StoredProduct:
    highlights = row["highlights"]
    if isinstance(highlights, str):
        highlights = json.loads(highlights)
    return StoredProduct(
        upc=row["upc"],
        name=row["name"],
        brand=row["brand"],
        image_url=row["image_url"],
        product_url=row["product_url"],
        source=row["source"] or "none",
        score=row["score"] or 0,
        summary=row["summary"] or NO_SUMMARY,
        highlights=list(highlights or []),
        updated_at=row["updated_at"],
    )


class PostgresProductStore:
    """One short-lived connection per call, each bounded by ``timeout``."""

    enabled = True

    def __init__(self, database_url: str, timeout: float = 5.0) -> None:
        self._dsn = _pg_dsn(database_url)
        self._timeout = timeout

    async def _connect(self) -> asyncpg.Connection:
        return await asyncpg.connect(dsn=self._dsn, timeout=self._timeout)

    async def get(self, upc: str) -> StoredProduct | None:
        try:
            conn = await self._connect()
            try:
                row = await conn.fetchrow(_SELECT_PRODUCT, upc, timeout=self._timeout)
            finally:
                await conn.close()
        except _STORE_ERRORS as exc:
            raise StoreError(f"read failed: {type(exc).__name__}") from exc
        return _row_to_product(row) if row is not None else None

    async def upsert(self, product: StoredProduct, raw_html: str | None = None) -> None:
        try:
            conn = await self._connect()
            try:
                async with conn.transaction():
                    await conn.execute(
                        _UPSERT_PRODUCT,
                        product.upc,
                        product.name,
                        product.brand,
                        product.image_url,
                        product.product_url,
                        product.source,
                        product.score,
                        product.summary,
                        json.dumps(product.highlights),
                        timeout=self._timeout,
                    )
                    if raw_html is not None:
                        await conn.execute(
                            _UPSERT_RAW_PAGE,
                            product.product_url,
                            product.upc,
                            raw_html,
                            RAW_PAGE_SOURCE,
                            timeout=self._timeout,
                        )
            finally:
                await conn.close()
        except _STORE_ERRORS as exc:
            raise StoreError(f"write failed: {type(exc).__name__}") from exc
        logger.info("store_upsert_complete", upc=product.upc, product_url=product.product_url)

    async def ping(self) -> bool:
        try:
            conn = await self._connect()
            try:
                await conn.fetchval("SELECT 1", timeout=self._timeout)
            finally:
                await conn.close()
            return True
        except Exception as exc:
            logger.debug("store_ping_failed", error=str(exc))
            return False


class NullProductStore:
    """Used when no database is configured: reads miss and writes are dropped."""

    enabled = False

    async def get(self, upc: str) -> StoredProduct | None:
        return None

    async def upsert(self, product: StoredProduct, raw_html: str | None = None) -> None:
        logger.debug("store_upsert_skipped", upc=product.upc)

    async def ping(self) -> bool:
        return False


def build_store(database_url: str, timeout: float) -> ProductStore:
    if not database_url:
        logger.warning("store_disabled", reason="database_url not configured")
        return NullProductStore()
    return PostgresProductStore(database_url, timeout=timeout)
