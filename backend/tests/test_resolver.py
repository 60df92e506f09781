"""Tests for the source ladder: barcode database first, AI search second."""

import httpx
import pytest
from fakes import OFF_BASE, FakeCompletions

from shelfscore.models.outcomes import Resolution, StageFailure
from shelfscore.pipeline.barcode import variants
from shelfscore.pipeline.resolver import (
    build_search_context,
    extract_brand,
    identity_from_record,
    is_valid_brand,
    is_valid_name,
    lookup_barcode,
    resolve,
)
from shelfscore.utils.completions import CompletionError

UPC = "012345678905"


async def _resolve(http_client, completions, upc=UPC, **kwargs):
    return await resolve(
        variants(upc),
        upc=upc,
        http_client=http_client,
        completions=completions,
        off_base_url=OFF_BASE,
        search_model="test/search",
        lookup_timeout=5.0,
        search_timeout=5.0,
        **kwargs,
    )


class TestIdentityHelpers:
    def test_extract_brand_first_of_list(self):
        assert extract_brand("Acme, Acme Foods; Parent Co") == "Acme"

    def test_extract_brand_non_string(self):
        assert extract_brand(None) is None
        assert extract_brand(["Acme"]) is None

    def test_brand_list_with_inc(self):
        assert extract_brand("Acme, Inc.; secondary") == "Acme"

    def test_identity_from_record(self):
        record = {
            "product_name": "  Rolled Oats ",
            "brands": "Acme,Other",
            "image_front_url": "https://img.test/oats.jpg",
        }
        assert identity_from_record(record) == ("Rolled Oats", "Acme", "https://img.test/oats.jpg")

    def test_identity_falls_back_through_name_fields(self):
        record = {"product_name": "", "generic_name": "Oat flakes"}
        assert identity_from_record(record)[0] == "Oat flakes"

    def test_identity_from_missing_record(self):
        assert identity_from_record(None) == (None, None, None)

    @pytest.mark.parametrize(
        ("name", "valid"),
        [("Rolled Oats", True), ("Oats", False), ("Unknown product", False), (None, False)],
    )
    def test_is_valid_name(self, name, valid):
        """Names must be longer than 4 chars and not a placeholder."""
        assert is_valid_name(name) is valid

    @pytest.mark.parametrize(
        ("brand", "valid"),
        [("Acme", True), ("AB", False), ("unknown", False), ("", False)],
    )
    def test_is_valid_brand(self, brand, valid):
        assert is_valid_brand(brand) is valid


class TestBuildSearchContext:
    def test_valid_identity_context(self):
        context = build_search_context(UPC, None, "Acme", {"brands": "Acme"})
        assert "Brand: Acme" in context
        assert f"UPC: {UPC}" in context
        assert "<OFF_JSON>" not in context

    def test_raw_record_when_identity_weak(self):
        context = build_search_context(UPC, "Oat", "X", {"product_name": "Oat", "quantity": "500 g"})
        assert "<OFF_JSON>" in context
        assert '"quantity": "500 g"' in context

    def test_barcode_only(self):
        assert build_search_context(UPC, None, None, None) == f"UPC: {UPC}"


class TestLookupBarcode:
    @pytest.mark.asyncio
    async def test_returns_payload(self, web, http_client):
        web.off_product(UPC, {"product_name": "Rolled Oats"})
        data = await lookup_barcode(http_client, OFF_BASE, UPC, 5.0)
        assert data["status"] == 1

    @pytest.mark.asyncio
    async def test_http_error_is_a_miss(self, web, http_client):
        web.add("GET", f"{OFF_BASE}/api/v0/product/{UPC}.json", httpx.Response(500))
        assert await lookup_barcode(http_client, OFF_BASE, UPC, 5.0) is None

    @pytest.mark.asyncio
    async def test_transport_error_is_a_miss(self, web, http_client):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        web.add("GET", OFF_BASE, boom)
        assert await lookup_barcode(http_client, OFF_BASE, UPC, 5.0) is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_miss(self, web, http_client):
        web.add("GET", OFF_BASE, httpx.Response(200, text="<html>"))
        assert await lookup_barcode(http_client, OFF_BASE, UPC, 5.0) is None


class TestResolve:
    @pytest.mark.asyncio
    async def test_database_url_skips_ai_search(self, web, http_client):
        """A database record with a URL ends the ladder; the AI is never called."""
        web.off_product(
            UPC,
            {
                "product_name": "Rolled Oats",
                "brands": "Acme",
                "url": "https://acme.com/oats",
                "image_front_url": "https://img.test/oats.jpg",
            },
        )
        completions = FakeCompletions()

        result = await _resolve(http_client, completions)

        assert isinstance(result, Resolution)
        assert result.candidate_url == "https://acme.com/oats"
        assert result.identity.source == "structured-database"
        assert result.identity.name == "Rolled Oats"
        assert result.identity.image_url == "https://img.test/oats.jpg"
        assert completions.calls == []

    @pytest.mark.asyncio
    async def test_variants_tried_in_order_until_hit(self, web, http_client):
        web.off_product(UPC, None)
        web.off_product("0" + UPC, {"product_name": "Rolled Oats", "url": "https://acme.com/oats"})

        result = await _resolve(http_client, FakeCompletions())

        assert result.candidate_url == "https://acme.com/oats"
        looked_up = [r.url.path for r in web.calls("GET", OFF_BASE)]
        assert looked_up == [
            f"/api/v0/product/{UPC}.json",
            f"/api/v0/product/0{UPC}.json",
        ]

    @pytest.mark.asyncio
    async def test_ai_search_with_brand_context(self, web, http_client):
        """Record without URL: brand goes into the prompt, AI URL is returned."""
        web.off_product(UPC, {"brands": "Acme"})
        completions = FakeCompletions("<url>https://acme.com/p</url>")

        result = await _resolve(http_client, completions)

        assert result.candidate_url == "https://acme.com/p"
        assert result.identity.source == "ai-search"
        assert result.identity.brand == "Acme"
        assert len(completions.calls) == 1
        call = completions.calls[0]
        assert call["model"] == "test/search"
        assert call["temperature"] == 0.0
        user_prompt = call["messages"][-1]["content"]
        assert "Acme" in user_prompt
        assert UPC in user_prompt

    @pytest.mark.asyncio
    async def test_name_and_brand_verbatim_in_prompt(self, web, http_client):
        web.off_product(UPC, {"product_name": "Acme Whey Protein", "brands": "Acme, Inc.; secondary"})
        completions = FakeCompletions("<url>https://acme.com/whey</url>")

        await _resolve(http_client, completions)

        user_prompt = completions.calls[0]["messages"][-1]["content"]
        assert "Product Name: Acme Whey Protein" in user_prompt
        assert "Brand: Acme\n" in user_prompt

    @pytest.mark.asyncio
    async def test_barcode_only_search_when_database_misses(self, web, http_client):
        completions = FakeCompletions("<url>https://brand.test/item</url>")

        result = await _resolve(http_client, completions)

        assert result.candidate_url == "https://brand.test/item"
        assert result.identity.name is None
        assert f"UPC: {UPC}" in completions.calls[0]["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_not_found_sentinel(self, web, http_client):
        result = await _resolve(http_client, FakeCompletions("<url>NOT_FOUND</url>"))

        assert isinstance(result, Resolution)
        assert result.candidate_url is None
        assert result.identity.source == "none"

    @pytest.mark.asyncio
    async def test_search_failure_is_blocking(self, web, http_client):
        completions = FakeCompletions(CompletionError("HTTP 401", status=401, body="bad key"))

        result = await _resolve(http_client, completions)

        assert isinstance(result, StageFailure)
        assert result.kind == "upstream_error"
        assert result.reason == "search_failed"
        assert result.upstream_status == 401
        assert result.upstream_body == "bad key"

    @pytest.mark.asyncio
    async def test_known_url_uses_database_identity_only(self, web, http_client):
        web.off_product(
            UPC, {"product_name": "Rolled Oats", "brands": "Acme", "url": "https://acme.com/db"}
        )
        completions = FakeCompletions()

        result = await _resolve(http_client, completions, known_url="https://shop.test/oats")

        assert result.candidate_url == "https://shop.test/oats"
        assert result.identity.source == "caller"
        assert result.identity.name == "Rolled Oats"
        assert completions.calls == []
