"""Tests for the AI completion clients."""

import json
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest
from fakes import make_settings

from shelfscore.utils.completions import (
    AnthropicClient,
    CompletionError,
    OpenRouterClient,
    build_completion_client,
    models_for,
)

BASE = "https://router.test/api/v1"
MESSAGES = [
    {"role": "system", "content": "Be terse."},
    {"role": "user", "content": "Find the page."},
]


def _router(handler) -> tuple[OpenRouterClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenRouterClient(http_client, "sk-test", BASE), http_client


class TestOpenRouterClient:
    @pytest.mark.asyncio
    async def test_returns_first_choice_text(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200, json={"choices": [{"message": {"content": "  <url>https://a.test</url> "}}]}
            )

        client, http_client = _router(handler)
        async with http_client:
            text = await client.complete("perplexity/sonar", MESSAGES, temperature=0.0)

        assert text == "<url>https://a.test</url>"
        (request,) = seen
        assert str(request.url) == f"{BASE}/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        payload = json.loads(request.content)
        assert payload["model"] == "perplexity/sonar"
        assert payload["temperature"] == 0.0
        assert payload["messages"] == MESSAGES

    @pytest.mark.asyncio
    async def test_temperature_omitted_when_unset(self):
        seen: list[dict] = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        client, http_client = _router(handler)
        async with http_client:
            await client.complete("m", MESSAGES)

        assert "temperature" not in seen[0]

    @pytest.mark.asyncio
    async def test_content_parts_joined(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"choices": [{"message": {"content": [{"text": "SCORE: "}, {"text": "9"}]}}]},
            )

        client, http_client = _router(handler)
        async with http_client:
            assert await client.complete("m", MESSAGES) == "SCORE: 9"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"choices": []}, {"choices": [{"message": None}]}])
    async def test_missing_choices_is_empty(self, payload):
        client, http_client = _router(lambda request: httpx.Response(200, json=payload))
        async with http_client:
            assert await client.complete("m", MESSAGES) == ""

    @pytest.mark.asyncio
    async def test_http_error_raises_with_status_and_body(self):
        client, http_client = _router(lambda request: httpx.Response(429, text="slow down"))
        async with http_client:
            with pytest.raises(CompletionError) as exc_info:
                await client.complete("m", MESSAGES)

        assert exc_info.value.status == 429
        assert exc_info.value.body == "slow down"

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client, http_client = _router(handler)
        async with http_client:
            with pytest.raises(CompletionError, match="Network error"):
                await client.complete("m", MESSAGES)

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client, http_client = _router(handler)
        async with http_client:
            with pytest.raises(CompletionError, match="timed out"):
                await client.complete("m", MESSAGES)


class TestAnthropicClient:
    @pytest.mark.asyncio
    async def test_system_folded_and_text_joined(self):
        text_block = MagicMock()
        text_block.type = "text"
        text_block.text = "SCORE: 70"
        other_block = MagicMock()
        other_block.type = "tool_use"
        mock_response = MagicMock()
        mock_response.content = [text_block, other_block]

        mock_client = MagicMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)

        text = await AnthropicClient(mock_client).complete(
            "claude-haiku-4-5-20251001", MESSAGES, timeout=12.0
        )

        assert text == "SCORE: 70"
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be terse."
        assert kwargs["messages"] == [{"role": "user", "content": "Find the page."}]
        assert kwargs["timeout"] == 12.0
        assert "temperature" not in kwargs

    @pytest.mark.asyncio
    async def test_status_error_mapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.APIStatusError(
            "overloaded",
            response=httpx.Response(529, request=request),
            body=None,
        )
        mock_client = MagicMock()
        mock_client.messages.create = AsyncMock(side_effect=error)

        with pytest.raises(CompletionError) as exc_info:
            await AnthropicClient(mock_client).complete("m", MESSAGES)

        assert exc_info.value.status == 529

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        mock_client = MagicMock()
        mock_client.messages.create = AsyncMock(
            side_effect=anthropic.APIConnectionError(request=request)
        )

        with pytest.raises(CompletionError, match="connection error"):
            await AnthropicClient(mock_client).complete("m", MESSAGES)


class TestFactory:
    def test_openrouter_default(self):
        settings = make_settings()
        client = build_completion_client(settings, httpx.AsyncClient())
        assert isinstance(client, OpenRouterClient)
        assert models_for(settings) == (settings.search_model, settings.scoring_model)

    def test_anthropic_provider(self):
        settings = make_settings(ai_provider="anthropic", anthropic_api_key="sk-ant-test")
        client = build_completion_client(settings, httpx.AsyncClient())
        assert isinstance(client, AnthropicClient)
        assert models_for(settings) == (
            settings.anthropic_search_model,
            settings.anthropic_scoring_model,
        )
