"""AI completion clients used by the URL search and scoring stages.

Both backends take an OpenAI-style message list and return plain text.
An empty string means the service answered without usable content; a
``CompletionError`` means the call itself failed (transport error, timeout,
or non-success status). Callers decide which of those is fatal.
"""

from __future__ import annotations

from typing import Any, Protocol

import anthropic
import httpx
import structlog

from shelfscore.config import Settings

logger = structlog.get_logger("utils.completions")

ANTHROPIC_MAX_TOKENS = 1024
ERROR_BODY_LIMIT = 500


class CompletionError(Exception):
    """The completion service could not be reached or rejected the request."""

    def __init__(self, message: str, *, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class CompletionClient(Protocol):
    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        timeout: float = 30.0,
    ) -> str: ...


def _choice_text(payload: Any) -> str:
    """Pull ``choices[0].message.content`` out of a chat completion envelope."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    message = first.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, list):
        # Some providers return content parts instead of a string.
        content = "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )
    return content.strip() if isinstance(content, str) else ""


class OpenRouterClient:
    """OpenAI-compatible ``/chat/completions`` over a shared httpx client."""

    def __init__(self, http_client: httpx.AsyncClient, api_key: str, base_url: str) -> None:
        self._http = http_client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        timeout: float = 30.0,
    ) -> str:
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature

        try:
            resp = await self._http.post(
                f"{self._base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=payload,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise CompletionError(f"Completion request timed out ({model})") from exc
        except httpx.RequestError as exc:
            raise CompletionError(
                f"Network error calling completion service: {type(exc).__name__}"
            ) from exc

        if resp.status_code >= 400:
            body = resp.text[:ERROR_BODY_LIMIT]
            logger.warning("completion_http_error", model=model, status=resp.status_code)
            raise CompletionError(
                f"Completion service returned HTTP {resp.status_code}",
                status=resp.status_code,
                body=body,
            )

        try:
            data = resp.json()
        except ValueError:
            logger.warning("completion_invalid_json", model=model)
            return ""
        return _choice_text(data)


class AnthropicClient:
    """Anthropic Messages API; system messages are folded into ``system``."""

    def __init__(self, client: anthropic.AsyncAnthropic) -> None:
        self._client = client

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        timeout: float = 30.0,
    ) -> str:
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        turns = [m for m in messages if m.get("role") != "system"]

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "messages": turns,
            "timeout": timeout,
        }
        if system:
            kwargs["system"] = system
        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            logger.warning("completion_http_error", model=model, status=exc.status_code)
            raise CompletionError(
                f"Anthropic API error ({exc.status_code})",
                status=exc.status_code,
                body=str(exc)[:ERROR_BODY_LIMIT],
            ) from exc
        except anthropic.APIConnectionError as exc:
            # APITimeoutError is a subclass
            raise CompletionError(f"Anthropic connection error: {type(exc).__name__}") from exc

        text = ""
        for block in response.content:
            if block.type == "text":
                text += block.text
        return text.strip()


def build_completion_client(settings: Settings, http_client: httpx.AsyncClient) -> CompletionClient:
    if settings.ai_provider == "anthropic":
        return AnthropicClient(anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key))
    return OpenRouterClient(http_client, settings.openrouter_api_key, settings.openrouter_base_url)


def models_for(settings: Settings) -> tuple[str, str]:
    """Return (search_model, scoring_model) for the configured provider."""
    if settings.ai_provider == "anthropic":
        return settings.anthropic_search_model, settings.anthropic_scoring_model
    return settings.search_model, settings.scoring_model
