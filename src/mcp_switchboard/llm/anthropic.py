"""
Streaming client for the Anthropic Messages API, built on the ``anthropic`` SDK.

Yields each raw stream event as a plain dict; ``StreamAccumulator`` turns those
into text and tool-use blocks.
"""
from collections.abc import AsyncIterator, Sequence
from typing import Any

import anthropic
import structlog
from anthropic import AsyncAnthropic

from ..config import AnthropicConfig
from ..exceptions import ModelAPIError
from .types import Message

logger = structlog.get_logger(__name__)

API_KEY_PREFIX = "sk-ant-"

ERROR_MISSING_API_KEY = "No API key configured. Set ANTHROPIC_API_KEY."
ERROR_INVALID_API_KEY_FORMAT = "Invalid API key format. Please check your API key."
ERROR_AUTH_FAILED = "Authentication failed. Please check your API key."
ERROR_FORBIDDEN = "Access forbidden. Your API key may not have the required permissions."
ERROR_RATE_LIMIT = "Rate limit exceeded. Please try again later."
ERROR_SERVER_UNAVAILABLE = "Claude API is temporarily unavailable. Please try again later."


def error_detail(body: object) -> str | None:
    """Pulls ``error.message`` out of an API error body, if it has one."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return None


def error_for_status(status: int, detail: str | None = None, reason: str | None = None) -> ModelAPIError:
    """Maps a failed Messages API response to a user-facing error."""
    if status == 401:
        message = ERROR_AUTH_FAILED
    elif status == 403:
        message = ERROR_FORBIDDEN
    elif status == 429:
        message = ERROR_RATE_LIMIT
    elif status in (500, 502, 503, 504, 529):
        message = ERROR_SERVER_UNAVAILABLE
    else:
        message = f"API Error: {status} {reason or ''}".rstrip()
        if detail:
            message = f"{message}: {detail}"
    return ModelAPIError(message, status=status)


class AnthropicClient:
    """
    Wraps ``AsyncAnthropic``. An SDK client can be passed in (and is then left open
    on ``close``); otherwise one is created on first use from ``AnthropicConfig``.
    """

    def __init__(
        self,
        api_key: str | None,
        config: AnthropicConfig | None = None,
        sdk_client: AsyncAnthropic | None = None,
    ):
        self.api_key = (api_key or "").strip()
        self.config = config or AnthropicConfig()
        self._client = sdk_client
        self._owns_client = sdk_client is None

    def _check_api_key(self) -> None:
        if not self.api_key:
            raise ModelAPIError(ERROR_MISSING_API_KEY)
        if not self.api_key.startswith(API_KEY_PREFIX):
            raise ModelAPIError(ERROR_INVALID_API_KEY_FORMAT)

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                base_url=self.config.base_url,
                timeout=self.config.request_timeout_seconds,
                max_retries=self.config.max_retries,
                default_headers={"anthropic-version": self.config.api_version},
            )
            self._owns_client = True
        return self._client

    async def stream(
        self,
        *,
        model: str,
        messages: Sequence[Message],
        max_tokens: int,
        tools: Sequence[dict[str, Any]] | None = None,
        system: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        self._check_api_key()
        request: dict[str, Any] = {
            "model": model,
            "messages": [message.to_api() for message in messages],
            "max_tokens": max_tokens,
        }
        if tools:
            request["tools"] = list(tools)
        if system:
            request["system"] = system
        if temperature is not None:
            request["temperature"] = temperature

        log = logger.bind(model=model, messages=len(messages), tools=len(tools or ()))
        try:
            stream = await self._get_client().messages.create(**request, stream=True)
            log.debug("Model stream opened.")
            async with stream:
                async for event in stream:
                    yield event.model_dump(mode="json", exclude_unset=True)
        except anthropic.APIStatusError as e:
            detail = error_detail(e.body)
            if e.status_code == 200:
                # An error event inside an otherwise successful stream.
                log.error("Model stream reported an error.", detail=detail)
                raise ModelAPIError(detail or str(e), status=e.status_code) from e
            log.error("Model API error.", status=e.status_code, detail=detail)
            raise error_for_status(e.status_code, detail, e.response.reason_phrase) from e
        except anthropic.APITimeoutError as e:
            raise ModelAPIError(f"Model API did not respond within {self.config.request_timeout_seconds}s") from e
        except anthropic.APIConnectionError as e:
            log.error("Model API request failed.", error=str(e))
            raise ModelAPIError(f"Model API request failed: {e}") from e

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
        self._client = None

    async def __aenter__(self) -> "AnthropicClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
