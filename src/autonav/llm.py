"""Model clients for the LLM chat endpoint.

The chat adapter talks to the model through the ModelClient interface:
one call takes the system prompt, message history, tool list and token
budget, and returns content blocks plus a stop reason. Clients:

- http: direct httpx calls to the messages endpoint (default)
- anthropic: the Anthropic SDK, installed with `pip install autonav[anthropic]`

Example:
    client = create_model_client("http", api_key="sk-ant-...")
    response = await client.create_message(
        model="claude-sonnet-4-20250514",
        system="You are a navigator.",
        messages=[{"role": "user", "content": "Hello"}],
        tools=[],
        max_tokens=1024,
    )
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Annotated, Any, Literal

import httpx
from pydantic import BaseModel, Field

from autonav.constants import (
    ANTHROPIC_API_KEY_ENV_VAR,
    ANTHROPIC_API_URL,
    ANTHROPIC_API_VERSION,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    STOP_REASON_TOOL_USE,
)
from autonav.exceptions import ModelAPIError, ModelAuthError, QueryError, QueryTimeoutError
from autonav.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# RESPONSE MODELS
# =============================================================================


class TextBlock(BaseModel):
    """Plain text produced by the model."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    """A tool call requested by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


ContentBlock = Annotated[TextBlock | ToolUseBlock, Field(discriminator="type")]


class ModelResponse(BaseModel):
    """One model reply: ordered content blocks and why generation stopped."""

    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> ModelResponse:
        """Build from a messages API payload, skipping block types we don't use."""
        blocks = [
            block
            for block in data.get("content") or []
            if isinstance(block, Mapping) and block.get("type") in ("text", "tool_use")
        ]
        return cls.model_validate({"content": blocks, "stop_reason": data.get("stop_reason")})

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def first_text(self) -> str | None:
        for block in self.content:
            if isinstance(block, TextBlock):
                return block.text
        return None

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == STOP_REASON_TOOL_USE

    def to_message(self) -> dict[str, Any]:
        """The assistant message to append to the history."""
        return {
            "role": "assistant",
            "content": [block.model_dump() for block in self.content],
        }


# =============================================================================
# CLIENTS
# =============================================================================


class ModelClient(ABC):
    """Abstract base class for model clients."""

    @abstractmethod
    async def create_message(
        self,
        *,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        max_tokens: int,
        timeout: float | None = None,
    ) -> ModelResponse:
        """Send one request to the chat endpoint.

        Args:
            model: Model identifier.
            system: System prompt.
            messages: Conversation history in messages API format.
            tools: Tool definitions.
            max_tokens: Maximum tokens in the reply.
            timeout: Request timeout in seconds.

        Returns:
            The parsed reply.

        Raises:
            ModelAuthError: Credential missing or rejected.
            ModelAPIError: Non-2xx response.
            QueryTimeoutError: The request timed out.
        """
        ...

    async def close(self) -> None:
        """Release any held connections."""


class HttpModelClient(ModelClient):
    """Messages API client over httpx."""

    def __init__(self, api_key: str, *, base_url: str = ANTHROPIC_API_URL) -> None:
        if not api_key:
            raise ModelAuthError("API key required for the model client")
        self._api_key = api_key
        self._base_url = base_url
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": ANTHROPIC_API_VERSION,
                    "content-type": "application/json",
                },
                timeout=DEFAULT_HTTP_TIMEOUT_SECONDS,
            )
        return self._client

    async def create_message(
        self,
        *,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        max_tokens: int,
        timeout: float | None = None,
    ) -> ModelResponse:
        payload: dict[str, Any] = {
            "model": model,
            "system": system,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools

        client = self._get_client()
        try:
            response = await client.post(
                "/v1/messages",
                json=payload,
                timeout=timeout if timeout is not None else DEFAULT_HTTP_TIMEOUT_SECONDS,
            )
        except httpx.TimeoutException as e:
            raise QueryTimeoutError("Model request timed out", {"timeout": timeout}) from e
        except httpx.RequestError as e:
            raise QueryError(f"Model request failed: {e}") from e

        if response.status_code in (401, 403):
            raise ModelAuthError(
                "Model endpoint rejected the credential",
                {"status_code": response.status_code, "body": response.text},
            )
        if not response.is_success:
            raise ModelAPIError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ModelAPIError(response.status_code, response.text) from e

        parsed = ModelResponse.from_api(data)
        logger.debug(
            "Model response",
            extra={"stop_reason": parsed.stop_reason, "blocks": len(parsed.content)},
        )
        return parsed

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class AnthropicModelClient(ModelClient):
    """Messages API client over the Anthropic SDK."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ModelAuthError("API key required for the model client")
        self._api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Get or create the Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ImportError(
                    "anthropic package not installed. Install with: pip install autonav[anthropic]"
                ) from e
            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def create_message(
        self,
        *,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        max_tokens: int,
        timeout: float | None = None,
    ) -> ModelResponse:
        import anthropic

        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": model,
            "system": system,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise QueryTimeoutError("Model request timed out", {"timeout": timeout}) from e
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise ModelAuthError("Model endpoint rejected the credential") from e
        except anthropic.APIStatusError as e:
            raise ModelAPIError(e.status_code, str(e.body if e.body is not None else e.message)) from e
        except anthropic.APIConnectionError as e:
            raise QueryError(f"Model request failed: {e}") from e

        return ModelResponse.from_api(response.model_dump())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def create_model_client(
    provider: str = "http",
    api_key: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> ModelClient:
    """Factory function to create a model client.

    Args:
        provider: "http" or "anthropic".
        api_key: API key; falls back to ANTHROPIC_API_KEY in `env`.
        env: Environment for the fallback (defaults to os.environ).

    Returns:
        A ModelClient instance.

    Raises:
        ModelAuthError: If no API key is available.
        ValueError: If the provider is not supported.
    """
    environ = os.environ if env is None else env
    key = api_key or environ.get(ANTHROPIC_API_KEY_ENV_VAR)
    if not key:
        raise ModelAuthError(f"{ANTHROPIC_API_KEY_ENV_VAR} is not set")

    if provider == "http":
        return HttpModelClient(key)
    elif provider == "anthropic":
        return AnthropicModelClient(key)
    else:
        raise ValueError(f"Unsupported model provider: {provider}")
