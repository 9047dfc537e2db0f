"""Anthropic messages adapter (forced tool use for structured output)."""

from __future__ import annotations

from typing import Any, AsyncGenerator

import anthropic
import httpx

from think_tank.ai.adapters.base import CompletionRequest, ProviderAdapter, StreamItem
from think_tank.ai.conversation import build_anthropic_payload
from think_tank.ai.normalizer import RawOutput
from think_tank.ai.schema import RESPOND_TOOL_DESCRIPTION, RESPOND_TOOL_NAME, STRUCTURED_OUTPUT_SCHEMA
from think_tank.config import AnthropicConfig
from think_tank.core.errors import (
    ProviderError,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderTimeoutError,
)
from think_tank.core.models import UsageStats
from think_tank.core.types import Provider

RESPOND_TOOL = {
    "name": RESPOND_TOOL_NAME,
    "description": RESPOND_TOOL_DESCRIPTION,
    "input_schema": STRUCTURED_OUTPUT_SCHEMA,
}


def _usage(usage: Any, output_tokens: int | None = None) -> UsageStats:
    """Anthropic reports cache reads and writes outside ``input_tokens``; fold them back in."""
    cache_read = getattr(usage, "cache_read_input_tokens", None) or 0
    cache_write = getattr(usage, "cache_creation_input_tokens", None) or 0
    return UsageStats(
        prompt_tokens=(usage.input_tokens or 0) + cache_read + cache_write,
        completion_tokens=output_tokens if output_tokens is not None else (usage.output_tokens or 0),
        cached_tokens=cache_read,
    )


class AnthropicAdapter(ProviderAdapter):
    provider = Provider.ANTHROPIC

    def __init__(self, config: AnthropicConfig, transport: httpx.AsyncBaseTransport | None = None):
        http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            http_client=http_client,
        )
        self._cache_min_chars = config.cache_min_chars

    def _base_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        system, messages = build_anthropic_payload(
            request.messages, request.persona_name, cache_min_chars=self._cache_min_chars
        )
        return {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "system": system,
            "messages": messages,
        }

    async def _complete(self, request: CompletionRequest) -> tuple[RawOutput, UsageStats | None]:
        kwargs = self._base_kwargs(request)
        if request.structured:
            kwargs["tools"] = [RESPOND_TOOL]
            kwargs["tool_choice"] = {"type": "tool", "name": RESPOND_TOOL_NAME}

        response = await self._client.messages.create(**kwargs)

        tool_input = None
        texts: list[str] = []
        for block in response.content:
            if block.type == "tool_use" and block.name == RESPOND_TOOL_NAME:
                tool_input = block.input
            elif block.type == "text":
                texts.append(block.text)

        raw = RawOutput(structured=tool_input, text="\n".join(texts), provider=self.provider)
        return raw, _usage(response.usage)

    async def _stream(self, request: CompletionRequest) -> AsyncGenerator[StreamItem, None]:
        usage: UsageStats | None = None
        async with self._client.messages.stream(**self._base_kwargs(request)) as stream:
            async for event in stream:
                if event.type == "message_start":
                    usage = _usage(event.message.usage, output_tokens=0)
                    yield usage
                elif event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield event.delta.text
                elif event.type == "message_delta" and usage is not None:
                    usage = UsageStats(
                        prompt_tokens=usage.prompt_tokens,
                        completion_tokens=event.usage.output_tokens,
                        cached_tokens=usage.cached_tokens,
                    )
                    yield usage

    def _translate_error(self, exc: BaseException, model: str) -> ProviderError | None:
        if isinstance(exc, anthropic.APITimeoutError):
            return ProviderTimeoutError(self.provider, model, "request timed out")
        if isinstance(exc, anthropic.APIStatusError):
            return ProviderHTTPError(
                self.provider,
                model,
                exc.message,
                status_code=exc.status_code,
                body=exc.response.text,
            )
        if isinstance(exc, anthropic.APIConnectionError):
            return ProviderNetworkError(self.provider, model, exc.message)
        return self._translate_httpx_error(exc, model)

    async def aclose(self) -> None:
        await self._client.close()
