"""OpenAI chat completions adapter (function calling for structured output)."""

from __future__ import annotations

from typing import Any, AsyncGenerator

import httpx
import openai

from think_tank.ai.adapters.base import CompletionRequest, ProviderAdapter, StreamItem
from think_tank.ai.conversation import build_openai_messages
from think_tank.ai.normalizer import RawOutput
from think_tank.ai.schema import RESPOND_TOOL_DESCRIPTION, RESPOND_TOOL_NAME, STRUCTURED_OUTPUT_SCHEMA
from think_tank.config import OpenAIConfig
from think_tank.core.errors import (
    ProviderError,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderTimeoutError,
)
from think_tank.core.models import UsageStats
from think_tank.core.types import Provider

# Model families that reject max_tokens in favour of max_completion_tokens.
_COMPLETION_TOKEN_PREFIXES = ("gpt-4o", "gpt-4.1", "gpt-5", "o1", "o3", "o4")
# Model families that only accept the default temperature.
_FIXED_TEMPERATURE_PREFIXES = ("gpt-5", "o1", "o3", "o4")

RESPOND_TOOL = {
    "type": "function",
    "function": {
        "name": RESPOND_TOOL_NAME,
        "description": RESPOND_TOOL_DESCRIPTION,
        "parameters": STRUCTURED_OUTPUT_SCHEMA,
    },
}


def sampling_params(model: str, temperature: float, max_tokens: int) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if model.startswith(_COMPLETION_TOKEN_PREFIXES):
        params["max_completion_tokens"] = max_tokens
    else:
        params["max_tokens"] = max_tokens
    if not model.startswith(_FIXED_TEMPERATURE_PREFIXES):
        params["temperature"] = temperature
    return params


def _usage(usage: Any) -> UsageStats | None:
    if usage is None:
        return None
    details = getattr(usage, "prompt_tokens_details", None)
    cached = getattr(details, "cached_tokens", None) or 0
    return UsageStats(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        cached_tokens=cached,
    )


class OpenAIAdapter(ProviderAdapter):
    provider = Provider.OPENAI

    def __init__(self, config: OpenAIConfig, transport: httpx.AsyncBaseTransport | None = None):
        http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            http_client=http_client,
        )

    def _base_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        return {
            "model": request.model,
            "messages": build_openai_messages(request.messages, request.persona_name),
            **sampling_params(request.model, request.temperature, request.max_tokens),
        }

    async def _complete(self, request: CompletionRequest) -> tuple[RawOutput, UsageStats | None]:
        kwargs = self._base_kwargs(request)
        if request.structured:
            kwargs["tools"] = [RESPOND_TOOL]
            kwargs["tool_choice"] = {"type": "function", "function": {"name": RESPOND_TOOL_NAME}}

        response = await self._client.chat.completions.create(**kwargs)

        message = response.choices[0].message if response.choices else None
        arguments = None
        for call in (message.tool_calls or []) if message else []:
            function = getattr(call, "function", None)
            if function is not None and function.name == RESPOND_TOOL_NAME:
                arguments = function.arguments
                break

        raw = RawOutput(
            structured=arguments,
            text=message.content if message else None,
            provider=self.provider,
        )
        return raw, _usage(response.usage)

    async def _stream(self, request: CompletionRequest) -> AsyncGenerator[StreamItem, None]:
        kwargs = self._base_kwargs(request)
        stream = await self._client.chat.completions.create(
            **kwargs,
            stream=True,
            stream_options={"include_usage": True},
        )
        try:
            async for chunk in stream:
                usage = _usage(getattr(chunk, "usage", None))
                if usage is not None:
                    yield usage
                for choice in chunk.choices:
                    if choice.delta and choice.delta.content:
                        yield choice.delta.content
        finally:
            await stream.close()

    def _translate_error(self, exc: BaseException, model: str) -> ProviderError | None:
        # APITimeoutError subclasses APIConnectionError, so it is checked first.
        if isinstance(exc, openai.APITimeoutError):
            return ProviderTimeoutError(self.provider, model, "request timed out")
        if isinstance(exc, openai.APIStatusError):
            return ProviderHTTPError(
                self.provider,
                model,
                exc.message,
                status_code=exc.status_code,
                body=exc.response.text,
            )
        if isinstance(exc, openai.APIConnectionError):
            return ProviderNetworkError(self.provider, model, exc.message)
        return self._translate_httpx_error(exc, model)

    async def aclose(self) -> None:
        await self._client.close()
