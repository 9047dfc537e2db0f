"""Gemini generateContent adapter over plain httpx (response schema for structured output)."""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator

import httpx

from think_tank.ai.adapters.base import CompletionRequest, ProviderAdapter, StreamItem
from think_tank.ai.conversation import build_gemini_payload
from think_tank.ai.normalizer import RawOutput
from think_tank.ai.schema import STRUCTURED_OUTPUT_SCHEMA
from think_tank.config import GeminiConfig
from think_tank.core.errors import ProviderError
from think_tank.core.models import UsageStats
from think_tank.core.types import Provider
from think_tank.log import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _usage(metadata: dict[str, Any] | None) -> UsageStats | None:
    if not metadata:
        return None
    return UsageStats(
        prompt_tokens=metadata.get("promptTokenCount", 0),
        # Thinking tokens are billed at the output rate.
        completion_tokens=metadata.get("candidatesTokenCount", 0) + metadata.get("thoughtsTokenCount", 0),
        cached_tokens=metadata.get("cachedContentTokenCount", 0),
    )


def _candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if not part.get("thought"))


class GeminiAdapter(ProviderAdapter):
    provider = Provider.GEMINI

    def __init__(self, config: GeminiConfig, transport: httpx.AsyncBaseTransport | None = None):
        self._base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        self._api_key = config.api_key
        self._client = httpx.AsyncClient(transport=transport, timeout=httpx.Timeout(config.timeout))

    def _body(self, request: CompletionRequest, structured: bool) -> dict[str, Any]:
        system_instruction, contents = build_gemini_payload(request.messages, request.persona_name)
        generation_config: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        }
        if structured:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = STRUCTURED_OUTPUT_SCHEMA
        return {
            "systemInstruction": system_instruction,
            "contents": contents,
            "generationConfig": generation_config,
        }

    def _url(self, model: str, method: str) -> str:
        return f"{self._base_url}/models/{model}:{method}"

    @property
    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    async def _complete(self, request: CompletionRequest) -> tuple[RawOutput, UsageStats | None]:
        response = await self._client.post(
            self._url(request.model, "generateContent"),
            json=self._body(request, structured=request.structured),
            headers=self._headers,
        )
        response.raise_for_status()

        try:
            data = response.json()
        except json.JSONDecodeError:
            logger.warning("gemini_invalid_body", model=request.model, length=len(response.text))
            return RawOutput(text=response.text, provider=self.provider), None

        if not data.get("candidates"):
            logger.warning(
                "gemini_no_candidates",
                model=request.model,
                block_reason=(data.get("promptFeedback") or {}).get("blockReason"),
            )

        text = _candidate_text(data)
        # On a JSON parse failure the normalizer falls back to the same text.
        raw = RawOutput(
            structured=text if request.structured and text else None,
            text=text,
            provider=self.provider,
        )
        return raw, _usage(data.get("usageMetadata"))

    async def _stream(self, request: CompletionRequest) -> AsyncGenerator[StreamItem, None]:
        async with self._client.stream(
            "POST",
            self._url(request.model, "streamGenerateContent"),
            params={"alt": "sse"},
            json=self._body(request, structured=False),
            headers=self._headers,
        ) as response:
            if response.is_error:
                await response.aread()
                response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if not payload:
                    continue
                try:
                    data = json.loads(payload)
                except json.JSONDecodeError:
                    data = None
                if not isinstance(data, dict):
                    logger.warning(
                        "structured_output_degraded",
                        provider=self.provider,
                        model=request.model,
                        reason="unparseable stream chunk",
                    )
                    continue
                usage = _usage(data.get("usageMetadata"))
                if usage is not None:
                    yield usage
                text = _candidate_text(data)
                if text:
                    yield text

    def _translate_error(self, exc: BaseException, model: str) -> ProviderError | None:
        return self._translate_httpx_error(exc, model)

    async def aclose(self) -> None:
        await self._client.aclose()
