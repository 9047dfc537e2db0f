"""Provider adapter interface and the streaming session wrapper."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncGenerator, Callable, ClassVar, Optional, Union

import httpx

from think_tank.ai.conversation import with_persona_reminder
from think_tank.ai.normalizer import RawOutput, normalize
from think_tank.ai.schema import StructuredResponse
from think_tank.billing.calculator import estimate_usage
from think_tank.core.errors import (
    ProviderError,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderTimeoutError,
)
from think_tank.core.models import ChatMessage, UsageStats
from think_tank.log import get_logger

logger = get_logger(__name__)

StreamItem = Union[str, UsageStats]
Translator = Callable[[BaseException], Optional[ProviderError]]


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    model: str
    messages: list[ChatMessage]
    persona_name: str
    temperature: float = 0.7
    max_tokens: int = 800
    structured: bool = True


@dataclass(frozen=True, slots=True)
class AdapterResult:
    structured: StructuredResponse
    usage: UsageStats
    usage_estimated: bool = False
    raw_text: str = field(default="", repr=False)


class ChunkStream:
    """One provider streaming session, consumed as an async iterator of text chunks.

    The adapter's generator may interleave ``UsageStats`` items with text; they
    update ``usage`` and are not yielded to the consumer. Closing the stream
    (explicitly, via ``async with``, or on error) closes the provider connection.
    """

    def __init__(self, source: AsyncGenerator[StreamItem, None], translate: Translator):
        self._source = source
        self._translate = translate
        self._closed = False
        self.usage: UsageStats | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> ChunkStream:
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        while True:
            try:
                item = await self._source.__anext__()
            except StopAsyncIteration:
                self._closed = True
                raise
            except ProviderError:
                self._closed = True
                raise
            except Exception as e:
                self._closed = True
                error = self._translate(e)
                if error is None:
                    raise
                raise error from e
            if isinstance(item, UsageStats):
                self.usage = item
                continue
            if item:
                return item

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._source.aclose()

    async def __aenter__(self) -> ChunkStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class ProviderAdapter(ABC):
    """Base class for backend adapters.

    To add a backend, subclass this, implement ``_complete``, ``_stream`` and
    ``_translate_error``, and add one entry to the registry's factory table.
    """

    provider: ClassVar[str]

    async def send(self, request: CompletionRequest) -> AdapterResult:
        """Issue one schema-constrained completion and normalize the result."""
        logger.debug(
            "provider_request",
            provider=self.provider,
            model=request.model,
            message_count=len(request.messages),
            structured=request.structured,
        )
        try:
            raw, usage = await self._complete(request)
        except ProviderError:
            raise
        except Exception as e:
            error = self._translate_error(e, request.model)
            if error is None:
                raise
            logger.error(
                "provider_error",
                provider=self.provider,
                model=request.model,
                kind=type(error).__name__,
                status_code=error.status_code,
            )
            raise error from e

        structured = normalize(raw, request.persona_name)
        return self.build_result(request, structured, raw.text or structured.content, usage)

    def stream(self, request: CompletionRequest) -> ChunkStream:
        """Open a plain-text streaming session. Nothing is sent until iteration starts."""
        logger.debug("provider_stream", provider=self.provider, model=request.model)
        return ChunkStream(
            self._stream(request),
            translate=lambda exc: self._translate_error(exc, request.model),
        )

    def build_result(
        self,
        request: CompletionRequest,
        structured: StructuredResponse,
        raw_text: str,
        usage: UsageStats | None,
    ) -> AdapterResult:
        """Attach usage, estimating it when the backend did not report any."""
        if usage is not None:
            return AdapterResult(structured=structured, usage=usage, raw_text=raw_text)
        prompt = with_persona_reminder(request.messages, request.persona_name)
        return AdapterResult(
            structured=structured,
            usage=estimate_usage(prompt, structured.content),
            usage_estimated=True,
            raw_text=raw_text,
        )

    @abstractmethod
    async def _complete(self, request: CompletionRequest) -> tuple[RawOutput, UsageStats | None]:
        """Perform the backend call. Returns raw output and reported usage (None if absent)."""
        ...

    @abstractmethod
    def _stream(self, request: CompletionRequest) -> AsyncGenerator[StreamItem, None]:
        """Async generator yielding text deltas and, when reported, UsageStats snapshots."""
        ...

    @abstractmethod
    def _translate_error(self, exc: BaseException, model: str) -> ProviderError | None:
        """Map a backend/SDK exception to the ProviderError taxonomy, or None to re-raise."""
        ...

    async def aclose(self) -> None:
        """Release the connection pool."""

    def _translate_httpx_error(self, exc: BaseException, model: str) -> ProviderError | None:
        """Shared mapping for adapters that talk to their backend through httpx directly."""
        if isinstance(exc, httpx.HTTPStatusError):
            return ProviderHTTPError(
                self.provider,
                model,
                f"HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
                body=_response_text(exc.response),
            )
        if isinstance(exc, httpx.TimeoutException):
            return ProviderTimeoutError(self.provider, model, "request timed out")
        if isinstance(exc, httpx.TransportError):
            return ProviderNetworkError(self.provider, model, str(exc) or type(exc).__name__)
        return None


def _response_text(response: httpx.Response) -> str:
    try:
        return response.text
    except httpx.ResponseNotRead:
        return ""
