"""Provider manager: one persona turn from history to structured response and cost."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol, Sequence

from think_tank.ai.adapters.base import AdapterResult, CompletionRequest, ProviderAdapter
from think_tank.ai.adapters.registry import AdapterRegistry
from think_tank.ai.normalizer import RawOutput, normalize
from think_tank.ai.schema import StructuredResponse
from think_tank.billing.calculator import CostCalculator
from think_tank.core.errors import RequestValidationError, StreamCancelledError
from think_tank.core.models import ChatMessage, CostRecord, Persona, UsageStats
from think_tank.core.types import Role
from think_tank.log import get_logger

logger = get_logger(__name__)


class CostSink(Protocol):
    async def record(self, record: CostRecord) -> Any: ...


class StreamSink(Protocol):
    """Receives text chunks in arrival order.

    ``closed`` turns true when the consumer is no longer interested; the
    manager then stops forwarding and closes the provider connection.
    """

    @property
    def closed(self) -> bool: ...

    async def send(self, chunk: str) -> None: ...


_DONE = object()


class QueueSink:
    """Channel between a running ``respond`` call and an async-iterating consumer.

    The queue is bounded, so a producer that runs ahead of its consumer waits
    in ``send``. The producer side ends the channel with ``finish()``
    (optionally carrying the error that ended it); the consumer side signals
    lost interest with ``close()``, which also releases a waiting producer.
    """

    def __init__(self, maxsize: int = 8) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._finished = False
        self._error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    async def send(self, chunk: str) -> None:
        if not self._closed:
            await self._queue.put(chunk)

    def finish(self, error: BaseException | None = None) -> None:
        if self._finished:
            return
        self._finished = True
        self._error = error
        # A full queue is drained by the consumer, which then sees _finished.
        if not self._queue.full():
            self._queue.put_nowait(_DONE)

    def close(self) -> None:
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            if self._finished and self._queue.empty():
                break
            item = await self._queue.get()
            if item is _DONE:
                break
            yield item
        if self._error is not None:
            raise self._error


@dataclass(frozen=True, slots=True)
class ResponseResult:
    structured: StructuredResponse
    usage: UsageStats
    cost: float
    provider: str
    model: str
    usage_estimated: bool = False
    record: Optional[CostRecord] = None

    @property
    def content(self) -> str:
        return self.structured.content


class ProviderManager:
    """Selects the adapter for a persona, runs the call and accounts for it.

    Holds no per-call state; concurrent ``respond`` calls only share the
    adapters' connection pools and the read-only pricing table.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        calculator: CostCalculator | None = None,
        cost_sink: CostSink | None = None,
        structured_output: bool = True,
    ):
        self._registry = registry
        self._calculator = calculator or CostCalculator()
        self._cost_sink = cost_sink
        self._structured_output = structured_output

    @property
    def calculator(self) -> CostCalculator:
        return self._calculator

    async def respond(
        self,
        persona: Persona,
        history: Sequence[ChatMessage],
        stream_sink: StreamSink | None = None,
        *,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        structured: Optional[bool] = None,
    ) -> ResponseResult:
        """Produce the persona's next message.

        Raises RequestValidationError, UnsupportedProviderError, ProviderError
        subclasses, or StreamCancelledError when the sink closes early.
        """
        self._validate(persona, history)
        adapter = self._registry.get(persona.provider)
        request = CompletionRequest(
            model=persona.model,
            messages=self._build_messages(persona, history),
            persona_name=persona.name,
            temperature=persona.temperature,
            max_tokens=persona.max_tokens,
            structured=self._structured_output if structured is None else structured,
        )

        if stream_sink is None:
            result = await adapter.send(request)
        else:
            result = await self._stream(adapter, request, stream_sink, persona, user_id, conversation_id)

        cost = self._calculator.cost(persona.provider, persona.model, result.usage)
        record = CostRecord(
            provider=persona.provider,
            model=persona.model,
            usage=result.usage,
            total_cost=cost,
            user_id=user_id,
            conversation_id=conversation_id,
            persona_id=persona.id,
            estimated=result.usage_estimated,
        )
        await self._persist(record)

        logger.info(
            "response_completed",
            provider=persona.provider,
            model=persona.model,
            persona=persona.name,
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            cached_tokens=result.usage.cached_tokens,
            estimated=result.usage_estimated,
            cost=cost,
        )
        return ResponseResult(
            structured=result.structured,
            usage=result.usage,
            cost=cost,
            provider=persona.provider,
            model=persona.model,
            usage_estimated=result.usage_estimated,
            record=record,
        )

    def open_stream(
        self,
        persona: Persona,
        history: Sequence[ChatMessage],
        **kwargs: Any,
    ) -> tuple[QueueSink, asyncio.Task[ResponseResult]]:
        """Start ``respond`` in a task and return the chunk channel alongside it.

        The channel ends when the task does, re-raising the task's error to
        the consumer. Closing the channel cancels the stream.
        """
        sink = QueueSink()
        task = asyncio.create_task(self.respond(persona, history, sink, **kwargs))

        def _done(t: asyncio.Task) -> None:
            if t.cancelled():
                sink.finish(asyncio.CancelledError())
            else:
                sink.finish(t.exception())

        task.add_done_callback(_done)
        return sink, task

    async def _stream(
        self,
        adapter: ProviderAdapter,
        request: CompletionRequest,
        sink: StreamSink,
        persona: Persona,
        user_id: Optional[str],
        conversation_id: Optional[str],
    ) -> AdapterResult:
        chunks: list[str] = []
        cancelled = False
        stream = adapter.stream(request)
        async with stream:
            async for chunk in stream:
                if sink.closed:
                    cancelled = True
                    break
                await sink.send(chunk)
                chunks.append(chunk)

        if cancelled:
            partial = None
            if stream.usage is not None:
                partial = CostRecord(
                    provider=persona.provider,
                    model=persona.model,
                    usage=stream.usage,
                    total_cost=self._calculator.cost(persona.provider, persona.model, stream.usage),
                    user_id=user_id,
                    conversation_id=conversation_id,
                    persona_id=persona.id,
                    partial=True,
                )
                await self._persist(partial)
            logger.info(
                "stream_cancelled",
                provider=persona.provider,
                model=persona.model,
                chunks_delivered=len(chunks),
                partial_record=partial is not None,
            )
            raise StreamCancelledError(len(chunks), partial)

        text = "".join(chunks)
        structured = normalize(RawOutput(text=text, provider=adapter.provider), persona.name)
        return adapter.build_result(request, structured, text, stream.usage)

    async def _persist(self, record: CostRecord) -> None:
        if self._cost_sink is None:
            return
        try:
            await self._cost_sink.record(record)
        except Exception as e:
            logger.error(
                "cost_record_failed",
                provider=record.provider,
                model=record.model,
                conversation_id=record.conversation_id,
                error=str(e),
            )

    @staticmethod
    def _validate(persona: Persona, history: Sequence[ChatMessage]) -> None:
        errors = []
        if not persona.name or not persona.name.strip():
            errors.append({"field": "personaName", "message": "must not be empty"})
        if not history:
            errors.append({"field": "messages", "message": "must not be empty"})
        if errors:
            raise RequestValidationError("Invalid request", errors)

    @staticmethod
    def _build_messages(persona: Persona, history: Sequence[ChatMessage]) -> list[ChatMessage]:
        if not persona.system_prompt:
            return list(history)
        return [ChatMessage(role=Role.SYSTEM, content=persona.system_prompt), *history]
