"""Shared fixtures: personas, a scripted provider adapter, sinks and an in-memory database."""

from __future__ import annotations

from typing import Any, AsyncGenerator

import pytest

from think_tank.ai.adapters.base import CompletionRequest, ProviderAdapter, StreamItem
from think_tank.ai.adapters.registry import AdapterRegistry
from think_tank.ai.normalizer import RawOutput
from think_tank.core.errors import ProviderError
from think_tank.core.models import ChatMessage, CostRecord, Persona, UsageStats
from think_tank.core.types import Role
from think_tank.storage.database import Database


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays canned output and records what it was asked."""

    def __init__(
        self,
        provider: str = "openai",
        raw: RawOutput | None = None,
        usage: UsageStats | None = None,
        chunks: tuple[str, ...] = (),
        stream_usage: UsageStats | None = None,
        error: Exception | None = None,
    ):
        self.provider = provider
        self.raw = raw or RawOutput(text="Fine.", provider=provider)
        self.usage = usage
        self.chunks = chunks
        self.stream_usage = stream_usage
        self.error = error
        self.requests: list[CompletionRequest] = []
        self.chunks_produced = 0
        self.stream_closed = False

    async def _complete(self, request: CompletionRequest) -> tuple[RawOutput, UsageStats | None]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.raw, self.usage

    async def _stream(self, request: CompletionRequest) -> AsyncGenerator[StreamItem, None]:
        self.requests.append(request)
        try:
            if self.stream_usage is not None:
                yield self.stream_usage
            for chunk in self.chunks:
                self.chunks_produced += 1
                yield chunk
            if self.error is not None:
                raise self.error
        finally:
            self.stream_closed = True

    def _translate_error(self, exc: BaseException, model: str) -> ProviderError | None:
        return None


class RecordingCostSink:
    def __init__(self, fail: bool = False):
        self.records: list[CostRecord] = []
        self.fail = fail

    async def record(self, record: CostRecord) -> None:
        if self.fail:
            raise RuntimeError("database is locked")
        self.records.append(record)


class ClosingSink:
    """Stream sink that loses interest after ``limit`` chunks."""

    def __init__(self, limit: int | None = None):
        self.limit = limit
        self.chunks: list[str] = []

    @property
    def closed(self) -> bool:
        return self.limit is not None and len(self.chunks) >= self.limit

    async def send(self, chunk: str) -> None:
        self.chunks.append(chunk)


@pytest.fixture
def alice() -> Persona:
    return Persona(id="p-alice", name="Alice", provider="openai", model="gpt-4o-mini")


@pytest.fixture
def bob() -> Persona:
    return Persona(id="p-bob", name="Bob", provider="anthropic", model="claude-3-5-haiku-20241022")


@pytest.fixture
def roster(alice: Persona, bob: Persona) -> list[Persona]:
    return [alice, bob]


@pytest.fixture
def history() -> list[ChatMessage]:
    return [
        ChatMessage(role=Role.SYSTEM, content="You are in a planning meeting."),
        ChatMessage(role=Role.USER, content="Summarize the plan"),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cost_sink() -> RecordingCostSink:
    return RecordingCostSink()


@pytest.fixture
def registry_with():
    def _make(*adapters: ProviderAdapter) -> AdapterRegistry:
        registry = AdapterRegistry()
        for adapter in adapters:
            registry.register(adapter)
        return registry

    return _make


@pytest.fixture
async def db() -> Any:
    database = Database(":memory:")
    await database.initialize()
    yield database
    await database.close()
