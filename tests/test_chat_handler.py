from datetime import datetime

import httpx
import pytest

from conftest import ClosingSink, ScriptedAdapter
from think_tank.ai.adapters.gemini_adapter import GeminiAdapter
from think_tank.ai.normalizer import RawOutput
from think_tank.config import BudgetConfig, GeminiConfig
from think_tank.core.errors import ProviderHTTPError, ProviderTimeoutError, RequestValidationError
from think_tank.core.manager import ProviderManager
from think_tank.core.models import UsageStats
from think_tank.services.chat import ChatRequestHandler, parse_request


def _payload(**overrides):
    payload = {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "messages": [{"role": "user", "content": "Summarize the plan"}],
        "userId": "u1",
        "personaName": "Alice",
        "personaId": "p-alice",
        "conversationId": "c1",
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter(
        raw=RawOutput(structured={"speaker": "Alice", "content": "Done.", "reasoning": "short"}),
        usage=UsageStats(100, 10, 0),
    )


@pytest.fixture
def handler(adapter, registry_with, cost_sink) -> ChatRequestHandler:
    return ChatRequestHandler(ProviderManager(registry_with(adapter), cost_sink=cost_sink))


async def test_successful_request(handler, cost_sink):
    response = await handler.handle(_payload())

    assert response.status == 200
    body = response.body
    assert body["content"] == "Done."
    assert body["structuredResponse"] == {"speaker": "Alice", "content": "Done.", "reasoning": "short"}
    assert body["usage"] == {"promptTokens": 100, "completionTokens": 10, "totalTokens": 110, "cachedTokens": 0}
    assert body["cost"] > 0
    assert body["provider"] == "openai"
    assert body["personaId"] == "p-alice"
    assert cost_sink.records[0].user_id == "u1"


async def test_request_defaults_apply(handler, adapter):
    await handler.handle(_payload())
    request = adapter.requests[0]
    assert request.temperature == 0.7
    assert request.max_tokens == 800
    assert request.structured is True


async def test_explicit_sampling_values_are_forwarded(handler, adapter):
    await handler.handle(_payload(temperature=0.0, maxTokens=50, useStructuredOutput=False))
    request = adapter.requests[0]
    assert request.temperature == 0.0
    assert request.max_tokens == 50
    assert request.structured is False


@pytest.mark.parametrize("missing", ["provider", "model", "messages", "userId", "personaName"])
async def test_missing_required_field_is_rejected_before_provider_call(handler, adapter, missing):
    payload = _payload()
    del payload[missing]
    response = await handler.handle(payload)
    assert response.status == 400
    assert adapter.requests == []


async def test_empty_messages_rejected(handler, adapter):
    response = await handler.handle(_payload(messages=[]))
    assert response.status == 400
    assert adapter.requests == []


def test_parse_request_reports_fields():
    with pytest.raises(RequestValidationError) as exc_info:
        parse_request({"provider": "openai"})
    assert "userId" in str(exc_info.value)
    assert exc_info.value.errors


async def test_unknown_provider_maps_to_400(handler):
    response = await handler.handle(_payload(provider="mistral"))
    assert response.status == 400
    assert "mistral" in response.body["error"]


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (ProviderHTTPError("openai", "gpt-4o-mini", "bad gateway", status_code=500, body="secret"), 502),
        (ProviderTimeoutError("openai", "gpt-4o-mini", "timeout"), 504),
    ],
)
async def test_provider_errors_are_generic(registry_with, error, status):
    handler = ChatRequestHandler(ProviderManager(registry_with(ScriptedAdapter(error=error))))
    response = await handler.handle(_payload())
    assert response.status == status
    assert response.body == {"error": "response failed"}


class FixedSpend:
    def __init__(self, amount: float):
        self.amount = amount
        self.calls: list[tuple[str, datetime]] = []

    async def total_spend(self, user_id: str, since: datetime) -> float:
        self.calls.append((user_id, since))
        return self.amount


async def test_budget_exceeded_blocks_call(adapter, registry_with):
    handler = ChatRequestHandler(
        ProviderManager(registry_with(adapter)),
        budget=BudgetConfig(daily_limit=1.0, monthly_limit=10.0),
        spend=FixedSpend(1.0),
    )
    response = await handler.handle(_payload())
    assert response.status == 400
    assert "Daily budget" in response.body["error"]
    assert adapter.requests == []


async def test_budget_within_limits_allows_call(adapter, registry_with):
    spend = FixedSpend(0.0)
    handler = ChatRequestHandler(
        ProviderManager(registry_with(adapter)),
        budget=BudgetConfig(daily_limit=1.0, monthly_limit=10.0),
        spend=spend,
    )
    response = await handler.handle(_payload())
    assert response.status == 200
    assert [user for user, _ in spend.calls] == ["u1", "u1"]


async def test_streamed_gemini_request_survives_garbled_chunk(registry_with):
    body = (
        'data: {"candidates": [{"content": {"parts": [{"text": "Ship it."}]}}]}\n\n'
        'data: {"candidates": [\n\n'
    ).encode()
    gemini = GeminiAdapter(
        GeminiConfig(api_key="g"),
        transport=httpx.MockTransport(
            lambda r: httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})
        ),
    )
    sink = ClosingSink()
    handler = ChatRequestHandler(ProviderManager(registry_with(gemini)))

    response = await handler.handle(_payload(provider="gemini", model="gemini-2.5-flash", stream=True), sink)

    assert response.status == 200
    assert response.body["content"] == "Ship it."
    assert sink.chunks == ["Ship it."]
