"""Cache hit/miss and savings aggregation over stored cost records.

A record counts as a cache hit when any of its prompt tokens were served
from the provider's cache, and as a miss otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from think_tank.billing.calculator import CostCalculator
from think_tank.core.errors import RequestValidationError
from think_tank.core.models import CostRecord
from think_tank.core.types import GroupBy


class CostRecordSource(Protocol):
    async def query(
        self,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[CostRecord]: ...


class DateRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class MetricsQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")
    group_by: GroupBy = Field(default=GroupBy.DAY, alias="groupBy")


@dataclass(slots=True)
class _Tally:
    hits: int = 0
    misses: int = 0
    saved_cost: float = 0.0
    cached_tokens: int = 0

    def add(self, hit: bool, saved: float, cached: int = 0) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1
        self.saved_cost += saved
        self.cached_tokens += cached

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": self.hit_rate,
            "savedCost": self.saved_cost,
            "cachedTokens": self.cached_tokens,
        }


@dataclass(slots=True)
class MetricsSummary:
    total: _Tally = field(default_factory=_Tally)
    conversations: set[str] = field(default_factory=set)
    periods: dict[str, _Tally] = field(default_factory=dict)
    providers: dict[str, _Tally] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "totalHits": self.total.hits,
            "totalMisses": self.total.misses,
            "overallHitRate": self.total.hit_rate,
            "totalSavedCost": self.total.saved_cost,
            "totalConversations": len(self.conversations),
        }
        if self.periods:
            result["periodMetrics"] = [
                {"period": key, **self.periods[key].to_dict()} for key in sorted(self.periods)
            ]
        if self.providers:
            result["providerBreakdown"] = [
                {"provider": key, **tally.to_dict()} for key, tally in sorted(self.providers.items())
            ]
        return result


def period_key(moment: datetime, group_by: GroupBy) -> str:
    """Bucket label for ``moment`` in UTC. Weeks start on Sunday."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    match group_by:
        case GroupBy.HOUR:
            return moment.strftime("%Y-%m-%dT%H:00")
        case GroupBy.WEEK:
            week_start = moment - timedelta(days=(moment.weekday() + 1) % 7)
            return week_start.strftime("%Y-%m-%d")
        case GroupBy.MONTH:
            return moment.strftime("%Y-%m")
        case _:
            return moment.strftime("%Y-%m-%d")


def aggregate(
    records: Iterable[CostRecord],
    calculator: CostCalculator,
    group_by: GroupBy | None = GroupBy.DAY,
) -> MetricsSummary:
    summary = MetricsSummary()
    for record in records:
        cached = record.usage.cached_tokens
        hit = cached > 0
        saved = calculator.cache_savings(record.provider, record.model, record.usage)
        summary.total.add(hit, saved, cached)
        if record.conversation_id:
            summary.conversations.add(record.conversation_id)
        if group_by is not None:
            key = period_key(record.created_at, group_by)
            summary.periods.setdefault(key, _Tally()).add(hit, saved, cached)
        summary.providers.setdefault(record.provider, _Tally()).add(hit, saved, cached)
    return summary


@dataclass(slots=True)
class ConversationCost:
    """Spend of one conversation, split by persona and provider."""

    conversation_id: str
    total: float = 0.0
    input_cost: float = 0.0
    output_cost: float = 0.0
    cache_savings: float = 0.0
    messages: int = 0
    by_persona: dict[str, float] = field(default_factory=dict)
    by_provider: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "total": self.total,
            "inputCost": self.input_cost,
            "outputCost": self.output_cost,
            "cacheSavings": self.cache_savings,
            "messages": self.messages,
            "byPersona": dict(sorted(self.by_persona.items())),
            "byProvider": dict(sorted(self.by_provider.items())),
        }


def cost_breakdown(
    conversation_id: str,
    records: Iterable[CostRecord],
    calculator: CostCalculator,
) -> ConversationCost:
    """Sum stored costs. Input and output parts are re-priced from the record's usage."""
    result = ConversationCost(conversation_id=conversation_id)
    for record in records:
        parts = calculator.breakdown(record.provider, record.model, record.usage)
        result.total += record.total_cost
        result.input_cost += parts.input_cost
        result.output_cost += parts.output_cost
        result.cache_savings += parts.cache_discount
        result.messages += 1
        provider = str(record.provider)
        result.by_provider[provider] = result.by_provider.get(provider, 0.0) + record.total_cost
        if record.persona_id:
            result.by_persona[record.persona_id] = result.by_persona.get(record.persona_id, 0.0) + record.total_cost
    return result


class CacheMetricsService:
    def __init__(self, source: CostRecordSource, calculator: CostCalculator):
        self._source = source
        self._calculator = calculator

    async def summarize(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            query = MetricsQuery.model_validate(payload)
        except ValidationError as e:
            raise RequestValidationError("Invalid metrics request", e.errors(include_url=False)) from e

        date_range = query.date_range or DateRange()
        records = await self._source.query(
            user_id=query.user_id,
            conversation_id=query.conversation_id,
            start=date_range.start,
            end=date_range.end,
        )
        return aggregate(records, self._calculator, query.group_by).to_dict()

    async def cost_breakdown(self, conversation_id: str) -> dict[str, Any]:
        records = await self._source.query(conversation_id=conversation_id)
        return cost_breakdown(conversation_id, records, self._calculator).to_dict()
