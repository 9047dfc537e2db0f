"""Token cost calculation with cache-aware input pricing.

Cached tokens are a subset of ``prompt_tokens``. They are billed once at the
full input rate as part of the prompt, and the difference between the full and
the cached rate is then subtracted as a discount. Nothing is rounded here;
rounding belongs to display code.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from think_tank.billing.pricing import TOKENS_PER_UNIT, PricingTable, pricing_key
from think_tank.core.models import ChatMessage, UsageStats
from think_tank.log import get_logger

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4
MAX_ESTIMATED_OUTPUT_TOKENS = 2000


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    input_cost: float
    output_cost: float
    cache_discount: float
    priced: bool  # False when the default rates were used

    @property
    def total(self) -> float:
        return self.input_cost + self.output_cost - self.cache_discount


@dataclass(frozen=True, slots=True)
class Budget:
    daily_limit: float
    monthly_limit: float
    current_daily_spend: float = 0.0
    current_monthly_spend: float = 0.0
    auto_stop: bool = True


@dataclass(frozen=True, slots=True)
class BudgetCheck:
    allowed: bool
    reason: Optional[str] = None


class CostCalculator:
    """Pure cost functions over a read-only pricing table."""

    def __init__(self, table: PricingTable | None = None):
        self.table = table or PricingTable()

    def breakdown(self, provider: str, model: str, usage: UsageStats) -> CostBreakdown:
        entry = self.table.lookup(provider, model)
        priced = entry is not None
        if entry is None:
            logger.warning("pricing_missing", key=pricing_key(provider, model))
            entry = self.table.default

        input_cost = usage.prompt_tokens / TOKENS_PER_UNIT * entry.input
        output_cost = usage.completion_tokens / TOKENS_PER_UNIT * entry.output
        return CostBreakdown(
            input_cost=input_cost,
            output_cost=output_cost,
            cache_discount=self._discount(entry.input, entry.cached_input, usage),
            priced=priced,
        )

    def cost(self, provider: str, model: str, usage: UsageStats) -> float:
        return self.breakdown(provider, model, usage).total

    def cache_savings(self, provider: str, model: str, usage: UsageStats) -> float:
        """Amount saved by cached prompt tokens compared to the full input rate."""
        entry = self.table.get(provider, model)
        return self._discount(entry.input, entry.cached_input, usage)

    @staticmethod
    def _discount(input_rate: float, cached_rate: Optional[float], usage: UsageStats) -> float:
        if usage.cached_tokens <= 0 or cached_rate is None:
            return 0.0
        # A backend reporting more cached than prompt tokens must not push the cost below zero.
        cached = min(usage.cached_tokens, usage.prompt_tokens)
        return cached / TOKENS_PER_UNIT * max(input_rate - cached_rate, 0.0)

    def estimate_from_messages(self, messages: Iterable[ChatMessage], provider: str, model: str) -> float:
        """Pre-flight estimate: output assumed to be half the input, capped."""
        input_tokens = sum(estimate_tokens(m.content) for m in messages)
        output_tokens = min(math.ceil(input_tokens * 0.5), MAX_ESTIMATED_OUTPUT_TOKENS)
        return self.cost(provider, model, UsageStats(input_tokens, output_tokens))


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_usage(messages: Iterable[ChatMessage], completion: str) -> UsageStats:
    return UsageStats(
        prompt_tokens=sum(estimate_tokens(m.content) for m in messages),
        completion_tokens=estimate_tokens(completion),
    )


def calculate_cost(provider: str, model: str, usage: UsageStats, table: PricingTable | None = None) -> float:
    return CostCalculator(table).cost(provider, model, usage)


def check_budget(budget: Optional[Budget], estimated_cost: float) -> BudgetCheck:
    """Decide whether a call of ``estimated_cost`` fits in the remaining budget."""
    if budget is None or not budget.auto_stop:
        return BudgetCheck(allowed=True)
    if budget.current_daily_spend + estimated_cost > budget.daily_limit:
        return BudgetCheck(False, f"Daily budget limit of ${budget.daily_limit} would be exceeded")
    if budget.current_monthly_spend + estimated_cost > budget.monthly_limit:
        return BudgetCheck(False, f"Monthly budget limit of ${budget.monthly_limit} would be exceeded")
    return BudgetCheck(allowed=True)
