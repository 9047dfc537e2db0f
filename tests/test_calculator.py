import pytest

from think_tank.billing.calculator import (
    Budget,
    CostCalculator,
    calculate_cost,
    check_budget,
    estimate_tokens,
    estimate_usage,
)
from think_tank.billing.pricing import DEFAULT_PRICING, PricingEntry, PricingTable
from think_tank.core.models import ChatMessage, UsageStats
from think_tank.core.types import Role


@pytest.fixture
def calculator() -> CostCalculator:
    return CostCalculator(PricingTable({"openai:test-model": PricingEntry(2.0, 8.0, 0.5)}))


def test_cost_for_known_model(calculator):
    cost = calculator.cost("openai", "test-model", UsageStats(1_000_000, 500_000))
    assert cost == pytest.approx(2.0 + 4.0)


def test_cached_tokens_are_discounted_not_billed_twice(calculator):
    usage = UsageStats(prompt_tokens=1_000_000, completion_tokens=0, cached_tokens=400_000)
    breakdown = calculator.breakdown("openai", "test-model", usage)
    assert breakdown.input_cost == pytest.approx(2.0)
    assert breakdown.cache_discount == pytest.approx(0.4 * 1.5)
    assert breakdown.total == pytest.approx(2.0 - 0.6)


def test_zero_cached_tokens_means_zero_discount(calculator):
    breakdown = calculator.breakdown("openai", "test-model", UsageStats(1234, 567, 0))
    assert breakdown.cache_discount == 0


def test_no_cached_rate_means_no_discount():
    calculator = CostCalculator(PricingTable({"gemini:flat": PricingEntry(1.0, 1.0)}))
    assert calculator.cache_savings("gemini", "flat", UsageStats(100, 0, 100)) == 0


def test_unknown_model_uses_default_rates(calculator):
    breakdown = calculator.breakdown("acme", "mystery-1", UsageStats(1_000_000, 1_000_000))
    assert not breakdown.priced
    assert breakdown.total == pytest.approx(DEFAULT_PRICING.input + DEFAULT_PRICING.output)


def test_cached_beyond_prompt_never_goes_negative(calculator):
    assert calculator.cost("openai", "test-model", UsageStats(10, 0, 10_000)) >= 0


@pytest.mark.parametrize("model", ["test-model", "gpt-4o-mini", "claude-sonnet-4-20250514", "unknown"])
def test_cost_is_monotonic_and_non_negative(calculator, model):
    previous = -1.0
    for prompt in range(0, 5000, 250):
        for completion in (0, 100, 1000):
            cost = calculator.cost("openai", model, UsageStats(prompt, completion, prompt // 2))
            assert cost >= 0
        current = calculator.cost("openai", model, UsageStats(prompt, 100, 0))
        assert current >= previous
        previous = current

    low = calculator.cost("openai", model, UsageStats(1000, 10, 500))
    high = calculator.cost("openai", model, UsageStats(1000, 20, 500))
    assert high >= low


def test_calculate_cost_uses_builtin_table():
    cost = calculate_cost("openai", "gpt-4o-mini", UsageStats(1_000_000, 0))
    assert cost == pytest.approx(0.15)


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_estimate_usage_counts_prompt_and_completion():
    usage = estimate_usage([ChatMessage(Role.USER, "x" * 40)], "y" * 9)
    assert usage == UsageStats(prompt_tokens=10, completion_tokens=3, cached_tokens=0)


def test_estimate_from_messages_caps_output(calculator):
    messages = [ChatMessage(Role.USER, "x" * 40_000)]
    # 10k input tokens, output capped at 2000
    expected = 10_000 / 1_000_000 * 2.0 + 2000 / 1_000_000 * 8.0
    assert calculator.estimate_from_messages(messages, "openai", "test-model") == pytest.approx(expected)


def test_negative_usage_is_rejected():
    with pytest.raises(ValueError):
        UsageStats(prompt_tokens=-1)


class TestBudget:
    def test_no_budget_allows(self):
        assert check_budget(None, 100.0).allowed

    def test_daily_limit(self):
        budget = Budget(daily_limit=1.0, monthly_limit=10.0, current_daily_spend=0.9)
        verdict = check_budget(budget, 0.2)
        assert not verdict.allowed
        assert "Daily" in verdict.reason

    def test_monthly_limit(self):
        budget = Budget(daily_limit=5.0, monthly_limit=10.0, current_monthly_spend=9.95)
        verdict = check_budget(budget, 0.1)
        assert not verdict.allowed
        assert "Monthly" in verdict.reason

    def test_auto_stop_disabled(self):
        budget = Budget(daily_limit=0.0, monthly_limit=0.0, auto_stop=False)
        assert check_budget(budget, 1.0).allowed


def test_overrides_replace_builtin_rates():
    table = PricingTable({"openai:gpt-4o-mini": PricingEntry(1.0, 1.0)})
    assert table.get("openai", "gpt-4o-mini").input == 1.0
    assert "openai:gpt-4o" in table
    assert table.lookup("openai", "nope") is None
