"""Static per-model pricing table. All rates are USD per one million tokens."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

TOKENS_PER_UNIT = 1_000_000


@dataclass(frozen=True, slots=True)
class PricingEntry:
    input: float
    output: float
    cached_input: Optional[float] = None


DEFAULT_PRICING = PricingEntry(input=1.0, output=2.0)

BUILTIN_PRICING: Mapping[str, PricingEntry] = MappingProxyType({
    # OpenAI
    "openai:gpt-5": PricingEntry(1.25, 10.0, 0.125),
    "openai:gpt-5-mini": PricingEntry(0.25, 2.0, 0.025),
    "openai:gpt-5-nano": PricingEntry(0.05, 0.4, 0.005),
    "openai:gpt-4.1": PricingEntry(2.0, 8.0, 0.5),
    "openai:gpt-4.1-mini": PricingEntry(0.4, 1.6, 0.1),
    "openai:gpt-4.1-nano": PricingEntry(0.1, 0.4, 0.025),
    "openai:gpt-4o": PricingEntry(2.5, 10.0, 1.25),
    "openai:gpt-4o-mini": PricingEntry(0.15, 0.6, 0.075),
    "openai:o4-mini": PricingEntry(1.1, 4.4, 0.275),
    "openai:o3": PricingEntry(2.0, 8.0, 0.5),
    "openai:gpt-4-turbo-preview": PricingEntry(10.0, 30.0),
    "openai:gpt-4": PricingEntry(30.0, 60.0),
    "openai:gpt-3.5-turbo": PricingEntry(0.5, 1.5),
    # Anthropic
    "anthropic:claude-opus-4-1-20250805": PricingEntry(15.0, 75.0, 1.5),
    "anthropic:claude-opus-4-20250514": PricingEntry(15.0, 75.0, 1.5),
    "anthropic:claude-sonnet-4-20250514": PricingEntry(3.0, 15.0, 0.3),
    "anthropic:claude-3-7-sonnet-20250219": PricingEntry(3.0, 15.0, 0.3),
    "anthropic:claude-3-5-haiku-20241022": PricingEntry(0.8, 4.0, 0.08),
    "anthropic:claude-3-opus-20240229": PricingEntry(15.0, 75.0, 1.5),
    "anthropic:claude-3-haiku-20240307": PricingEntry(0.25, 1.25, 0.03),
    # Gemini
    "gemini:gemini-2.5-pro": PricingEntry(1.25, 10.0, 0.31),
    "gemini:gemini-2.5-flash": PricingEntry(0.3, 2.5, 0.075),
    "gemini:gemini-2.5-flash-lite": PricingEntry(0.1, 0.4, 0.025),
    "gemini:gemini-1.5-pro": PricingEntry(3.5, 10.5),
    "gemini:gemini-1.5-flash": PricingEntry(0.35, 1.05),
})


def pricing_key(provider: str, model: str) -> str:
    return f"{provider}:{model}"


class PricingTable:
    """Read-only lookup of ``provider:model`` rates with a default fallback."""

    def __init__(
        self,
        overrides: Mapping[str, PricingEntry] | None = None,
        default: PricingEntry = DEFAULT_PRICING,
    ):
        merged = dict(BUILTIN_PRICING)
        if overrides:
            merged.update(overrides)
        self._entries: Mapping[str, PricingEntry] = MappingProxyType(merged)
        self._default = default

    @property
    def default(self) -> PricingEntry:
        return self._default

    def lookup(self, provider: str, model: str) -> PricingEntry | None:
        """Return the exact entry, or None when the model is not priced."""
        return self._entries.get(pricing_key(provider, model))

    def get(self, provider: str, model: str) -> PricingEntry:
        """Return the entry for the model, falling back to the default rates."""
        return self.lookup(provider, model) or self._default

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def items(self):
        return self._entries.items()
