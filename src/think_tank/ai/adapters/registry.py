"""Lookup table from provider name to adapter instance."""

from __future__ import annotations

from typing import Callable

from think_tank.ai.adapters.base import ProviderAdapter
from think_tank.config import AppConfig
from think_tank.core.errors import UnsupportedProviderError
from think_tank.core.types import Provider
from think_tank.log import get_logger

logger = get_logger(__name__)


def _openai(config: AppConfig) -> ProviderAdapter | None:
    if config.openai is None:
        return None
    from think_tank.ai.adapters.openai_adapter import OpenAIAdapter

    return OpenAIAdapter(config.openai)


def _anthropic(config: AppConfig) -> ProviderAdapter | None:
    if config.anthropic is None:
        return None
    from think_tank.ai.adapters.anthropic_adapter import AnthropicAdapter

    return AnthropicAdapter(config.anthropic)


def _gemini(config: AppConfig) -> ProviderAdapter | None:
    if config.gemini is None:
        return None
    from think_tank.ai.adapters.gemini_adapter import GeminiAdapter

    return GeminiAdapter(config.gemini)


ADAPTER_FACTORIES: dict[str, Callable[[AppConfig], ProviderAdapter | None]] = {
    Provider.OPENAI: _openai,
    Provider.ANTHROPIC: _anthropic,
    Provider.GEMINI: _gemini,
}


class AdapterRegistry:
    """Adapters keyed by provider name. Each adapter owns one connection pool."""

    def __init__(self) -> None:
        self._adapters: dict[str, ProviderAdapter] = {}

    @classmethod
    def from_config(cls, config: AppConfig) -> AdapterRegistry:
        registry = cls()
        for name, factory in ADAPTER_FACTORIES.items():
            adapter = factory(config)
            if adapter is not None:
                registry.register(adapter)
        return registry

    def register(self, adapter: ProviderAdapter, provider: str | None = None) -> None:
        name = provider or adapter.provider
        self._adapters[name] = adapter
        logger.info("adapter_registered", provider=name)

    def get(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise UnsupportedProviderError(provider)
        return adapter

    def providers(self) -> list[str]:
        return list(self._adapters.keys())

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
