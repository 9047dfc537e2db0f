"""Application wiring: storage, cache, adapters, manager and request surfaces."""

from __future__ import annotations

from think_tank.ai.adapters.registry import AdapterRegistry
from think_tank.billing.calculator import CostCalculator
from think_tank.billing.pricing import PricingEntry, PricingTable
from think_tank.config import AppConfig
from think_tank.core.cache import TTLCache
from think_tank.core.manager import ProviderManager
from think_tank.core.models import Persona
from think_tank.log import get_logger
from think_tank.services.cache_control import CacheControl
from think_tank.services.chat import ChatRequestHandler
from think_tank.services.metrics import CacheMetricsService
from think_tank.storage.cost_repo import CostRepository
from think_tank.storage.database import Database
from think_tank.storage.snapshot_repo import SnapshotRepository

logger = get_logger(__name__)


def build_pricing_table(config: AppConfig) -> PricingTable:
    overrides = {
        key: PricingEntry(input=rate.input, output=rate.output, cached_input=rate.cached_input)
        for key, rate in config.pricing.items()
    }
    return PricingTable(overrides)


class ThinkTankApp:
    """Owns every long-lived component. ``start`` before use, ``stop`` when done."""

    def __init__(self, config: AppConfig, registry: AdapterRegistry | None = None):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.cost_repo = CostRepository(self.db)
        self.snapshots = SnapshotRepository(self.db)
        self.cache = TTLCache(default_ttl=config.cache.ttl_seconds, max_entries=config.cache.max_entries)
        self.calculator = CostCalculator(build_pricing_table(config))
        self.registry = registry or AdapterRegistry.from_config(config)
        self.manager = ProviderManager(
            self.registry,
            calculator=self.calculator,
            cost_sink=self.cost_repo,
            structured_output=config.defaults.structured_output,
        )
        self.chat = ChatRequestHandler(
            self.manager,
            defaults=config.defaults,
            budget=config.budget,
            spend=self.cost_repo,
        )
        self.cache_control = CacheControl(self.cache, self.snapshots, sample_keys=config.cache.sample_keys)
        self.metrics = CacheMetricsService(self.cost_repo, self.calculator)
        self.personas = {
            p.id: Persona(
                id=p.id,
                name=p.name,
                provider=p.provider,
                model=p.model,
                temperature=p.temperature,
                max_tokens=p.max_tokens,
                system_prompt=p.system_prompt,
                expertise=tuple(p.expertise),
            )
            for p in config.personas
        }

    async def start(self) -> None:
        await self.db.initialize()
        for persona in self.personas.values():
            await self.snapshots.save_persona(persona)
        logger.info(
            "think_tank_started",
            providers=self.registry.providers(),
            personas=len(self.personas),
        )

    async def stop(self) -> None:
        await self.registry.aclose()
        await self.db.close()
        logger.info("think_tank_stopped")

    async def __aenter__(self) -> ThinkTankApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
