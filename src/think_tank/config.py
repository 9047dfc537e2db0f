"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 0  # retry policy belongs to the caller


class OpenAIConfig(ProviderConfig):
    pass


class AnthropicConfig(ProviderConfig):
    cache_min_chars: int = 500  # shorter blocks are not worth a cache_control marker


class GeminiConfig(ProviderConfig):
    base_url: Optional[str] = "https://generativelanguage.googleapis.com/v1beta"


class DefaultsConfig(BaseModel):
    temperature: float = 0.7
    max_tokens: int = 800
    structured_output: bool = True


class CacheConfig(BaseModel):
    ttl_seconds: float = 15 * 60
    max_entries: int = 1000
    sample_keys: int = 100


class StorageConfig(BaseModel):
    db_path: str = "./data/think_tank.db"


class BudgetConfig(BaseModel):
    daily_limit: float
    monthly_limit: float
    auto_stop: bool = True


class PricingOverride(BaseModel):
    input: float
    output: float
    cached_input: Optional[float] = None


class PersonaConfig(BaseModel):
    id: str
    name: str
    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 800
    system_prompt: str = ""
    expertise: list[str] = Field(default_factory=list)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False  # one JSON object per line instead of console rendering
    data_dir: str = "./data"
    openai: Optional[OpenAIConfig] = None
    anthropic: Optional[AnthropicConfig] = None
    gemini: Optional[GeminiConfig] = None
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    budget: Optional[BudgetConfig] = None  # applied per user
    pricing: dict[str, PricingOverride] = Field(default_factory=dict)  # "provider:model" -> rates
    personas: list[PersonaConfig] = Field(default_factory=list)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
