from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from glocal.errors import ConfigurationError

DEFAULT_MONITORED_SERVICES = ["google_maps", "news_api", "reddit_api", "openai"]


class CacheSettings(BaseModel):
    default_ttl: int = Field(default=3600, ge=1)
    max_ttl: int = Field(default=86400, ge=1)
    stats_sample_size: int = Field(default=10, ge=1)
    stats_top_keys: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def validate_ttl_bounds(self) -> "CacheSettings":
        if self.default_ttl > self.max_ttl:
            raise ValueError("default_ttl must not exceed max_ttl")
        return self


class BudgetSettings(BaseModel):
    monitored_services: list[str] = Field(default_factory=lambda: list(DEFAULT_MONITORED_SERVICES))
    alert_ttl: int = Field(default=3600, ge=1)
    usage_stats_days: int = Field(default=7, ge=1)
    user_usage_days: int = Field(default=30, ge=1)
    top_endpoints_limit: int = Field(default=10, ge=1)

    @field_validator("monitored_services")
    @classmethod
    def validate_services(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        # keep first occurrence order
        return list(dict.fromkeys(cleaned))


class AppConfig(BaseModel):
    cache: CacheSettings = Field(default_factory=CacheSettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GLOCAL_", extra="ignore")

    app_name: str = "Glocal Core"
    app_env: str = "dev"
    log_level: str = "INFO"
    config_path: str = "config.yaml"
    database_url: str | None = None
    redis_url: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0


def _resolve_env_token(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("os.environ/"):
        env_name = value.split("/", 1)[1]
        return os.getenv(env_name)
    if isinstance(value, dict):
        return {k: _resolve_env_token(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_token(v) for v in value]
    return value


def load_yaml_config(path: str | Path) -> AppConfig:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return AppConfig()

    try:
        data = yaml.safe_load(cfg_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Could not parse {cfg_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"{cfg_path} must contain a mapping at the top level")

    try:
        return AppConfig.model_validate(_resolve_env_token(data))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {cfg_path}: {exc}") from exc


@lru_cache
def get_settings() -> Settings:
    return Settings()
