from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    fallback_config_path: str = "fallback-config.json"
    fallback_persistence_enabled: bool = True
    route_state_ttl_seconds: float = 3600.0
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def log_level_name(self) -> str:
        normalized = self.log_level.strip().upper()
        return normalized or "WARNING"


@lru_cache
def get_settings() -> Settings:
    return Settings()
