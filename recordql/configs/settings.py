"""
Unified application settings.

Aggregates all configuration modules into a single Settings class.

Dependencies: All config modules
System role: Central configuration aggregator
"""

from functools import lru_cache

from recordql.configs.base import BaseSettings
from recordql.configs.engine import QueryEngineSettings


class Settings(BaseSettings):
    """Unified settings aggregating all config modules."""

    query_engine: QueryEngineSettings = QueryEngineSettings()


@lru_cache
def get_settings() -> Settings:
    """
    Get settings singleton.

    Environment variables are loaded once, on first call.

    Returns:
        Settings: Application settings instance

    Usage:
        from recordql.configs import get_settings
        settings = get_settings()
    """
    return Settings()
