"""
Query engine configuration settings.

Defaults for hybrid ranking weights, path resolution caching,
materialization warnings and the opt-in soft-delete guard.

Dependencies: pydantic, pydantic_settings
System role: Tuning knobs for recordql.core.query_engine
"""

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from recordql.configs.base import BaseSettings


class QueryEngineSettings(BaseSettings):
    """Query engine configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="QUERY_ENGINE_",
        case_sensitive=False,
        extra="ignore",
    )

    default_text_weight: float = Field(
        default=0.5,
        description="Weight of the text relevance score in hybrid ranking",
    )
    default_vector_weight: float = Field(
        default=0.5,
        description="Weight of the vector similarity score in hybrid ranking",
    )
    path_cache_size: int = Field(
        default=1024,
        ge=0,
        description="Resolved field paths kept per resolver (0 disables caching)",
    )
    materialization_warning_threshold: int = Field(
        default=10_000,
        ge=1,
        description="Log a warning when a terminal operation pulls more items than this",
    )

    # Soft-delete guard used by QueryEngine.where_active
    active_field: str = Field(default="is_active", description="Boolean 'active' flag field name")
    archived_field: str = Field(default="is_archived", description="Boolean 'archived' flag field name")
