"""
Shared settings base.

Every recordql settings class reads the same ``.env`` file and ignores
unknown keys, so one file can configure the library and its host
application side by side.

Dependencies: pydantic_settings
System role: Common parent of the recordql configuration classes
"""

from pydantic import Field
from pydantic_settings import BaseSettings as PydanticBaseSettings, SettingsConfigDict


class BaseSettings(PydanticBaseSettings):
    """Library-wide logging switches shared by all settings classes."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level configure_logging() applies (DEBUG, INFO, WARNING, ...)",
    )
    debug: bool = Field(
        default=False,
        description="Force DEBUG logging, including per-query filter and SQL statement logs",
    )

    @property
    def effective_log_level(self) -> str:
        """``DEBUG`` when ``debug`` is on, otherwise ``log_level`` upper-cased."""
        return "DEBUG" if self.debug else self.log_level.upper()
