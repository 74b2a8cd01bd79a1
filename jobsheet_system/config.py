"""Runtime settings for the job sheet service."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import ClassVar, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Configuration loaded from ``JOBSHEET_*`` environment variables."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_prefix="JOBSHEET_",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="Job Sheet Workshop", description="API title.")
    database_path: str = Field(
        default="jobsheets.sqlite3",
        description="SQLite file used by the web application.",
    )
    job_no_prefix: str = Field(default="JOB", min_length=1)
    first_job_number: int = Field(default=1001, ge=1)
    log_level: LogLevel = "INFO"
    seed_demo_data: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("job_no_prefix")
    @classmethod
    def _prefix_without_separator(cls, value: str) -> str:
        value = value.strip()
        if "-" in value:
            raise ValueError("job_no_prefix must not contain '-'")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


__all__ = ["Settings", "get_settings", "configure_logging", "LOG_FORMAT"]
