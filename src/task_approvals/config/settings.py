"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "task-approvals"
    app_env: str = "dev"
    api_prefix: str = "/api"
    storage_backend: Literal["memory", "postgres"] = "memory"
    database_url: str = ""
    # Reject submissions that leave required fields blank.
    require_complete_submissions: bool = True
    seed_on_startup: bool = False
    list_default_limit: int = Field(default=50, ge=1)
    list_max_limit: int = Field(default=200, ge=1)
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="TASK_APPROVALS_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def parsed_cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.list_default_limit
        return min(max(limit, 1), self.list_max_limit)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
