from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Literal

from dotenv import load_dotenv
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_env_once() -> None:
    """
    Loads .env from:
      1) ENV_PATH if provided
      2) backend/api/.env (project default)
      3) current working directory .env (fallback)

    Never overrides variables that are already set.
    """
    env_path = os.getenv("ENV_PATH")
    if env_path:
        p = Path(env_path)
        if p.exists():
            load_dotenv(p, override=False)
            return

    # this file is backend/api/memoryvista/settings.py
    backend_api_dir = Path(__file__).resolve().parents[1]
    p2 = backend_api_dir / ".env"
    if p2.exists():
        load_dotenv(p2, override=False)
        return

    p3 = Path.cwd() / ".env"
    if p3.exists():
        load_dotenv(p3, override=False)


class Settings(BaseSettings):
    """Runtime knobs for the workflow service, read from the environment."""

    model_config = SettingsConfigDict(case_sensitive=False, env_ignore_empty=True, extra="ignore")

    workflow_max_retries: int = Field(default=3, ge=0, le=10)
    admin_cache_ttl_seconds: float = Field(default=300.0, ge=0)
    log_level: str = "INFO"
    log_format: Literal["plain", "json"] = "plain"

    # Comma separated identities made platform admins at startup.
    initial_platform_admins: str = ""

    @field_validator("log_level", "log_format", mode="before")
    @classmethod
    def normalize_names(cls, v: Any, info: ValidationInfo) -> Any:
        if not isinstance(v, str):
            return v
        v = v.strip()
        return v.upper() if info.field_name == "log_level" else v.lower()

    @property
    def initial_platform_admin_list(self) -> List[str]:
        return [item.strip() for item in self.initial_platform_admins.split(",") if item.strip()]

    @classmethod
    def from_env(cls) -> "Settings":
        load_env_once()
        return cls()


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings

    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
