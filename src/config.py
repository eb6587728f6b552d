"""
SmartCal Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

# Providers that run locally and need no API key
_KEYLESS_PROVIDERS = {"ollama"}


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Generation backend: ollama (default, local), openai, anthropic
    LLM_PROVIDER: str = "ollama"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    LLM_TIMEOUT_SECONDS: float = 60.0

    # SQLite
    DATABASE_PATH: str = "data/smartcal.db"

    # Security
    ALLOWED_USER_IDS: list[int] = []
    CRON_SECRET: str = ""

    # Scheduling
    TIMEZONE: str = "UTC"
    REMINDER_LEAD_MINUTES: int = 15
    SWEEP_INTERVAL_SECONDS: int = 60

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("REMINDER_LEAD_MINUTES", "SWEEP_INTERVAL_SECONDS", mode="before")
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"expected a positive integer, got {value}")
        return value


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    provider = os.getenv("LLM_PROVIDER", "ollama").lower()
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if provider not in _KEYLESS_PROVIDERS and (not llm_api_key or llm_api_key.startswith("your-")):
        print(
            f"ERROR: LLM_API_KEY is required for LLM_PROVIDER={provider} but is not set in .env",
            file=sys.stderr,
        )
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=provider,
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        OLLAMA_BASE_URL=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
        LLM_TIMEOUT_SECONDS=os.getenv("LLM_TIMEOUT_SECONDS", "60"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/smartcal.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        CRON_SECRET=os.getenv("CRON_SECRET", ""),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        REMINDER_LEAD_MINUTES=os.getenv("REMINDER_LEAD_MINUTES", "15"),
        SWEEP_INTERVAL_SECONDS=os.getenv("SWEEP_INTERVAL_SECONDS", "60"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
