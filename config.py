from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_url: str
    booking_api_key: str
    campus_timezone: str
    log_level: str


def _get_env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip().strip('"').strip("'")


def _get_required_env(name: str) -> str:
    value = _get_env(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name="Campus Booking API",
        app_version="1.0.0",
        database_url=_get_required_env("DATABASE_URL"),
        booking_api_key=_get_required_env("BOOKING_API_KEY"),
        campus_timezone=_get_env("CAMPUS_TIMEZONE") or "UTC",
        log_level=(_get_env("LOG_LEVEL") or "INFO").upper(),
    )
