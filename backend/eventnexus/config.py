from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_BATCH_SIZE = int(os.getenv("INGEST_BATCH_SIZE", "100"))
DEFAULT_TIMEZONE = os.getenv("RECOMMENDATION_TZ", "UTC")
DEFAULT_FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


@dataclass
class Settings:
    database_url: Optional[str] = None
    eventbrite_token: Optional[str] = None
    meetup_token: Optional[str] = None
    luma_enabled: bool = True
    meetup_web_enabled: bool = True
    luma_web_reader_url: Optional[str] = None
    site_scraper_url: Optional[str] = None
    site_scraper_card_selector: Optional[str] = None
    plugin_timeout: float = 30.0
    plugin_max_retries: int = 3
    batch_size: int = DEFAULT_BATCH_SIZE
    timezone: str = DEFAULT_TIMEZONE
    frontend_origins: list[str] = field(default_factory=lambda: [DEFAULT_FRONTEND_ORIGIN])

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def load_settings() -> Settings:
    """Read settings from the environment at call time."""
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        eventbrite_token=os.getenv("EVENTBRITE_TOKEN") or os.getenv("EVENTBRITE_API_KEY"),
        meetup_token=os.getenv("MEETUP_TOKEN"),
        luma_enabled=os.getenv("LUMA_ENABLED", "1") not in ("0", "false", "False"),
        meetup_web_enabled=os.getenv("MEETUP_WEB_ENABLED", "1") not in ("0", "false", "False"),
        luma_web_reader_url=os.getenv("LUMA_WEB_READER_URL"),
        site_scraper_url=os.getenv("SITE_SCRAPER_URL"),
        site_scraper_card_selector=os.getenv("SITE_SCRAPER_CARD_SELECTOR"),
        plugin_timeout=_env_float("PLUGIN_TIMEOUT", 30.0),
        plugin_max_retries=_env_int("PLUGIN_MAX_RETRIES", 3),
        batch_size=_env_int("INGEST_BATCH_SIZE", 100),
        timezone=os.getenv("RECOMMENDATION_TZ", "UTC"),
        frontend_origins=[
            origin.strip()
            for origin in os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN).split(",")
            if origin.strip()
        ],
    )
