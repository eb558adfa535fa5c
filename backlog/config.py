"""Environment-backed settings for the backlog service."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


@dataclass(frozen=True)
class Settings:
    igdb_client_id: Optional[str] = None
    igdb_client_secret: Optional[str] = None
    igdb_access_token: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    use_in_memory_backends: bool = False
    http_timeout: float = 10.0
    cookie_secure: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            igdb_client_id=os.getenv("IGDB_CLIENT_ID") or None,
            igdb_client_secret=os.getenv("IGDB_CLIENT_SECRET") or None,
            igdb_access_token=os.getenv("IGDB_ACCESS_TOKEN") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY") or None,
            use_in_memory_backends=_env_flag("BACKLOG_USE_IN_MEMORY_BACKENDS"),
            http_timeout=float(os.getenv("BACKLOG_HTTP_TIMEOUT", "10")),
            cookie_secure=_env_flag("BACKLOG_COOKIE_SECURE"),
            log_level=os.getenv("BACKLOG_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings.from_env()


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("backlog").setLevel(level)
