"""
Runtime settings for the catalog sync pipeline.

Everything is resolved from the process environment (after `load_env()` has
applied an optional `.env`), so the API, the CLI scripts and the tests share
one source of truth.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping

from catalog_sync.utils.env import env_csv, env_number, env_str

DEFAULT_LANGUAGES: tuple[str, ...] = (
    "en",
    "tr",
    "de",
    "fr",
    "es",
    "it",
    "pt",
    "ru",
    "ja",
    "ko",
    "zh",
    "ar",
    "hi",
    "nl",
    "sv",
    "no",
    "da",
    "fi",
    "pl",
    "el",
)

DEFAULT_COUNTRIES: tuple[str, ...] = ("US", "GB", "TR", "DE", "FR", "ES", "IT", "CA", "AU", "JP", "KR")

BASELINE_LANGUAGE = "en"
TMDB_API_BASE_URL = "https://api.themoviedb.org/3"


class SyncValidationError(ValueError):
    """Missing credential or malformed invocation. Fatal: raised before any external call."""


@dataclass(frozen=True)
class SyncSettings:
    tmdb_api_key: str | None = None
    tmdb_api_base_url: str = TMDB_API_BASE_URL
    languages: tuple[str, ...] = DEFAULT_LANGUAGES
    countries: tuple[str, ...] = DEFAULT_COUNTRIES
    staleness_hours: float = 6.0
    min_interval_seconds: float = 0.05
    timeout_seconds: float = 3.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    page_size: int = 20
    item_workers: int = 1
    language_workers: int = 4
    network_default_country: str = "TR"
    provider_rules_path: str | None = None
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None


def load_settings(environ: Mapping[str, str] | None = None) -> SyncSettings:
    try:
        return SyncSettings(
            tmdb_api_key=env_str("TMDB_API_KEY", environ=environ),
            tmdb_api_base_url=(env_str("TMDB_API_BASE_URL", TMDB_API_BASE_URL, environ=environ) or "").rstrip("/"),
            languages=tuple(code.lower() for code in env_csv("SYNC_LANGUAGES", DEFAULT_LANGUAGES, environ=environ)),
            countries=tuple(code.upper() for code in env_csv("SYNC_COUNTRIES", DEFAULT_COUNTRIES, environ=environ)),
            staleness_hours=env_number("SYNC_STALENESS_HOURS", 6.0, minimum=0, environ=environ),
            min_interval_seconds=env_number("TMDB_MIN_INTERVAL_MS", 50, minimum=0, environ=environ) / 1000.0,
            timeout_seconds=env_number("TMDB_TIMEOUT_SECONDS", 3.0, minimum=0.1, environ=environ),
            max_retries=env_number("TMDB_MAX_RETRIES", 3, cast=int, minimum=0, environ=environ),
            page_size=env_number("SYNC_PAGE_SIZE", 20, cast=int, minimum=1, environ=environ),
            item_workers=env_number("SYNC_ITEM_WORKERS", 1, cast=int, minimum=1, environ=environ),
            language_workers=env_number("SYNC_LANGUAGE_WORKERS", 4, cast=int, minimum=1, environ=environ),
            network_default_country=(env_str("NETWORK_DEFAULT_COUNTRY", "TR", environ=environ) or "TR").upper(),
            provider_rules_path=env_str("PROVIDER_RULES_PATH", environ=environ),
            supabase_url=env_str("SUPABASE_URL", environ=environ),
            supabase_service_role_key=env_str("SUPABASE_SERVICE_ROLE_KEY", environ=environ),
        )
    except ValueError as exc:
        raise SyncValidationError(str(exc)) from exc


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    """Return process-wide settings (cached; call `get_settings.cache_clear()` in tests)."""

    return load_settings()
