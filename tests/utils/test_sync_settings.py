from __future__ import annotations

import pytest

from catalog_sync.config import DEFAULT_COUNTRIES, SyncValidationError, load_settings


def test_defaults_without_environment() -> None:
    settings = load_settings({})

    assert settings.tmdb_api_key is None
    assert settings.languages[0] == "en"
    assert settings.countries == DEFAULT_COUNTRIES
    assert settings.staleness_hours == 6.0
    assert settings.min_interval_seconds == pytest.approx(0.05)
    assert settings.max_retries == 3
    assert settings.network_default_country == "TR"


def test_environment_overrides() -> None:
    settings = load_settings(
        {
            "TMDB_API_KEY": " abc ",
            "SYNC_LANGUAGES": "EN, tr,de",
            "SYNC_COUNTRIES": "us,tr",
            "TMDB_MIN_INTERVAL_MS": "250",
            "SYNC_ITEM_WORKERS": "4",
        }
    )

    assert settings.tmdb_api_key == "abc"
    assert settings.languages == ("en", "tr", "de")
    assert settings.countries == ("US", "TR")
    assert settings.min_interval_seconds == pytest.approx(0.25)
    assert settings.item_workers == 4


@pytest.mark.parametrize(
    "environ",
    [{"TMDB_MAX_RETRIES": "lots"}, {"SYNC_ITEM_WORKERS": "0"}, {"TMDB_MIN_INTERVAL_MS": "-5"}],
)
def test_invalid_numbers_raise_validation_error(environ) -> None:
    with pytest.raises(SyncValidationError):
        load_settings(environ)


def test_call_timeout_stays_below_backoff_ceiling() -> None:
    settings = load_settings({})

    assert settings.timeout_seconds == pytest.approx(3.0)
    longest_backoff = settings.backoff_base_seconds * 2 ** (settings.max_retries - 1)
    assert settings.timeout_seconds < longest_backoff
