from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from catalog_sync.ingestion.staleness import StaleCategory, StalenessGate, parse_timestamp

NOW = datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)


def _gate() -> StalenessGate:
    return StalenessGate(clock=lambda: NOW)


def test_missing_row_or_stamp_is_stale() -> None:
    gate = _gate()
    assert gate.is_stale(None, StaleCategory.PROVIDERS)
    assert gate.is_stale({"id": 1}, StaleCategory.RATINGS)
    assert gate.is_stale({"id": 1, "ratings_last_updated": "not a date"}, "ratings")


def test_threshold_is_exclusive() -> None:
    gate = _gate()
    exactly = {"providers_last_updated": (NOW - timedelta(hours=6)).isoformat()}
    just_over = {"providers_last_updated": (NOW - timedelta(hours=6, seconds=1)).isoformat()}

    assert not gate.is_stale(exactly, StaleCategory.PROVIDERS)
    assert gate.is_stale(just_over, StaleCategory.PROVIDERS)


def test_stale_categories_are_independent() -> None:
    row = {
        "providers_last_updated": (NOW - timedelta(hours=1)).isoformat(),
        "ratings_last_updated": (NOW - timedelta(days=2)).isoformat(),
    }
    assert _gate().stale_categories(row) == {StaleCategory.RATINGS}


def test_unknown_category_rejected() -> None:
    with pytest.raises(ValueError):
        _gate().is_stale({}, "credits")


def test_parse_timestamp_accepts_z_suffix_and_naive_values() -> None:
    assert parse_timestamp("2025-07-01T12:00:00Z") == NOW
    assert parse_timestamp("2025-07-01T12:00:00") == NOW
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


def test_from_hours_custom_window() -> None:
    gate = StalenessGate.from_hours(1, clock=lambda: NOW)
    row = {"ratings_last_updated": (NOW - timedelta(minutes=90)).isoformat()}
    assert gate.is_stale(row, StaleCategory.RATINGS)
