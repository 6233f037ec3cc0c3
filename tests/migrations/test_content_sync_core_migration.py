from __future__ import annotations

from pathlib import Path

from catalog_sync.models.providers import LINK_CONFLICT_COLUMNS


def _sql() -> str:
    repo_root = Path(__file__).resolve().parents[2]
    return (repo_root / "supabase" / "migrations" / "0001_content_sync_core.sql").read_text()


def test_core_tables_exist() -> None:
    sql = _sql()
    for table in ("core.movies", "core.tv_shows", "core.providers", "core.content_providers"):
        assert f"create table if not exists {table}" in sql


def test_content_tables_have_translation_and_stamp_columns() -> None:
    sql = _sql()
    for column in (
        "title_translations",
        "name_translations",
        "overview_translations",
        "tagline_translations",
        "slug",
        "providers_last_updated",
        "ratings_last_updated",
    ):
        assert column in sql


def test_link_uniqueness_matches_upsert_conflict_key() -> None:
    sql = _sql()
    columns = ", ".join(LINK_CONFLICT_COLUMNS.split(","))
    assert f"unique ({columns})" in sql
    assert "source_type" in LINK_CONFLICT_COLUMNS


def test_providers_are_keyed_by_source_and_id() -> None:
    sql = _sql()
    assert "primary key (id, source_type)" in sql
    assert "foreign key (provider_id, source_type) references core.providers (id, source_type)" in sql


def test_content_tables_carry_keywords() -> None:
    assert _sql().count("keywords jsonb") == 2
