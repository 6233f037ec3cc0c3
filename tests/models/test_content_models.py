from __future__ import annotations

import pytest

from catalog_sync.models.content import (
    ContentKind,
    TranslationBundle,
    build_content_upsert,
    generate_slug,
    is_valid_slug,
)
from catalog_sync.models.providers import ProviderLinkUpsert, SourceType
from conftest import load_fixture


@pytest.mark.parametrize(
    ("value", "expected"),
    [("movie", ContentKind.MOVIE), ("TV", ContentKind.SERIES), ("tv_show", ContentKind.SERIES), ("series", ContentKind.SERIES)],
)
def test_content_kind_parse(value, expected) -> None:
    assert ContentKind.parse(value) is expected


def test_content_kind_parse_rejects_unknown() -> None:
    with pytest.raises(ValueError):
        ContentKind.parse("anime")


def test_kind_store_names() -> None:
    assert (ContentKind.MOVIE.table, ContentKind.MOVIE.content_type, ContentKind.MOVIE.tmdb_path) == (
        "movies",
        "movie",
        "movie",
    )
    assert (ContentKind.SERIES.table, ContentKind.SERIES.content_type, ContentKind.SERIES.tmdb_path) == (
        "tv_shows",
        "tv_show",
        "tv",
    )
    assert ContentKind.SERIES.title_translations_column == "name_translations"


@pytest.mark.parametrize(
    ("original", "expected"),
    [
        ("The Matrix", "603-the-matrix"),
        ("Amélie: Le Fabuleux Destin", "603-amelie-le-fabuleux-destin"),
        ("  Spider-Man -- No Way Home ", "603-spider-man-no-way-home"),
        ("千と千尋の神隠し", "603-movie"),
        (None, "603-movie"),
    ],
)
def test_generate_slug(original, expected) -> None:
    assert generate_slug(603, original) == expected


def test_generate_slug_series_fallback() -> None:
    assert generate_slug(1399, "", ContentKind.SERIES) == "1399-tv-show"


def test_is_valid_slug() -> None:
    assert is_valid_slug("603-the-matrix")
    assert not is_valid_slug("603-")
    assert not is_valid_slug("603")
    assert not is_valid_slug("")
    assert not is_valid_slug(None)


def test_build_content_upsert_series() -> None:
    bundle = TranslationBundle()
    bundle.add("en", {"name": "Game of Thrones", "overview": " Westeros. "}, ContentKind.SERIES)
    item = build_content_upsert(ContentKind.SERIES, load_fixture("tv_1399_en.json"), translations=bundle)

    assert item.content_id == 1399
    assert item.fields["number_of_seasons"] == 8
    assert item.fields["networks"][0] == {"id": 49, "name": "HBO", "origin_country": "US"}
    assert "title" not in item.fields
    assert item.translations["name_translations"] == {"en": "Game of Thrones"}
    assert item.translations["overview_translations"] == {"en": "Westeros."}
    assert item.slug == "1399-game-of-thrones"


def test_build_content_upsert_requires_id() -> None:
    with pytest.raises(ValueError):
        build_content_upsert(ContentKind.MOVIE, {"title": "No id"})


def test_link_row_shape() -> None:
    link = ProviderLinkUpsert(
        content_id=603,
        content_type="movie",
        provider_id=8,
        country_code="US",
        monetization_type="flatrate",
        source_type=SourceType.WATCH_PROVIDER,
    )
    row = link.to_row(last_updated="2025-07-01T12:00:00+00:00")

    assert link.key == (603, "movie", "watch_provider", 8, "US", "flatrate")
    assert row["source_type"] == "watch_provider"
    assert row["presentation_type"] == "hd"
    assert row["data_source"] == "tmdb"


def test_slug_does_not_depend_on_display_language() -> None:
    english = build_content_upsert(ContentKind.MOVIE, load_fixture("movie_603_en.json"))
    turkish = build_content_upsert(ContentKind.MOVIE, load_fixture("movie_603_tr.json"))

    assert english.fields["title"] != turkish.fields["title"]
    assert english.slug == turkish.slug == "603-the-matrix"


def test_keywords_read_from_the_kind_specific_block() -> None:
    movie = build_content_upsert(ContentKind.MOVIE, load_fixture("movie_603_en.json"))
    series = build_content_upsert(
        ContentKind.SERIES,
        {"id": 1399, "name": "Game of Thrones", "keywords": {"results": [{"id": 6091, "name": "war", "extra": 1}]}},
    )

    assert movie.fields["keywords"] == [{"id": 310, "name": "artificial intelligence"}]
    assert series.fields["keywords"] == [{"id": 6091, "name": "war"}]


def test_missing_keywords_block_leaves_column_untouched() -> None:
    item = build_content_upsert(ContentKind.MOVIE, {"id": 1, "title": "Plain"})
    wrong_shape = build_content_upsert(ContentKind.SERIES, {"id": 2, "keywords": {"keywords": [{"id": 1}]}})

    assert "keywords" not in item.fields
    assert "keywords" not in wrong_shape.fields
