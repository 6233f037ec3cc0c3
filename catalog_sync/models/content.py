from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_SLUG_SPACE_RE = re.compile(r"\s+")
_SLUG_DASH_RE = re.compile(r"-+")
_INVALID_SLUG_RE = re.compile(r"^\d+-?$")


class ContentKind(StrEnum):
    MOVIE = "movie"
    SERIES = "series"

    @classmethod
    def parse(cls, value: object) -> "ContentKind":
        """Accept the store/catalog spellings as well (`tv_show`, `tv`)."""

        raw = str(value or "").strip().lower()
        if raw in {"movie", "movies"}:
            return cls.MOVIE
        if raw in {"series", "tv", "tv_show", "tv_shows", "show"}:
            return cls.SERIES
        raise ValueError(f"Unknown content kind: {value!r}")

    @property
    def table(self) -> str:
        return "movies" if self is ContentKind.MOVIE else "tv_shows"

    @property
    def content_type(self) -> str:
        return "movie" if self is ContentKind.MOVIE else "tv_show"

    @property
    def tmdb_path(self) -> str:
        return "movie" if self is ContentKind.MOVIE else "tv"

    @property
    def title_field(self) -> str:
        return "title" if self is ContentKind.MOVIE else "name"

    @property
    def original_title_field(self) -> str:
        return "original_title" if self is ContentKind.MOVIE else "original_name"

    @property
    def title_translations_column(self) -> str:
        return f"{self.title_field}_translations"

    @property
    def translation_columns(self) -> tuple[str, str, str]:
        return (self.title_translations_column, "overview_translations", "tagline_translations")

    @property
    def slug_fallback(self) -> str:
        return "movie" if self is ContentKind.MOVIE else "tv-show"

    @property
    def counter_key(self) -> str:
        return "movies" if self is ContentKind.MOVIE else "tv_shows"


def _slugify(text: str) -> str:
    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    cleaned = _SLUG_STRIP_RE.sub("", folded.lower().strip())
    cleaned = _SLUG_SPACE_RE.sub("-", cleaned)
    cleaned = _SLUG_DASH_RE.sub("-", cleaned)
    return cleaned.strip("-")


def generate_slug(content_id: int, original_title: str | None, kind: ContentKind | None = None) -> str:
    """
    Build the stable URL slug `{id}-{slugified original title}`.

    Only the catalog id and the original-language title feed the slug, so it
    does not move when the display language changes. Titles with no readable
    Latin characters fall back to the kind name.
    """

    text = _slugify(original_title or "")
    if not text:
        text = (kind or ContentKind.MOVIE).slug_fallback
    return f"{int(content_id)}-{text}"


def is_valid_slug(value: object) -> bool:
    if not isinstance(value, str):
        return False
    slug = value.strip()
    if not slug:
        return False
    return not _INVALID_SLUG_RE.match(slug)


def clean_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


@dataclass
class TranslationBundle:
    """Per-field language maps collected for one content item."""

    title: dict[str, str] = field(default_factory=dict)
    overview: dict[str, str] = field(default_factory=dict)
    tagline: dict[str, str] = field(default_factory=dict)
    requested: tuple[str, ...] = ()
    failed_languages: dict[str, str] = field(default_factory=dict)

    def add(self, language: str, payload: Mapping[str, Any], kind: ContentKind) -> None:
        for target, source_field in (
            (self.title, kind.title_field),
            (self.overview, "overview"),
            (self.tagline, "tagline"),
        ):
            text = clean_text(payload.get(source_field))
            if text:
                target[language] = text

    @property
    def languages(self) -> set[str]:
        return set(self.title) | set(self.overview) | set(self.tagline)

    def as_columns(self, kind: ContentKind) -> dict[str, dict[str, str]]:
        title_col, overview_col, tagline_col = kind.translation_columns
        return {
            title_col: dict(self.title),
            overview_col: dict(self.overview),
            tagline_col: dict(self.tagline),
        }


# Columns copied from the baseline-language detail payload, per kind.
_COMMON_DETAIL_FIELDS = (
    "overview",
    "tagline",
    "poster_path",
    "backdrop_path",
    "original_language",
    "homepage",
    "status",
    "popularity",
    "vote_average",
    "vote_count",
)
_MOVIE_DETAIL_FIELDS = ("title", "original_title", "release_date", "runtime", "imdb_id")
_SERIES_DETAIL_FIELDS = (
    "name",
    "original_name",
    "first_air_date",
    "last_air_date",
    "number_of_seasons",
    "number_of_episodes",
)


@dataclass(frozen=True)
class ContentUpsert:
    """
    Normalized content row produced by one sync of one item.

    `fields` holds scalar/json columns from the detail payload; translations are
    kept separately so the merge policy can treat them key-by-key.
    """

    kind: ContentKind
    content_id: int
    fields: Mapping[str, Any] = field(default_factory=dict)
    translations: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    providers_last_updated: str | None = None
    ratings_last_updated: str | None = None

    @property
    def original_title(self) -> str | None:
        return clean_text(self.fields.get(self.kind.original_title_field)) or clean_text(
            self.fields.get(self.kind.title_field)
        )

    @property
    def slug(self) -> str:
        return generate_slug(self.content_id, self.original_title, self.kind)


def _keywords(details: Mapping[str, Any], kind: ContentKind) -> list[dict[str, Any]] | None:
    # Appended keywords: movies nest them under `keywords`, series under `results`.
    block = details.get("keywords")
    if not isinstance(block, Mapping):
        return None
    entries = block.get("keywords" if kind is ContentKind.MOVIE else "results")
    if not isinstance(entries, list):
        return None
    return [{"id": k.get("id"), "name": k.get("name")} for k in entries if isinstance(k, Mapping)]


def build_content_upsert(
    kind: ContentKind,
    details: Mapping[str, Any],
    *,
    translations: TranslationBundle | None = None,
    ratings_last_updated: str | None = None,
) -> ContentUpsert:
    content_id = details.get("id")
    if not isinstance(content_id, int):
        raise ValueError(f"Catalog detail payload has no integer id: {content_id!r}")

    names = _COMMON_DETAIL_FIELDS + (_MOVIE_DETAIL_FIELDS if kind is ContentKind.MOVIE else _SERIES_DETAIL_FIELDS)
    fields: dict[str, Any] = {}
    for name in names:
        value = details.get(name)
        if isinstance(value, str):
            value = value.strip() or None
        fields[name] = value

    genres = details.get("genres")
    if isinstance(genres, list):
        fields["genres"] = [
            {"id": g.get("id"), "name": g.get("name")} for g in genres if isinstance(g, Mapping)
        ]
    if kind is ContentKind.SERIES:
        networks = details.get("networks")
        if isinstance(networks, list):
            fields["networks"] = [
                {"id": n.get("id"), "name": n.get("name"), "origin_country": n.get("origin_country")}
                for n in networks
                if isinstance(n, Mapping)
            ]
    keywords = _keywords(details, kind)
    if keywords is not None:
        fields["keywords"] = keywords

    return ContentUpsert(
        kind=kind,
        content_id=content_id,
        fields=fields,
        translations=translations.as_columns(kind) if translations is not None else {},
        ratings_last_updated=ratings_last_updated,
    )
