from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Mapping

from catalog_sync.ingestion.staleness import parse_timestamp
from catalog_sync.models.content import ContentUpsert, clean_text, generate_slug, is_valid_slug


class MergePolicy(StrEnum):
    OVERWRITE = "overwrite"
    OVERWRITE_IF_PRESENT = "overwrite_if_present"
    MERGE_KEYS = "merge_keys"
    SLUG = "slug"
    ADVANCE = "advance"


FIELD_POLICIES: dict[str, MergePolicy] = {
    # Freshness: the latest fetch always wins, even when it is null.
    "popularity": MergePolicy.OVERWRITE,
    "vote_average": MergePolicy.OVERWRITE,
    "vote_count": MergePolicy.OVERWRITE,
    "status": MergePolicy.OVERWRITE,
    # Translation maps merge language by language.
    "title_translations": MergePolicy.MERGE_KEYS,
    "name_translations": MergePolicy.MERGE_KEYS,
    "overview_translations": MergePolicy.MERGE_KEYS,
    "tagline_translations": MergePolicy.MERGE_KEYS,
    "slug": MergePolicy.SLUG,
    "providers_last_updated": MergePolicy.ADVANCE,
    "ratings_last_updated": MergePolicy.ADVANCE,
}

STAMP_COLUMNS = ("providers_last_updated", "ratings_last_updated")


def policy_for(column: str) -> MergePolicy:
    return FIELD_POLICIES.get(column, MergePolicy.OVERWRITE_IF_PRESENT)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)) and not value:
        return False
    return True


def _merge_keys(current: Any, incoming: Mapping[str, Any]) -> dict[str, str]:
    merged = dict(current) if isinstance(current, Mapping) else {}
    for language, text in incoming.items():
        if isinstance(text, str) and text.strip():
            merged[language] = text.strip()
    return merged


def _advance(current: Any, incoming: Any) -> Any:
    if incoming is None:
        return current
    new_ts = parse_timestamp(incoming)
    old_ts = parse_timestamp(current)
    if new_ts is None:
        return current
    if old_ts is None or new_ts > old_ts:
        return incoming
    return current


@dataclass(frozen=True)
class MergeOutcome:
    row: dict[str, Any]
    changed: dict[str, Any]

    @property
    def is_noop(self) -> bool:
        return not self.changed


def merge_content(existing: Mapping[str, Any] | None, item: ContentUpsert, *, include_stamps: bool = True) -> MergeOutcome:
    """
    Apply `FIELD_POLICIES` to combine a stored row with freshly fetched data.

    `row` holds only the columns this pipeline owns; `changed` is the subset
    that differs from `existing` and is empty when a write would be a no-op.
    """

    current = dict(existing or {})
    row: dict[str, Any] = {"id": item.content_id}

    for column, value in item.fields.items():
        policy = policy_for(column)
        if policy is MergePolicy.OVERWRITE:
            row[column] = value
        elif _present(value):
            row[column] = value
        elif column in current:
            row[column] = current[column]
        else:
            row[column] = None

    for column, incoming in item.translations.items():
        merged = _merge_keys(current.get(column), incoming)
        row[column] = merged if merged else current.get(column)

    stored_slug = current.get("slug")
    if is_valid_slug(stored_slug):
        row["slug"] = stored_slug
    else:
        kind = item.kind
        title = (
            item.original_title
            or clean_text(current.get(kind.original_title_field))
            or clean_text(current.get(kind.title_field))
        )
        row["slug"] = generate_slug(item.content_id, title, kind)

    if include_stamps:
        for column in STAMP_COLUMNS:
            value = _advance(current.get(column), getattr(item, column))
            if value is not None:
                row[column] = value

    changed = {
        column: value
        for column, value in row.items()
        if column != "id" and (column not in current or current[column] != value)
    }
    if existing is None:
        changed = {k: v for k, v in row.items() if k != "id"}
    return MergeOutcome(row=row, changed=changed)


def stamp_patch(existing: Mapping[str, Any] | None, stamps: Mapping[str, str | None]) -> dict[str, str]:
    """Return only the stamp columns that move forward."""

    current = dict(existing or {})
    patch: dict[str, str] = {}
    for column, value in stamps.items():
        if column not in STAMP_COLUMNS or value is None:
            continue
        advanced = _advance(current.get(column), value)
        if advanced != current.get(column):
            patch[column] = advanced
    return patch
