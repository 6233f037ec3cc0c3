from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Any

from supabase import Client

from catalog_sync.models.providers import LINK_CONFLICT_COLUMNS, ProviderKey, SourceType
from catalog_sync.repositories.content import (
    DEFAULT_CHUNK_SIZE,
    PersistenceConflict,
    _execute,
    _rows,
)

PROVIDER_FIELDS = (
    "id,source_type,name,logo_path,display_priority,provider_type,is_active,supported_countries,country_of_origin"
)


def _provider_key(row: Mapping[str, Any]) -> ProviderKey | None:
    provider_id = row.get("id")
    if not isinstance(provider_id, int):
        return None
    return (str(row.get("source_type") or SourceType.WATCH_PROVIDER), provider_id)


def fetch_providers_by_keys(
    db: Client,
    keys: Iterable[ProviderKey],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> dict[ProviderKey, dict[str, Any]]:
    """Bulk lookup by `(source_type, id)`, one chunked `in.(...)` query per source type."""

    by_source: dict[str, set[int]] = defaultdict(set)
    for source_type, provider_id in keys:
        by_source[str(source_type)].add(int(provider_id))

    found: dict[ProviderKey, dict[str, Any]] = {}
    chunk_size = max(1, int(chunk_size))
    for source_type, id_set in sorted(by_source.items()):
        ids = sorted(id_set)
        for start in range(0, len(ids), chunk_size):
            chunk = ids[start : start + chunk_size]
            query = (
                db.schema("core")
                .table("providers")
                .select(PROVIDER_FIELDS)
                .eq("source_type", source_type)
                .in_("id", chunk)
            )
            for row in _rows(_execute(query, "fetching providers")):
                key = _provider_key(row)
                if key is not None:
                    found[key] = row
    return found


def fetch_all_providers(db: Client) -> list[dict[str, Any]]:
    query = db.schema("core").table("providers").select(PROVIDER_FIELDS).order("id")
    return _rows(_execute(query, "fetching providers"))


def insert_provider(db: Client, row: Mapping[str, Any]) -> dict[str, Any]:
    data = _rows(_execute(db.schema("core").table("providers").insert(dict(row)), "inserting provider"))
    return data[0] if data else dict(row)


def update_provider(db: Client, key: ProviderKey, patch: Mapping[str, Any]) -> dict[str, Any]:
    source_type, provider_id = key
    query = (
        db.schema("core")
        .table("providers")
        .update(dict(patch))
        .eq("source_type", str(source_type))
        .eq("id", int(provider_id))
    )
    data = _rows(_execute(query, "updating provider"))
    if len(data) > 1:
        raise PersistenceConflict(f"Update of core.providers touched {len(data)} rows for {source_type}:{provider_id}")
    return data[0] if data else {}


def bulk_update_provider_type(
    db: Client,
    provider_ids: Iterable[int],
    provider_type: str,
    *,
    source_type: SourceType = SourceType.WATCH_PROVIDER,
) -> int:
    ids = sorted({int(i) for i in provider_ids})
    if not ids:
        return 0
    query = (
        db.schema("core")
        .table("providers")
        .update({"provider_type": provider_type})
        .eq("source_type", str(source_type))
        .in_("id", ids)
    )
    _execute(query, f"reclassifying {source_type} providers as {provider_type}")
    return len(ids)


def update_supported_countries_by_name(
    db: Client,
    name: str,
    countries: Iterable[str],
    *,
    source_type: SourceType = SourceType.WATCH_PROVIDER,
) -> int:
    """Replace `supported_countries` on every provider whose name contains `name` (case-insensitive)."""

    query = (
        db.schema("core")
        .table("providers")
        .update({"supported_countries": sorted({str(c).strip().upper() for c in countries if str(c).strip()})})
        .eq("source_type", str(source_type))
        .ilike("name", f"%{name}%")
    )
    return len(_rows(_execute(query, f"updating supported countries for {name!r}")))


def upsert_provider_links(db: Client, rows: list[dict[str, Any]]) -> int:
    if not rows:
        return 0
    keys = [
        (
            r["content_id"],
            r["content_type"],
            r["source_type"],
            r["provider_id"],
            r["country_code"],
            r["monetization_type"],
        )
        for r in rows
    ]
    if len(set(keys)) != len(keys):
        # Postgres rejects ON CONFLICT DO UPDATE touching the same row twice in one statement.
        raise PersistenceConflict("Provider link batch contains duplicate keys.")
    query = db.schema("core").table("content_providers").upsert(rows, on_conflict=LINK_CONFLICT_COLUMNS)
    _execute(query, "upserting content_providers")
    return len(rows)


def fetch_link_keys(
    db: Client,
    *,
    content_id: int,
    content_type: str,
    source_type: SourceType = SourceType.WATCH_PROVIDER,
) -> set[tuple[str, str, int]]:
    """Return `(country_code, monetization_type, provider_id)` for every stored link of one item."""

    query = (
        db.schema("core")
        .table("content_providers")
        .select("provider_id,country_code,monetization_type")
        .eq("content_id", int(content_id))
        .eq("content_type", content_type)
        .eq("source_type", str(source_type))
    )
    keys: set[tuple[str, str, int]] = set()
    for row in _rows(_execute(query, "fetching content_providers")):
        provider_id = row.get("provider_id")
        if isinstance(provider_id, int):
            keys.add((str(row.get("country_code")), str(row.get("monetization_type")), provider_id))
    return keys


def delete_links(
    db: Client,
    *,
    content_id: int,
    content_type: str,
    country_code: str,
    monetization_type: str,
    provider_ids: list[int],
    source_type: SourceType = SourceType.WATCH_PROVIDER,
) -> int:
    if not provider_ids:
        return 0
    query = (
        db.schema("core")
        .table("content_providers")
        .delete()
        .eq("content_id", int(content_id))
        .eq("content_type", content_type)
        .eq("country_code", country_code)
        .eq("monetization_type", monetization_type)
        .eq("source_type", str(source_type))
        .in_("provider_id", provider_ids)
    )
    _execute(query, "pruning content_providers")
    return len(provider_ids)


def delete_links_for_content_type(db: Client, content_type: str) -> int:
    query = db.schema("core").table("content_providers").delete().eq("content_type", content_type)
    return len(_rows(_execute(query, f"clearing {content_type} provider links")))


def delete_watch_links_for_providers(db: Client, provider_ids: Iterable[int]) -> int:
    ids = sorted({int(i) for i in provider_ids})
    if not ids:
        return 0
    query = (
        db.schema("core")
        .table("content_providers")
        .delete()
        .eq("source_type", str(SourceType.WATCH_PROVIDER))
        .in_("provider_id", ids)
    )
    return len(_rows(_execute(query, "purging misfiled provider links")))
