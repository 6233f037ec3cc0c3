from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from supabase import Client

from catalog_sync.models.content import ContentKind

DEFAULT_CHUNK_SIZE = 100


class RepositoryError(RuntimeError):
    pass


class PersistenceConflict(RepositoryError):
    """An upsert touched more than one row for a single key, or no key could be derived."""


def _raise_for_supabase_error(response: Any, context: str) -> None:
    if hasattr(response, "error") and response.error:
        raise RepositoryError(f"Supabase error during {context}: {response.error}")


def _execute(query: Any, context: str) -> Any:
    # supabase-py raises postgrest.APIError from execute(); older clients return `.error` instead.
    try:
        response = query.execute()
    except Exception as exc:
        raise RepositoryError(f"Supabase error during {context}: {exc}") from exc
    _raise_for_supabase_error(response, context)
    return response


def _rows(response: Any) -> list[dict[str, Any]]:
    data = response.data or []
    return data if isinstance(data, list) else []


def assert_core_content_tables_exist(db: Client) -> None:
    """
    Fail fast with a clear error if the content tables are missing in Supabase.
    """

    for table in ("movies", "tv_shows", "providers", "content_providers"):
        try:
            response = db.schema("core").table(table).select("id").limit(1).execute()
        except Exception as exc:
            raise RepositoryError(
                f"Supabase error during core.{table} preflight: {exc}. "
                "Run `supabase db push` to apply migrations "
                "(see `supabase/migrations/0001_content_sync_core.sql`)."
            ) from exc
        _raise_for_supabase_error(response, f"core.{table} preflight")


def fetch_content_row(db: Client, kind: ContentKind, content_id: int) -> dict[str, Any] | None:
    query = db.schema("core").table(kind.table).select("*").eq("id", int(content_id)).limit(1)
    data = _rows(_execute(query, f"fetching {kind.table} row"))
    if len(data) > 1:
        raise PersistenceConflict(f"core.{kind.table} has {len(data)} rows for id={content_id}")
    return data[0] if data else None


def fetch_content_rows(
    db: Client,
    kind: ContentKind,
    content_ids: Iterable[int],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> dict[int, dict[str, Any]]:
    """Bulk lookup by id, chunked so the `in.(...)` filter stays short."""

    ids = sorted({int(i) for i in content_ids})
    found: dict[int, dict[str, Any]] = {}
    chunk_size = max(1, int(chunk_size))
    for start in range(0, len(ids), chunk_size):
        chunk = ids[start : start + chunk_size]
        query = db.schema("core").table(kind.table).select("*").in_("id", chunk)
        for row in _rows(_execute(query, f"fetching {kind.table} rows")):
            row_id = row.get("id")
            if isinstance(row_id, int):
                found[row_id] = row
    return found


def iter_content_rows(
    db: Client,
    kind: ContentKind,
    *,
    columns: str = "*",
    page_size: int = 500,
) -> Iterator[dict[str, Any]]:
    offset = 0
    page_size = max(1, int(page_size))
    while True:
        query = db.schema("core").table(kind.table).select(columns).order("id").range(offset, offset + page_size - 1)
        data = _rows(_execute(query, f"scanning {kind.table}"))
        yield from data
        if len(data) < page_size:
            return
        offset += page_size


def fetch_rows_missing_translations(db: Client, kind: ContentKind, *, limit: int = 50) -> list[dict[str, Any]]:
    """Stored items whose title translation map is null or empty, lowest id first."""

    column = kind.title_translations_column
    query = (
        db.schema("core")
        .table(kind.table)
        .select("*")
        .or_(f"{column}.is.null,{column}.eq.{{}}")
        .order("id")
        .limit(max(1, int(limit)))
    )
    return _rows(_execute(query, f"finding untranslated {kind.table} rows"))


def upsert_content_row(db: Client, kind: ContentKind, row: Mapping[str, Any]) -> dict[str, Any]:
    if not isinstance(row.get("id"), int):
        raise PersistenceConflict(f"Cannot upsert {kind.table} row without an integer id: {row.get('id')!r}")
    query = db.schema("core").table(kind.table).upsert(dict(row), on_conflict="id")
    data = _rows(_execute(query, f"upserting {kind.table} row"))
    if len(data) > 1:
        raise PersistenceConflict(f"Upsert into core.{kind.table} returned {len(data)} rows for id={row['id']}")
    return data[0] if data else dict(row)


def update_content_row(db: Client, kind: ContentKind, content_id: int, patch: Mapping[str, Any]) -> dict[str, Any]:
    query = db.schema("core").table(kind.table).update(dict(patch)).eq("id", int(content_id))
    data = _rows(_execute(query, f"updating {kind.table} row"))
    if len(data) > 1:
        raise PersistenceConflict(f"Update of core.{kind.table} touched {len(data)} rows for id={content_id}")
    return data[0] if data else {}


def delete_all_content(db: Client, kind: ContentKind) -> int:
    # PostgREST refuses an unfiltered delete.
    query = db.schema("core").table(kind.table).delete().gte("id", 0)
    return len(_rows(_execute(query, f"clearing {kind.table}")))
