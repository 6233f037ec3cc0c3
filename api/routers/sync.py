"""
Sync endpoints: trending import, single-title save and maintenance passes.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from api.deps import Settings, SupabaseAdminClient, TmdbSession, build_orchestrator
from catalog_sync.config import SyncSettings, SyncValidationError
from catalog_sync.ingestion.maintenance import (
    ContentRefresher,
    reclassify_providers,
    refresh_provider_catalog,
    update_provider_countries,
)
from catalog_sync.ingestion.provider_classifier import ProviderClassifier, ProviderRuleError
from catalog_sync.ingestion.sync_orchestrator import SyncOptions, failure_response
from catalog_sync.integrations.tmdb.client import TmdbClientError, resolve_api_key
from catalog_sync.models.content import ContentKind
from catalog_sync.repositories.content import RepositoryError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# --- Pydantic models ---

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tmdb_api_key: str | None = Field(default=None, alias="tmdbApiKey")


class ImportTrendingRequest(_CamelModel):
    content_kind: str | None = Field(
        default=None, validation_alias=AliasChoices("contentKind", "contentType", "content_kind")
    )
    movie_count: int | None = Field(default=None, alias="movieCount")
    tv_count: int | None = Field(default=None, alias="tvCount")
    clear_existing: bool | None = Field(
        default=None, validation_alias=AliasChoices("clear", "clearExisting", "clear_existing")
    )
    batch_size: int | None = Field(default=None, alias="batchSize")


class SaveContentRequest(_CamelModel):
    content_id: int = Field(alias="contentId")
    content_type: str = Field(alias="contentType")


class BackfillRequest(_CamelModel):
    content_type: str = Field(default="both", alias="contentType")
    batch_size: int = Field(default=50, alias="batchSize", ge=1)


class RefreshProvidersRequest(_CamelModel):
    content_type: str = Field(default="both", alias="contentType")
    content_id: int | None = Field(default=None, alias="contentId")
    limit: int = Field(default=50, ge=1)


class ProviderCatalogRequest(_CamelModel):
    content_type: str = Field(default="both", alias="contentType")


class ProviderCountries(BaseModel):
    name: str = Field(min_length=1)
    countries: list[str]


class ProviderCountriesRequest(BaseModel):
    providers: list[ProviderCountries]


class ReclassifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    dry_run: bool = Field(default=False, alias="dryRun")
    purge_misfiled_links: bool = Field(default=False, alias="purgeMisfiledLinks")


def _bad_request(exc: BaseException | str) -> JSONResponse:
    logger.warning("Rejected sync request: %s", exc)
    return JSONResponse(status_code=400, content=failure_response(exc))


def _require_api_key(settings: SyncSettings, body_key: str | None, query_key: str | None = None) -> str:
    api_key = resolve_api_key(settings.tmdb_api_key, body_key, query_key)
    if not api_key:
        raise SyncValidationError(
            "TMDB_API_KEY is required. Set it in the environment, or pass tmdbApiKey in the body or query string."
        )
    return api_key


def _kinds(value: str) -> tuple[ContentKind, ...]:
    if (value or "").strip().lower() == "both":
        return (ContentKind.MOVIE, ContentKind.SERIES)
    try:
        return (ContentKind.parse(value),)
    except ValueError as exc:
        raise SyncValidationError(str(exc)) from exc


# --- Endpoints ---

@router.post("/import-trending")
def import_trending(
    db: SupabaseAdminClient,
    settings: Settings,
    session: TmdbSession,
    body: ImportTrendingRequest | None = None,
    content_kind: str | None = Query(default=None, alias="contentKind"),
    movie_count: int | None = Query(default=None, alias="movieCount"),
    tv_count: int | None = Query(default=None, alias="tvCount"),
    clear: bool | None = Query(default=None),
    batch_size: int | None = Query(default=None, alias="batchSize"),
    tmdb_api_key: str | None = Query(default=None, alias="tmdbApiKey"),
) -> Any:
    body = body or ImportTrendingRequest()
    defaults = SyncOptions()

    def pick(body_value, query_value, default):
        if body_value is not None:
            return body_value
        if query_value is not None:
            return query_value
        return default

    try:
        api_key = _require_api_key(settings, body.tmdb_api_key, tmdb_api_key)
        options = SyncOptions(
            content_kind=pick(body.content_kind, content_kind, defaults.content_kind),
            movie_count=pick(body.movie_count, movie_count, defaults.movie_count),
            tv_count=pick(body.tv_count, tv_count, defaults.tv_count),
            clear_existing=pick(body.clear_existing, clear, defaults.clear_existing),
            batch_size=pick(body.batch_size, batch_size, defaults.batch_size),
        ).validate()
    except SyncValidationError as exc:
        return _bad_request(exc)

    orchestrator = build_orchestrator(api_key, db, settings, session)
    run = orchestrator.run_import(options)
    return run.to_dict()


@router.post("/content")
def save_content(
    body: SaveContentRequest,
    db: SupabaseAdminClient,
    settings: Settings,
    session: TmdbSession,
) -> Any:
    try:
        api_key = _require_api_key(settings, body.tmdb_api_key)
        kinds = _kinds(body.content_type)
        if len(kinds) != 1:
            raise SyncValidationError("contentType must be movie or tv_show.")
    except SyncValidationError as exc:
        return _bad_request(exc)

    kind = kinds[0]
    orchestrator = build_orchestrator(api_key, db, settings, session)
    run = orchestrator.sync_item(kind, body.content_id)
    payload = run.to_dict()
    payload["content_id"] = body.content_id
    payload["content_type"] = kind.content_type
    return payload


@router.post("/translations/backfill")
def backfill_translations(
    body: BackfillRequest,
    db: SupabaseAdminClient,
    settings: Settings,
    session: TmdbSession,
) -> Any:
    try:
        api_key = _require_api_key(settings, body.tmdb_api_key)
        kinds = _kinds(body.content_type)
    except SyncValidationError as exc:
        return _bad_request(exc)

    refresher = ContentRefresher(build_orchestrator(api_key, db, settings, session))
    results = {}
    for kind in kinds:
        try:
            results[kind.counter_key] = refresher.backfill_translations(kind, batch_size=body.batch_size).to_dict()
        except RepositoryError as exc:
            logger.error("Translation backfill aborted for %s: %s", kind.table, exc)
            results[kind.counter_key] = failure_response(exc)
    return {"success": all(r["success"] for r in results.values()), "results": results}


@router.post("/providers/refresh")
def refresh_providers(
    body: RefreshProvidersRequest,
    db: SupabaseAdminClient,
    settings: Settings,
    session: TmdbSession,
) -> Any:
    try:
        api_key = _require_api_key(settings, body.tmdb_api_key)
        kinds = _kinds(body.content_type)
        if body.content_id is not None and len(kinds) != 1:
            raise SyncValidationError("contentType must be movie or tv_show when contentId is given.")
    except SyncValidationError as exc:
        return _bad_request(exc)

    refresher = ContentRefresher(build_orchestrator(api_key, db, settings, session))
    if body.content_id is not None:
        try:
            result = refresher.refresh(kinds[0], body.content_id)
        except (TmdbClientError, RepositoryError) as exc:
            return failure_response(exc)
        return {
            "success": result.error is None,
            "content_id": result.content_id,
            "refreshed": list(result.refreshed),
            "wrote": result.wrote,
            "error": result.error,
        }

    results = {kind.counter_key: refresher.refresh_stale(kind, limit=body.limit).to_dict() for kind in kinds}
    return {"success": True, "results": results}


@router.post("/providers/reclassify")
def reclassify(
    db: SupabaseAdminClient,
    settings: Settings,
    body: ReclassifyRequest | None = None,
) -> Any:
    body = body or ReclassifyRequest()
    try:
        classifier = ProviderClassifier.from_path(settings.provider_rules_path)
    except ProviderRuleError as exc:
        return _bad_request(exc)
    report = reclassify_providers(
        db,
        classifier,
        dry_run=body.dry_run,
        purge_misfiled_links=body.purge_misfiled_links,
    )
    return report.to_dict()


@router.post("/providers/catalog/refresh")
def refresh_catalog(
    db: SupabaseAdminClient,
    settings: Settings,
    session: TmdbSession,
    body: ProviderCatalogRequest | None = None,
) -> Any:
    body = body or ProviderCatalogRequest()
    try:
        api_key = _require_api_key(settings, body.tmdb_api_key)
        kinds = _kinds(body.content_type)
    except SyncValidationError as exc:
        return _bad_request(exc)

    report = refresh_provider_catalog(build_orchestrator(api_key, db, settings, session), kinds)
    return report.to_dict()


@router.post("/providers/countries")
def update_countries(body: ProviderCountriesRequest, db: SupabaseAdminClient) -> Any:
    if not body.providers:
        return _bad_request("providers must list at least one {name, countries} entry.")
    report = update_provider_countries(db, [p.model_dump() for p in body.providers])
    return report.to_dict()
