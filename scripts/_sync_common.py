from __future__ import annotations

import argparse
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from supabase import Client

from catalog_sync.config import SyncSettings, SyncValidationError, get_settings
from catalog_sync.db.supabase import create_supabase_admin_client
from catalog_sync.ingestion.sync_orchestrator import SyncOrchestrator
from catalog_sync.integrations.tmdb.client import TmdbCatalogClient, resolve_api_key
from catalog_sync.models.content import ContentKind
from catalog_sync.repositories.content import assert_core_content_tables_exist
from catalog_sync.utils.env import load_env

CONTENT_TYPE_CHOICES = ("movie", "tv_show", "both")


def add_common_args(parser: argparse.ArgumentParser, *, content_type_default: str = "both") -> None:
    parser.add_argument(
        "--content-type",
        choices=CONTENT_TYPE_CHOICES,
        default=content_type_default,
        help="Which table(s) to process.",
    )
    parser.add_argument("--tmdb-api-key", default=None, help="Used only when TMDB_API_KEY is not set.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def kinds_for(content_type: str) -> tuple[ContentKind, ...]:
    if content_type == "both":
        return (ContentKind.MOVIE, ContentKind.SERIES)
    return (ContentKind.parse(content_type),)


def load_env_and_db(settings: SyncSettings | None = None) -> Client:
    load_env()
    db = create_supabase_admin_client(settings=settings)
    assert_core_content_tables_exist(db)
    return db


def build_orchestrator(
    db: Client,
    *,
    cli_api_key: str | None = None,
    settings: SyncSettings | None = None,
) -> SyncOrchestrator:
    settings = settings or get_settings()
    api_key = resolve_api_key(settings.tmdb_api_key, None, cli_api_key)
    if not api_key:
        raise SyncValidationError("TMDB_API_KEY is required (set it in the environment or pass --tmdb-api-key).")
    client = TmdbCatalogClient.from_settings(settings, api_key=api_key)
    return SyncOrchestrator(client, db, settings)


def _flatten(prefix: str, value: Any) -> Iterable[tuple[str, Any]]:
    if isinstance(value, Mapping):
        for key, inner in value.items():
            yield from _flatten(f"{prefix}.{key}" if prefix else str(key), inner)
    else:
        yield prefix, value


def print_summary(summary: Mapping[str, Any], *, failures: Iterable[Mapping[str, Any]] = (), limit: int = 10) -> None:
    print("Summary")
    for key, value in summary.items():
        if key in {"failures", "success"}:
            continue
        for name, scalar in _flatten(key, value):
            print(f"{name}={scalar}")
    failures = list(failures)
    print(f"failures={len(failures)}")
    for failure in failures[:limit]:
        print(f"- {failure.get('kind')} {failure.get('content_id')} [{failure.get('stage')}]: {failure.get('error')}")
