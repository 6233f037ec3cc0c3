"""
Dependency injection for the Supabase admin client, settings and the TMDb session.
"""
from __future__ import annotations

import logging
from typing import Annotated

import requests
from fastapi import Depends
from supabase import Client

from catalog_sync.config import SyncSettings, get_settings
from catalog_sync.db.supabase import create_supabase_admin_client
from catalog_sync.ingestion.sync_orchestrator import SyncOrchestrator
from catalog_sync.integrations.tmdb.client import TmdbCatalogClient
from catalog_sync.utils.env import load_env

load_env()

logger = logging.getLogger(__name__)


def get_sync_settings() -> SyncSettings:
    return get_settings()


def get_supabase_admin_client(settings: Annotated[SyncSettings, Depends(get_sync_settings)]) -> Client:
    """
    Returns a Supabase client using the service role key (bypasses RLS).
    The sync routes write to pipeline-owned tables only.
    """
    return create_supabase_admin_client(settings=settings)


def get_tmdb_session() -> requests.Session:
    return requests.Session()


# Type aliases for dependency injection
Settings = Annotated[SyncSettings, Depends(get_sync_settings)]
SupabaseAdminClient = Annotated[Client, Depends(get_supabase_admin_client)]
TmdbSession = Annotated[requests.Session, Depends(get_tmdb_session)]


def build_orchestrator(
    api_key: str,
    db: Client,
    settings: SyncSettings,
    session: requests.Session,
) -> SyncOrchestrator:
    client = TmdbCatalogClient.from_settings(settings, api_key=api_key, session=session)
    return SyncOrchestrator(client, db, settings)
