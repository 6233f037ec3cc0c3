from __future__ import annotations

from supabase import Client, create_client

from catalog_sync.config import SyncSettings, get_settings


def _require(value: str | None, name: str) -> str:
    resolved = (value or "").strip()
    if not resolved:
        raise RuntimeError(f"{name} environment variable is not set")
    return resolved


def create_supabase_admin_client(
    *,
    url: str | None = None,
    service_role_key: str | None = None,
    settings: SyncSettings | None = None,
) -> Client:
    """
    Create a Supabase client using the service role key (bypasses RLS).

    The sync pipeline owns `core.movies`, `core.tv_shows`, `core.providers` and
    `core.content_providers`, so it always writes with admin credentials.
    """

    settings = settings or get_settings()
    return create_client(
        _require(url or settings.supabase_url, "SUPABASE_URL"),
        _require(service_role_key or settings.supabase_service_role_key, "SUPABASE_SERVICE_ROLE_KEY"),
    )
