"""
Database helpers for catalog sync scripts/services.
"""

from catalog_sync.db.supabase import create_supabase_admin_client

__all__ = [
    "create_supabase_admin_client",
]
