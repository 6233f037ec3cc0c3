"""
Repository layer for Supabase access patterns.
"""

from catalog_sync.repositories.content import (
    PersistenceConflict,
    RepositoryError,
    fetch_content_row,
    fetch_content_rows,
    upsert_content_row,
)

__all__ = [
    "PersistenceConflict",
    "RepositoryError",
    "fetch_content_row",
    "fetch_content_rows",
    "upsert_content_row",
]
