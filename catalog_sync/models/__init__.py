"""
Domain models shared across scripts and services.
"""

from catalog_sync.models.content import (
    ContentKind,
    ContentUpsert,
    TranslationBundle,
    build_content_upsert,
    generate_slug,
    is_valid_slug,
)
from catalog_sync.models.providers import (
    ClassifiedFeed,
    MonetizationType,
    ProviderLinkUpsert,
    ProviderType,
    ProviderUpsert,
    SourceType,
)

__all__ = [
    "ClassifiedFeed",
    "ContentKind",
    "ContentUpsert",
    "MonetizationType",
    "ProviderLinkUpsert",
    "ProviderType",
    "ProviderUpsert",
    "SourceType",
    "TranslationBundle",
    "build_content_upsert",
    "generate_slug",
    "is_valid_slug",
]
