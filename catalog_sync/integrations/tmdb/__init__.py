from catalog_sync.integrations.tmdb.client import (
    FetchExhausted,
    TmdbCatalogClient,
    TmdbClientError,
    UpstreamHTTPError,
    resolve_api_key,
)
from catalog_sync.integrations.tmdb.rate_limiter import IntervalRateLimiter

__all__ = [
    "FetchExhausted",
    "IntervalRateLimiter",
    "TmdbCatalogClient",
    "TmdbClientError",
    "UpstreamHTTPError",
    "resolve_api_key",
]
