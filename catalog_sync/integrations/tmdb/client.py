from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

import requests

from catalog_sync.config import TMDB_API_BASE_URL, SyncSettings
from catalog_sync.integrations.tmdb.rate_limiter import IntervalRateLimiter
from catalog_sync.models.content import ContentKind

logger = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (requests.ConnectionError, requests.Timeout)


class TmdbClientError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body_snippet: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body_snippet = body_snippet
        self.url = url


class UpstreamHTTPError(TmdbClientError):
    """TMDb answered with a non-2xx status. Never retried here."""


class FetchExhausted(TmdbClientError):
    """Every attempt failed at the network level."""

    def __init__(self, message: str, *, last_error: BaseException, attempts: int, url: str | None = None) -> None:
        super().__init__(message, url=url)
        self.last_error = last_error
        self.attempts = attempts


def resolve_api_key(
    env: str | None = None,
    body: str | None = None,
    query: str | None = None,
) -> str | None:
    """
    Resolve the catalog credential: environment first, then request body, then query string.
    """

    for candidate in (env, body, query):
        resolved = (candidate or "").strip()
        if resolved:
            return resolved
    return None


class TmdbCatalogClient:
    def __init__(
        self,
        api_key: str,
        *,
        session: requests.Session | None = None,
        limiter: IntervalRateLimiter | None = None,
        base_url: str = TMDB_API_BASE_URL,
        timeout_seconds: float = 3.0,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not (api_key or "").strip():
            raise ValueError("TMDb API key is required.")
        self.api_key = api_key.strip()
        self.session = session or requests.Session()
        self.limiter = limiter or IntervalRateLimiter(0.05)
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        *,
        api_key: str | None = None,
        session: requests.Session | None = None,
        limiter: IntervalRateLimiter | None = None,
    ) -> "TmdbCatalogClient":
        return cls(
            api_key or settings.tmdb_api_key or "",
            session=session,
            limiter=limiter or IntervalRateLimiter(settings.min_interval_seconds),
            base_url=settings.tmdb_api_base_url,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            backoff_base_seconds=settings.backoff_base_seconds,
        )

    def fetch(self, url: str, params: Mapping[str, Any] | None = None) -> requests.Response:
        """
        GET `url`, retrying only connection errors and timeouts.

        Backoff doubles from `backoff_base_seconds` (1s, 2s, 4s). Responses are
        returned whatever their status; any other transport error surfaces as
        `TmdbClientError` on the first attempt.
        """

        query = {"api_key": self.api_key, **(params or {})}
        headers = {"accept": "application/json"}
        attempts = self.max_retries + 1
        last_error: BaseException | None = None

        for attempt in range(attempts):
            self.limiter.acquire()
            try:
                return self.session.get(url, params=query, headers=headers, timeout=self.timeout_seconds)
            except _RETRYABLE_ERRORS as exc:
                last_error = exc
                if attempt < attempts - 1:
                    delay = self.backoff_base_seconds * (2**attempt)
                    logger.warning(
                        "TMDb request failed (attempt %s/%s), retrying in %.1fs: %s %s",
                        attempt + 1,
                        attempts,
                        delay,
                        url,
                        exc,
                    )
                    self._sleep(delay)
            except requests.RequestException as exc:
                raise TmdbClientError(f"TMDb request failed: {exc}", url=url) from exc

        if last_error is None:
            raise TmdbClientError("TMDb request was never attempted.", url=url)
        raise FetchExhausted(
            f"TMDb request failed after {attempts} attempts: {last_error}",
            last_error=last_error,
            attempts=attempts,
            url=url,
        ) from last_error

    def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        resp = self.fetch(url, params)
        if not 200 <= resp.status_code < 300:
            raise UpstreamHTTPError(
                f"TMDb request failed with HTTP {resp.status_code}.",
                status_code=resp.status_code,
                body_snippet=(resp.text or "")[:400],
                url=url,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise TmdbClientError(
                "TMDb returned non-JSON response.",
                status_code=resp.status_code,
                body_snippet=(resp.text or "")[:400],
                url=url,
            ) from exc

        if not isinstance(payload, dict):
            raise TmdbClientError("TMDb returned unexpected JSON shape (not an object).", url=url)
        return payload

    def fetch_trending_page(self, kind: ContentKind, page: int, *, window: str = "week") -> list[dict[str, Any]]:
        payload = self.get_json(f"trending/{kind.tmdb_path}/{window}", {"page": page, "language": "en-US"})
        results = payload.get("results")
        if not isinstance(results, list):
            return []
        return [r for r in results if isinstance(r, dict)]

    def fetch_details(
        self,
        kind: ContentKind,
        content_id: int,
        *,
        language: str,
        append_to_response: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"language": language}
        if append_to_response:
            params["append_to_response"] = append_to_response
        return self.get_json(f"{kind.tmdb_path}/{int(content_id)}", params)

    def fetch_watch_providers(self, kind: ContentKind, content_id: int) -> dict[str, Any]:
        return self.get_json(f"{kind.tmdb_path}/{int(content_id)}/watch/providers")

    def fetch_provider_catalog(self, kind: ContentKind) -> list[dict[str, Any]]:
        """Every watch provider TMDb knows for `kind`, with per-country display priorities."""

        payload = self.get_json(f"watch/providers/{kind.tmdb_path}", {"language": "en-US"})
        results = payload.get("results")
        if not isinstance(results, list):
            return []
        return [r for r in results if isinstance(r, dict)]
