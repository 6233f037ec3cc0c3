from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Iterable, Mapping, Protocol

from catalog_sync.config import BASELINE_LANGUAGE
from catalog_sync.integrations.tmdb.client import TmdbClientError
from catalog_sync.models.content import ContentKind, TranslationBundle

logger = logging.getLogger(__name__)


class DetailFetcher(Protocol):
    def fetch_details(
        self,
        kind: ContentKind,
        content_id: int,
        *,
        language: str,
        append_to_response: str | None = None,
    ) -> dict[str, Any]: ...


def normalize_languages(languages: Iterable[str], *, baseline: str = BASELINE_LANGUAGE) -> tuple[str, ...]:
    """
    Strip, lowercase and dedupe language codes, keeping first-seen order.

    The baseline language is always requested first since slug fallback and UI
    defaults read it.
    """

    ordered: list[str] = [baseline]
    for code in languages:
        cleaned = str(code or "").strip().lower()
        if cleaned and cleaned not in ordered:
            ordered.append(cleaned)
    return tuple(ordered)


class TranslationAggregator:
    def __init__(self, client: DetailFetcher, *, max_workers: int = 4) -> None:
        self.client = client
        self.max_workers = max(1, int(max_workers))

    def _fetch_one(self, kind: ContentKind, content_id: int, language: str) -> dict[str, Any]:
        return self.client.fetch_details(kind, content_id, language=language)

    def translate(
        self,
        content_id: int,
        kind: ContentKind,
        languages: Iterable[str],
        *,
        seed: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> TranslationBundle:
        requested = normalize_languages(languages)
        bundle = TranslationBundle(requested=requested)
        seed = seed or {}

        pending: list[str] = []
        for language in requested:
            if language in seed:
                bundle.add(language, seed[language], kind)
            else:
                pending.append(language)

        if not pending:
            return bundle

        # Calls are paced by the client's shared limiter, not here.
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as pool:
            futures = {pool.submit(self._fetch_one, kind, content_id, language): language for language in pending}
            for fut in as_completed(futures):
                language = futures[fut]
                try:
                    payload = fut.result()
                except (TmdbClientError, ValueError) as exc:
                    logger.warning(
                        "Translation fetch failed: kind=%s id=%s language=%s error=%s",
                        kind,
                        content_id,
                        language,
                        exc,
                    )
                    bundle.failed_languages[language] = str(exc)
                    continue
                bundle.add(language, payload, kind)

        return bundle
