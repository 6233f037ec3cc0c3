from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from supabase import Client

from catalog_sync.ingestion.merge_policy import merge_content, stamp_patch
from catalog_sync.ingestion.provider_classifier import watch_links_only
from catalog_sync.ingestion.staleness import to_iso, utcnow
from catalog_sync.models.content import ContentKind, ContentUpsert
from catalog_sync.models.providers import ClassifiedFeed, ProviderUpsert
from catalog_sync.repositories.content import fetch_content_row, update_content_row, upsert_content_row
from catalog_sync.repositories.providers import (
    delete_links,
    fetch_link_keys,
    fetch_providers_by_keys,
    insert_provider,
    update_provider,
    upsert_provider_links,
)

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class PersistResult:
    content_id: int
    kind: ContentKind
    item_action: str = "unchanged"
    providers_created: int = 0
    providers_updated: int = 0
    links_upserted: int = 0
    links_pruned: int = 0
    stamps: dict[str, str] = field(default_factory=dict)

    @property
    def wrote_anything(self) -> bool:
        return bool(
            self.item_action != "unchanged"
            or self.providers_created
            or self.providers_updated
            or self.links_upserted
            or self.links_pruned
            or self.stamps
        )


def provider_insert_row(provider: ProviderUpsert) -> dict[str, Any]:
    return {
        "id": provider.provider_id,
        "source_type": str(provider.source_type),
        "name": provider.name,
        "logo_path": provider.logo_path,
        "display_priority": provider.display_priority,
        "provider_type": str(provider.provider_type),
        "is_active": provider.is_active,
        "supported_countries": sorted(provider.supported_countries),
        "country_of_origin": provider.country_of_origin,
    }


def provider_update_patch(existing: Mapping[str, Any], provider: ProviderUpsert) -> dict[str, Any]:
    """
    Mutable fields only; supported countries are unioned.

    The stored type is left alone so that only the reclassification pass
    changes it.
    """

    desired: dict[str, Any] = {
        "name": provider.name or existing.get("name"),
        "logo_path": provider.logo_path or existing.get("logo_path"),
        "is_active": bool(existing.get("is_active")) or provider.is_active,
        "supported_countries": sorted(set(existing.get("supported_countries") or ()) | provider.supported_countries),
    }
    if provider.display_priority is not None:
        desired["display_priority"] = provider.display_priority
    if provider.country_of_origin and not existing.get("country_of_origin"):
        desired["country_of_origin"] = provider.country_of_origin
    return {k: v for k, v in desired.items() if existing.get(k) != v}


class UpsertCoordinator:
    def __init__(
        self,
        db: Client,
        *,
        clock: Callable[[], datetime] = utcnow,
        chunk_size: int = 100,
        prune_stale_links: bool = False,
    ) -> None:
        self.db = db
        self.clock = clock
        self.chunk_size = chunk_size
        self.prune_stale_links = prune_stale_links
        # Items running in parallel share providers (one Netflix row for many titles).
        self._provider_lock = threading.Lock()

    def persist(
        self,
        item: ContentUpsert,
        feed: ClassifiedFeed | None = None,
        *,
        existing: Mapping[str, Any] | None | object = _MISSING,
    ) -> PersistResult:
        """
        Write one item: the content row, then providers, then links, then stamps.

        Stamps go last so a crash part-way leaves the category stale and the
        next run retries it.
        """

        kind = item.kind
        current = fetch_content_row(self.db, kind, item.content_id) if existing is _MISSING else existing
        result = PersistResult(content_id=item.content_id, kind=kind)

        outcome = merge_content(current, item, include_stamps=False)
        if not outcome.is_noop:
            upsert_content_row(self.db, kind, outcome.row)
            result.item_action = "created" if current is None else "updated"

        if feed is not None:
            created, updated = self.persist_providers(feed.providers.values())
            result.providers_created = created
            result.providers_updated = updated
            now_iso = to_iso(self.clock())
            rows = [link.to_row(last_updated=now_iso) for link in feed.link_list]
            result.links_upserted = upsert_provider_links(self.db, rows)
            if self.prune_stale_links and feed.watch_countries is not None:
                result.links_pruned = self._prune(item, feed)

        patch = stamp_patch(
            current,
            {
                "providers_last_updated": item.providers_last_updated,
                "ratings_last_updated": item.ratings_last_updated,
            },
        )
        if patch:
            update_content_row(self.db, kind, item.content_id, patch)
            result.stamps = patch

        logger.debug(
            "Persisted %s %s: item=%s providers=+%s/~%s links=%s pruned=%s stamps=%s",
            kind,
            item.content_id,
            result.item_action,
            result.providers_created,
            result.providers_updated,
            result.links_upserted,
            result.links_pruned,
            sorted(result.stamps),
        )
        return result

    def persist_providers(self, providers: Iterable[ProviderUpsert]) -> tuple[int, int]:
        """Look up by `(source_type, id)`, then update or insert. Returns `(created, updated)`."""

        wanted = {p.key: p for p in providers}
        if not wanted:
            return 0, 0
        created = updated = 0
        with self._provider_lock:
            existing = fetch_providers_by_keys(self.db, wanted.keys(), chunk_size=self.chunk_size)
            for key, provider in wanted.items():
                row = existing.get(key)
                if row is None:
                    insert_provider(self.db, provider_insert_row(provider))
                    created += 1
                    continue
                patch = provider_update_patch(row, provider)
                if patch:
                    update_provider(self.db, key, patch)
                    updated += 1
        return created, updated

    def _prune(self, item: ContentUpsert, feed: ClassifiedFeed) -> int:
        countries = feed.watch_countries or frozenset()
        current = {
            (link.country_code, link.monetization_type, link.provider_id)
            for link in watch_links_only(feed.link_list)
        }
        stored = fetch_link_keys(self.db, content_id=item.content_id, content_type=item.kind.content_type)
        stale: dict[tuple[str, str], list[int]] = defaultdict(list)
        for country, monetization, provider_id in stored - current:
            if country in countries:
                stale[(country, monetization)].append(provider_id)

        pruned = 0
        for (country, monetization), provider_ids in sorted(stale.items()):
            pruned += delete_links(
                self.db,
                content_id=item.content_id,
                content_type=item.kind.content_type,
                country_code=country,
                monetization_type=monetization,
                provider_ids=sorted(provider_ids),
            )
        return pruned
