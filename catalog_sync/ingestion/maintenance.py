"""
Maintenance passes over content that is already stored.

These reuse the import pipeline's pieces: the shared client (and limiter),
the staleness gate, the merge policy and the provider rule table.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from supabase import Client

from catalog_sync.ingestion.provider_classifier import ProviderClassifier, parse_provider_catalog
from catalog_sync.ingestion.staleness import StaleCategory, to_iso
from catalog_sync.ingestion.sync_orchestrator import SyncFailure, SyncOrchestrator
from catalog_sync.integrations.tmdb.client import TmdbClientError
from catalog_sync.models.content import ContentKind, ContentUpsert
from catalog_sync.models.providers import (
    ProviderKey,
    ProviderType,
    ProviderUpsert,
    SourceType,
    merge_provider_upserts,
)
from catalog_sync.repositories.content import (
    RepositoryError,
    fetch_content_row,
    fetch_rows_missing_translations,
    iter_content_rows,
)
from catalog_sync.repositories.providers import (
    bulk_update_provider_type,
    delete_watch_links_for_providers,
    fetch_all_providers,
    update_supported_countries_by_name,
)

logger = logging.getLogger(__name__)

RATING_FIELDS = ("popularity", "vote_average", "vote_count", "status")


@dataclass
class MaintenanceReport:
    examined: int = 0
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[SyncFailure] = field(default_factory=list)

    def to_dict(self, *, max_failures: int = 10) -> dict[str, Any]:
        return {
            "success": True,
            "examined": self.examined,
            "processed": self.processed,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "failures": [f.to_dict() for f in self.failures[:max_failures]],
        }


@dataclass
class RefreshResult:
    content_id: int
    kind: ContentKind
    refreshed: tuple[str, ...] = ()
    wrote: bool = False
    error: str | None = None


class ContentRefresher:
    def __init__(self, orchestrator: SyncOrchestrator) -> None:
        self.orchestrator = orchestrator

    @property
    def db(self) -> Client:
        return self.orchestrator.db

    def refresh(
        self,
        kind: ContentKind | str,
        content_id: int,
        *,
        existing: Mapping[str, Any] | None = None,
        countries: Iterable[str] | None = None,
    ) -> RefreshResult:
        """
        Re-fetch only the stale categories of one stored item.

        Nothing is requested upstream when neither category is stale.
        """

        kind = ContentKind.parse(kind)
        orch = self.orchestrator
        row = existing if existing is not None else fetch_content_row(self.db, kind, content_id)
        result = RefreshResult(content_id=int(content_id), kind=kind)
        if row is None:
            result.error = "not stored"
            return result

        now = orch.clock()
        stale = orch.gate.stale_categories(row, now)
        if not stale:
            return result

        details: Mapping[str, Any] = {}
        fields: dict[str, Any] = {}
        ratings_stamp = None
        needs_details = StaleCategory.RATINGS in stale or (
            StaleCategory.PROVIDERS in stale and kind is ContentKind.SERIES
        )
        if needs_details:
            details = orch.client.fetch_details(kind, content_id, language="en")
            if StaleCategory.RATINGS in stale:
                fields = {name: details.get(name) for name in RATING_FIELDS}
                ratings_stamp = to_iso(now)

        feed = None
        providers_stamp = None
        if StaleCategory.PROVIDERS in stale:
            feed, provider_error = orch.classify(
                kind, int(content_id), details, countries or orch.settings.countries
            )
            if provider_error:
                result.error = provider_error
            else:
                providers_stamp = to_iso(now)

        item = ContentUpsert(
            kind=kind,
            content_id=int(content_id),
            fields=fields,
            providers_last_updated=providers_stamp,
            ratings_last_updated=ratings_stamp,
        )
        persisted = orch.coordinator.persist(item, feed, existing=row)
        result.refreshed = tuple(sorted(str(c) for c in stale))
        result.wrote = persisted.wrote_anything
        return result

    def refresh_stale(self, kind: ContentKind | str, *, limit: int = 50) -> MaintenanceReport:
        kind = ContentKind.parse(kind)
        gate = self.orchestrator.gate
        report = MaintenanceReport()
        now = self.orchestrator.clock()
        for row in iter_content_rows(self.db, kind):
            if report.processed >= limit:
                break
            report.examined += 1
            if not gate.stale_categories(row, now):
                report.skipped += 1
                continue
            report.processed += 1
            content_id = row["id"]
            try:
                outcome = self.refresh(kind, content_id, existing=row)
            except (TmdbClientError, RepositoryError, ValueError) as exc:
                logger.error("Refresh failed: kind=%s id=%s error=%s", kind, content_id, exc)
                report.failed += 1
                report.failures.append(SyncFailure(content_id, kind, "refresh", str(exc)))
                continue
            if outcome.error:
                report.failures.append(SyncFailure(content_id, kind, "providers", outcome.error))
            if outcome.wrote:
                report.updated += 1
        logger.info(
            "Stale refresh for %s: examined=%s processed=%s updated=%s failed=%s",
            kind.table,
            report.examined,
            report.processed,
            report.updated,
            report.failed,
        )
        return report

    def backfill_translations(
        self,
        kind: ContentKind | str,
        *,
        batch_size: int = 50,
        languages: Iterable[str] | None = None,
    ) -> MaintenanceReport:
        """Fill translation maps for stored items that have none, repairing bad slugs on the way."""

        kind = ContentKind.parse(kind)
        orch = self.orchestrator
        languages = tuple(languages or orch.settings.languages)
        report = MaintenanceReport()
        for row in fetch_rows_missing_translations(self.db, kind, limit=batch_size):
            report.examined += 1
            report.processed += 1
            content_id = row["id"]
            bundle = orch.translator.translate(content_id, kind, languages)
            for language, error in sorted(bundle.failed_languages.items()):
                report.failures.append(SyncFailure(content_id, kind, f"translation:{language}", error))
            if not bundle.languages:
                report.failed += 1
                continue
            item = ContentUpsert(kind=kind, content_id=content_id, translations=bundle.as_columns(kind))
            try:
                persisted = orch.coordinator.persist(item, existing=row)
            except RepositoryError as exc:
                logger.error("Translation backfill write failed: kind=%s id=%s error=%s", kind, content_id, exc)
                report.failed += 1
                report.failures.append(SyncFailure(content_id, kind, "persisted", str(exc)))
                continue
            if persisted.item_action != "unchanged":
                report.updated += 1
        logger.info(
            "Translation backfill for %s: processed=%s updated=%s failed=%s",
            kind.table,
            report.processed,
            report.updated,
            report.failed,
        )
        return report


@dataclass
class ReclassifyReport:
    examined: int = 0
    # source_type -> provider_type -> ids
    changes: dict[str, dict[str, list[int]]] = field(default_factory=dict)
    purged_links: int = 0
    dry_run: bool = False

    @property
    def changed(self) -> int:
        return sum(len(ids) for by_type in self.changes.values() for ids in by_type.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "dry_run": self.dry_run,
            "examined": self.examined,
            "changed": self.changed,
            "changes": {
                source: {provider_type: sorted(ids) for provider_type, ids in sorted(by_type.items())}
                for source, by_type in sorted(self.changes.items())
            },
            "purged_links": self.purged_links,
        }


def reclassify_providers(
    db: Client,
    classifier: ProviderClassifier,
    *,
    dry_run: bool = False,
    purge_misfiled_links: bool = False,
) -> ReclassifyReport:
    """
    Re-run the rule table over stored providers and bulk-update changed types.

    Network rows are always `network`; watch-provider rows follow the rules.
    Links are never dropped and reinserted, and running it twice changes
    nothing the second time. With `purge_misfiled_links`, where-to-watch links
    pointing at watch providers the rules now call broadcast networks are
    deleted.
    """

    report = ReclassifyReport(dry_run=dry_run)
    grouped: dict[tuple[str, str], list[int]] = defaultdict(list)
    misfiled: list[int] = []
    for row in fetch_all_providers(db):
        provider_id = row.get("id")
        if not isinstance(provider_id, int):
            continue
        report.examined += 1
        source_type = str(row.get("source_type") or SourceType.WATCH_PROVIDER)
        if source_type == SourceType.NETWORK:
            desired = ProviderType.NETWORK
        else:
            _, desired = classifier.classify(row)
            if desired is ProviderType.NETWORK:
                misfiled.append(provider_id)
        if row.get("provider_type") != str(desired):
            grouped[(source_type, str(desired))].append(provider_id)

    for (source_type, provider_type), ids in grouped.items():
        report.changes.setdefault(source_type, {})[provider_type] = ids
    if not dry_run:
        for (source_type, provider_type), ids in sorted(grouped.items()):
            bulk_update_provider_type(db, ids, provider_type, source_type=SourceType(source_type))
            logger.info("Reclassified %s %s provider(s) as %s", len(ids), source_type, provider_type)
        if purge_misfiled_links and misfiled:
            report.purged_links = delete_watch_links_for_providers(db, misfiled)
    return report


@dataclass
class ProviderCatalogReport:
    fetched: dict[str, int] = field(default_factory=dict)
    created: int = 0
    updated: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "fetched": dict(self.fetched),
            "providers": {"created": self.created, "updated": self.updated},
            "errors": list(self.errors),
        }


def refresh_provider_catalog(
    orchestrator: SyncOrchestrator,
    kinds: Iterable[ContentKind] = (ContentKind.MOVIE, ContentKind.SERIES),
) -> ProviderCatalogReport:
    """
    Pull TMDb's global watch-provider lists and upsert every provider.

    Uses the run's client (so the shared limiter), the rule table and the
    coordinator's locked provider path; one kind's failure leaves the other
    kind's providers intact.
    """

    report = ProviderCatalogReport()
    wanted: dict[ProviderKey, ProviderUpsert] = {}
    for kind in kinds:
        try:
            entries = orchestrator.client.fetch_provider_catalog(kind)
        except TmdbClientError as exc:
            logger.error("Provider catalog fetch failed: kind=%s error=%s", kind, exc)
            report.errors.append({"stage": f"catalog:{kind.counter_key}", "error": str(exc)})
            continue
        report.fetched[kind.counter_key] = len(entries)
        for key, provider in parse_provider_catalog(entries, classifier=orchestrator.classifier).items():
            wanted[key] = merge_provider_upserts(wanted.get(key), provider)

    if wanted:
        try:
            report.created, report.updated = orchestrator.coordinator.persist_providers(wanted.values())
        except RepositoryError as exc:
            logger.error("Provider catalog write failed: %s", exc)
            report.errors.append({"stage": "persisted", "error": str(exc)})
    logger.info(
        "Provider catalog refresh: fetched=%s created=%s updated=%s errors=%s",
        report.fetched,
        report.created,
        report.updated,
        len(report.errors),
    )
    return report


@dataclass
class CountryUpdateReport:
    updated: int = 0
    unmatched: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "updated": self.updated,
            "unmatched": list(self.unmatched),
            "errors": list(self.errors),
        }


def update_provider_countries(db: Client, updates: Iterable[Mapping[str, Any]]) -> CountryUpdateReport:
    """
    Replace the supported countries of watch providers matched by name.

    Each update is `{"name", "countries"}`; the name matches case-insensitively
    as a substring, so "Netflix" also covers "Netflix basic with Ads". A bad or
    failing entry is recorded and the rest still run.
    """

    report = CountryUpdateReport()
    for update in updates:
        name = str(update.get("name") or "").strip()
        countries = update.get("countries")
        if not name or not isinstance(countries, (list, tuple)):
            report.errors.append({"name": name, "error": "name and a list of countries are required"})
            continue
        try:
            matched = update_supported_countries_by_name(db, name, countries)
        except RepositoryError as exc:
            logger.error("Supported countries update failed: provider=%s error=%s", name, exc)
            report.errors.append({"name": name, "error": str(exc)})
            continue
        if matched:
            report.updated += 1
            logger.info("Updated %s provider row(s) matching %r with %s countries", matched, name, len(countries))
        else:
            report.unmatched.append(name)
    return report
