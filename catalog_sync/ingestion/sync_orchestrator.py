from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable, Iterable, Mapping

from supabase import Client

from catalog_sync.config import BASELINE_LANGUAGE, SyncSettings, SyncValidationError, get_settings
from catalog_sync.ingestion.provider_classifier import ProviderClassifier, parse_networks, parse_watch_providers
from catalog_sync.ingestion.staleness import StaleCategory, StalenessGate, to_iso, utcnow
from catalog_sync.ingestion.translations import TranslationAggregator
from catalog_sync.ingestion.upsert import PersistResult, UpsertCoordinator
from catalog_sync.integrations.tmdb.client import TmdbCatalogClient, TmdbClientError
from catalog_sync.models.content import ContentKind, build_content_upsert
from catalog_sync.models.providers import ClassifiedFeed
from catalog_sync.repositories.content import (
    PersistenceConflict,
    RepositoryError,
    delete_all_content,
    fetch_content_row,
    fetch_content_rows,
)
from catalog_sync.repositories.providers import delete_links_for_content_type

logger = logging.getLogger(__name__)

MAX_REPORTED_FAILURES = 10
CONTENT_KIND_CHOICES = ("movie", "series", "both")


class ItemStage(StrEnum):
    PENDING = "pending"
    FETCHED = "fetched"
    TRANSLATED = "translated"
    CLASSIFIED = "classified"
    PERSISTED = "persisted"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SyncFailure:
    content_id: int | None
    kind: ContentKind
    stage: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"content_id": self.content_id, "kind": str(self.kind), "stage": self.stage, "error": self.error}


@dataclass(frozen=True)
class SyncOptions:
    content_kind: str = "both"
    movie_count: int = 250
    tv_count: int = 250
    clear_existing: bool = False
    batch_size: int = 50
    languages: tuple[str, ...] | None = None
    countries: tuple[str, ...] | None = None
    item_workers: int | None = None
    deadline_seconds: float | None = None
    prune_stale_links: bool = False

    def validate(self) -> "SyncOptions":
        if self.content_kind not in CONTENT_KIND_CHOICES:
            raise SyncValidationError(
                f"contentKind must be one of {', '.join(CONTENT_KIND_CHOICES)} (got {self.content_kind!r})."
            )
        for name in ("movie_count", "tv_count"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise SyncValidationError(f"{name} must be a non-negative integer (got {value!r}).")
        if not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise SyncValidationError(f"batch_size must be a positive integer (got {self.batch_size!r}).")
        if self.item_workers is not None and self.item_workers < 1:
            raise SyncValidationError("item_workers must be >= 1.")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise SyncValidationError("deadline_seconds must be > 0.")
        return self

    @property
    def kinds(self) -> tuple[ContentKind, ...]:
        if self.content_kind == "movie":
            return (ContentKind.MOVIE,)
        if self.content_kind == "series":
            return (ContentKind.SERIES,)
        return (ContentKind.MOVIE, ContentKind.SERIES)

    def target_for(self, kind: ContentKind) -> int:
        return self.movie_count if kind is ContentKind.MOVIE else self.tv_count


@dataclass
class ItemOutcome:
    content_id: int
    kind: ContentKind
    stage: ItemStage
    persist: PersistResult | None = None
    failure: SyncFailure | None = None
    failed_languages: int = 0
    provider_error: str | None = None


def _kind_counter() -> dict[str, int]:
    return {"movies": 0, "tv_shows": 0}


@dataclass
class SyncRun:
    imported: dict[str, int] = field(default_factory=_kind_counter)
    created: dict[str, int] = field(default_factory=_kind_counter)
    updated: dict[str, int] = field(default_factory=_kind_counter)
    unchanged: dict[str, int] = field(default_factory=_kind_counter)
    errors: dict[str, int] = field(default_factory=lambda: {"movies": 0, "tv_shows": 0, "translations": 0, "providers": 0})
    providers_created: int = 0
    providers_updated: int = 0
    links_upserted: int = 0
    links_pruned: int = 0
    cleared: dict[str, int] | None = None
    cancelled: bool = False
    failures: list[SyncFailure] = field(default_factory=list)
    finished_at: datetime | None = None

    def record_failure(self, failure: SyncFailure) -> None:
        self.failures.append(failure)
        self.errors[failure.kind.counter_key] += 1

    def record(self, outcome: ItemOutcome) -> None:
        key = outcome.kind.counter_key
        self.errors["translations"] += outcome.failed_languages
        if outcome.provider_error:
            self.errors["providers"] += 1
            self.failures.append(SyncFailure(outcome.content_id, outcome.kind, "providers", outcome.provider_error))
        if outcome.stage is ItemStage.CANCELLED:
            self.cancelled = True
            return
        if outcome.failure is not None:
            self.record_failure(outcome.failure)
            return
        if outcome.persist is None:
            return
        result = outcome.persist
        self.imported[key] += 1
        bucket = {"created": self.created, "updated": self.updated}.get(result.item_action, self.unchanged)
        bucket[key] += 1
        self.providers_created += result.providers_created
        self.providers_updated += result.providers_updated
        self.links_upserted += result.links_upserted
        self.links_pruned += result.links_pruned

    def to_dict(self, *, max_failures: int = MAX_REPORTED_FAILURES) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "imported": dict(self.imported),
            "created": dict(self.created),
            "updated": dict(self.updated),
            "unchanged": dict(self.unchanged),
            "errors": dict(self.errors),
            "providers": {"updated": self.providers_updated, "created": self.providers_created},
            "links": {"upserted": self.links_upserted, "pruned": self.links_pruned},
            "cancelled": self.cancelled,
            "failures": [f.to_dict() for f in self.failures[:max_failures]],
            "timestamp": to_iso(self.finished_at or utcnow()),
        }
        if self.cleared is not None:
            payload["cleared"] = dict(self.cleared)
        return payload


def failure_response(error: str | BaseException, *, now: datetime | None = None) -> dict[str, Any]:
    return {"success": False, "error": str(error), "timestamp": to_iso(now or utcnow())}


class SyncOrchestrator:
    """
    Drives trending import end to end.

    Every catalog call goes through `client`, whose limiter is the one pacing
    point for the run no matter how many item or language workers are active.
    """

    def __init__(
        self,
        client: TmdbCatalogClient,
        db: Client,
        settings: SyncSettings | None = None,
        *,
        translator: TranslationAggregator | None = None,
        classifier: ProviderClassifier | None = None,
        gate: StalenessGate | None = None,
        coordinator: UpsertCoordinator | None = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock
        self.monotonic = monotonic
        self.translator = translator or TranslationAggregator(client, max_workers=self.settings.language_workers)
        self.classifier = classifier or ProviderClassifier.from_path(self.settings.provider_rules_path)
        self.gate = gate or StalenessGate.from_hours(self.settings.staleness_hours, clock=clock)
        self.coordinator = coordinator or UpsertCoordinator(db, clock=clock)

    def _stop_check(self, cancel: threading.Event | None, deadline: float | None) -> Callable[[], bool]:
        def should_stop() -> bool:
            if cancel is not None and cancel.is_set():
                return True
            return deadline is not None and self.monotonic() >= deadline

        return should_stop

    def _configure(self, options: SyncOptions) -> None:
        self.coordinator.prune_stale_links = options.prune_stale_links
        self.coordinator.chunk_size = options.batch_size

    def _deadline(self, options: SyncOptions) -> float | None:
        if options.deadline_seconds is None:
            return None
        return self.monotonic() + options.deadline_seconds

    def run_import(self, options: SyncOptions, cancel: threading.Event | None = None) -> SyncRun:
        options.validate()
        sync_run = SyncRun()
        if options.clear_existing:
            sync_run.cleared = self.clear(options.kinds)

        deadline = self._deadline(options)
        for kind in options.kinds:
            self.run(kind, options.target_for(kind), options, cancel=cancel, sync_run=sync_run, deadline=deadline)
            if sync_run.cancelled:
                break
        sync_run.finished_at = self.clock()
        return sync_run

    def clear(self, kinds: Iterable[ContentKind]) -> dict[str, int]:
        """Delete links first, then content rows, for each kind."""

        cleared: dict[str, int] = {}
        for kind in kinds:
            links = delete_links_for_content_type(self.db, kind.content_type)
            rows = delete_all_content(self.db, kind)
            cleared[kind.counter_key] = rows
            cleared[f"{kind.counter_key}_links"] = links
            logger.info("Cleared %s rows and %s provider links for %s", rows, links, kind.table)
        return cleared

    def run(
        self,
        kind: ContentKind | str,
        target_count: int,
        options: SyncOptions | None = None,
        *,
        cancel: threading.Event | None = None,
        sync_run: SyncRun | None = None,
        deadline: float | None = None,
    ) -> SyncRun:
        kind = ContentKind.parse(kind)
        options = (options or SyncOptions(content_kind="movie" if kind is ContentKind.MOVIE else "series")).validate()
        sync_run = sync_run if sync_run is not None else SyncRun()
        self._configure(options)
        if deadline is None:
            deadline = self._deadline(options)
        should_stop = self._stop_check(cancel, deadline)

        page_size = self.settings.page_size
        pages = math.ceil(target_count / page_size) if target_count > 0 else 0
        imported = 0
        # Trending lists shift between page requests, so an id can show up twice.
        seen: set[int] = set()
        logger.info("Importing up to %s trending %s across %s page(s)", target_count, kind, pages)

        for page in range(1, pages + 1):
            if imported >= target_count:
                break
            if should_stop():
                sync_run.cancelled = True
                break
            try:
                results = self.client.fetch_trending_page(kind, page)
            except TmdbClientError as exc:
                logger.error("Trending page fetch failed: kind=%s page=%s error=%s", kind, page, exc)
                sync_run.record_failure(SyncFailure(None, kind, "page", str(exc)))
                continue

            ids = [r["id"] for r in results if isinstance(r.get("id"), int)]
            if not ids:
                break
            candidates = deque(dict.fromkeys(i for i in ids if i not in seen))
            seen.update(candidates)
            logger.info(
                "Page %s/%s of trending %s: %s item(s), %s repeat(s) skipped",
                page,
                pages,
                kind,
                len(candidates),
                len(ids) - len(candidates),
            )
            if not candidates:
                continue

            try:
                existing_rows = fetch_content_rows(self.db, kind, candidates, chunk_size=options.batch_size)
            except RepositoryError as exc:
                logger.error("Existing row lookup failed: kind=%s page=%s error=%s", kind, page, exc)
                sync_run.record_failure(SyncFailure(None, kind, "page", str(exc)))
                continue

            # Failed items don't count towards the target, so later items on the page fill in.
            while candidates and imported < target_count:
                if should_stop():
                    sync_run.cancelled = True
                    break
                batch = [candidates.popleft() for _ in range(min(target_count - imported, len(candidates)))]
                for outcome in self._process_batch(kind, batch, existing_rows, options, should_stop):
                    sync_run.record(outcome)
                    if outcome.stage is ItemStage.PERSISTED:
                        imported += 1

            if sync_run.cancelled:
                break

        logger.info("Imported %s/%s trending %s", imported, target_count, kind)
        sync_run.finished_at = self.clock()
        return sync_run

    def sync_item(self, kind: ContentKind | str, content_id: int, options: SyncOptions | None = None) -> SyncRun:
        """Run the full per-item flow for one catalog id."""

        kind = ContentKind.parse(kind)
        options = options or SyncOptions(content_kind="movie" if kind is ContentKind.MOVIE else "series")
        self._configure(options)
        sync_run = SyncRun()
        existing = fetch_content_row(self.db, kind, content_id)
        outcome = self.process_item(kind, int(content_id), existing, options, lambda: False)
        sync_run.record(outcome)
        sync_run.finished_at = self.clock()
        return sync_run

    def _process_batch(
        self,
        kind: ContentKind,
        content_ids: list[int],
        existing_rows: Mapping[int, Mapping[str, Any]],
        options: SyncOptions,
        should_stop: Callable[[], bool],
    ) -> list[ItemOutcome]:
        workers = options.item_workers or self.settings.item_workers
        if workers <= 1 or len(content_ids) <= 1:
            outcomes = []
            for content_id in content_ids:
                outcome = self.process_item(kind, content_id, existing_rows.get(content_id), options, should_stop)
                outcomes.append(outcome)
                if outcome.stage is ItemStage.CANCELLED:
                    break
            return outcomes

        outcomes = []
        with ThreadPoolExecutor(max_workers=min(workers, len(content_ids))) as pool:
            futures = {
                pool.submit(self.process_item, kind, content_id, existing_rows.get(content_id), options, should_stop): content_id
                for content_id in content_ids
            }
            for fut in as_completed(futures):
                outcomes.append(fut.result())
        return outcomes

    def process_item(
        self,
        kind: ContentKind,
        content_id: int,
        existing_row: Mapping[str, Any] | None,
        options: SyncOptions,
        should_stop: Callable[[], bool],
    ) -> ItemOutcome:
        """
        pending -> fetched -> translated -> classified -> persisted.

        Cancellation is honoured between stages up to persistence; once the
        write starts the item runs to completion.
        """

        stage = ItemStage.PENDING
        outcome = ItemOutcome(content_id=content_id, kind=kind, stage=stage)
        languages = options.languages or self.settings.languages
        countries = options.countries or self.settings.countries
        try:
            if should_stop():
                outcome.stage = ItemStage.CANCELLED
                return outcome
            details = self.client.fetch_details(
                kind, content_id, language=BASELINE_LANGUAGE, append_to_response="keywords"
            )
            stage = ItemStage.FETCHED

            if should_stop():
                outcome.stage = ItemStage.CANCELLED
                return outcome
            bundle = self.translator.translate(content_id, kind, languages, seed={BASELINE_LANGUAGE: details})
            outcome.failed_languages = len(bundle.failed_languages)
            stage = ItemStage.TRANSLATED

            now = self.clock()
            feed: ClassifiedFeed | None = None
            if self.gate.is_stale(existing_row, StaleCategory.PROVIDERS, now):
                feed, outcome.provider_error = self.classify(kind, content_id, details, countries)
            stage = ItemStage.CLASSIFIED

            if should_stop():
                outcome.stage = ItemStage.CANCELLED
                return outcome
            item = build_content_upsert(kind, details, translations=bundle)
            item = replace(
                item,
                ratings_last_updated=(
                    to_iso(now) if self.gate.is_stale(existing_row, StaleCategory.RATINGS, now) else None
                ),
                providers_last_updated=to_iso(now) if feed is not None and not outcome.provider_error else None,
            )
            outcome.persist = self.coordinator.persist(item, feed, existing=existing_row)
            outcome.stage = ItemStage.PERSISTED
            return outcome
        except PersistenceConflict as exc:
            logger.error("Persistence conflict (key derivation): kind=%s id=%s error=%s", kind, content_id, exc)
            return self._failed(outcome, stage, exc)
        except (TmdbClientError, RepositoryError, ValueError) as exc:
            logger.error("Item sync failed: kind=%s id=%s stage=%s error=%s", kind, content_id, stage, exc)
            return self._failed(outcome, stage, exc)

    @staticmethod
    def _failed(outcome: ItemOutcome, stage: ItemStage, exc: BaseException) -> ItemOutcome:
        outcome.stage = ItemStage.FAILED
        outcome.failure = SyncFailure(outcome.content_id, outcome.kind, str(stage), str(exc))
        return outcome

    def classify(
        self,
        kind: ContentKind,
        content_id: int,
        details: Mapping[str, Any],
        countries: Iterable[str],
    ) -> tuple[ClassifiedFeed, str | None]:
        """
        Read both provider feeds. Networks come from the detail payload; watch
        providers need one more call whose failure is returned, not raised.
        """

        feed = parse_networks(
            details,
            content_id=content_id,
            kind=kind,
            default_country=self.settings.network_default_country,
        )
        try:
            payload = self.client.fetch_watch_providers(kind, content_id)
        except TmdbClientError as exc:
            logger.warning("Watch provider fetch failed: kind=%s id=%s error=%s", kind, content_id, exc)
            return feed, str(exc)
        feed.extend(
            parse_watch_providers(
                payload,
                content_id=content_id,
                kind=kind,
                countries=countries,
                classifier=self.classifier,
            )
        )
        return feed, None
