#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from scripts._sync_common import build_orchestrator, configure_logging, load_env_and_db, print_summary
from catalog_sync.config import SyncValidationError, get_settings
from catalog_sync.ingestion.sync_orchestrator import SyncOptions
from catalog_sync.utils.env import load_env


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="import_trending_content",
        description="Import this week's trending TMDb movies/series with translations and providers.",
    )
    parser.add_argument("--content-kind", choices=("movie", "series", "both"), default="both")
    parser.add_argument("--movie-count", type=int, default=250)
    parser.add_argument("--tv-count", type=int, default=250)
    parser.add_argument("--batch-size", type=int, default=50, help="Chunk size for bulk store lookups.")
    parser.add_argument("--clear", action="store_true", help="Delete stored content and links first.")
    parser.add_argument("--languages", default=None, help="Comma list overriding SYNC_LANGUAGES.")
    parser.add_argument("--countries", default=None, help="Comma list overriding SYNC_COUNTRIES.")
    parser.add_argument("--item-workers", type=int, default=None)
    parser.add_argument("--deadline-seconds", type=float, default=None)
    parser.add_argument("--prune-stale-links", action="store_true")
    parser.add_argument("--tmdb-api-key", default=None, help="Used only when TMDB_API_KEY is not set.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def _csv(value: str | None) -> tuple[str, ...] | None:
    if not value:
        return None
    parts = tuple(p.strip() for p in value.split(",") if p.strip())
    return parts or None


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    load_env()

    try:
        options = SyncOptions(
            content_kind=args.content_kind,
            movie_count=args.movie_count,
            tv_count=args.tv_count,
            clear_existing=bool(args.clear),
            batch_size=args.batch_size,
            languages=_csv(args.languages),
            countries=tuple(c.upper() for c in _csv(args.countries) or ()) or None,
            item_workers=args.item_workers,
            deadline_seconds=args.deadline_seconds,
            prune_stale_links=bool(args.prune_stale_links),
        ).validate()
        settings = get_settings()
        db = load_env_and_db(settings)
        orchestrator = build_orchestrator(db, cli_api_key=args.tmdb_api_key, settings=settings)
    except SyncValidationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    result = orchestrator.run_import(options).to_dict()
    print_summary(result, failures=result["failures"])
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
