#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from scripts._sync_common import add_common_args, build_orchestrator, configure_logging, kinds_for, load_env_and_db
from catalog_sync.config import SyncValidationError, get_settings
from catalog_sync.ingestion.maintenance import ContentRefresher
from catalog_sync.utils.env import load_env


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="backfill_content_translations",
        description="Fetch per-language titles/overviews for stored content that has no translations yet.",
    )
    add_common_args(parser)
    parser.add_argument("--batch-size", type=int, default=50, help="Max items per content type.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    load_env()

    try:
        settings = get_settings()
        db = load_env_and_db(settings)
        refresher = ContentRefresher(build_orchestrator(db, cli_api_key=args.tmdb_api_key, settings=settings))
    except SyncValidationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    failures = []
    print("Summary")
    for kind in kinds_for(args.content_type):
        report = refresher.backfill_translations(kind, batch_size=args.batch_size)
        print(f"{kind.table}.processed={report.processed}")
        print(f"{kind.table}.updated={report.updated}")
        print(f"{kind.table}.failed={report.failed}")
        failures.extend(report.failures)

    print(f"failures={len(failures)}")
    for failure in failures[:10]:
        print(f"- {failure.kind} {failure.content_id} [{failure.stage}]: {failure.error}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
