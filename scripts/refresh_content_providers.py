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
        prog="refresh_content_providers",
        description="Re-fetch ratings and watch providers for stored content whose data is older than the staleness window.",
    )
    add_common_args(parser)
    parser.add_argument("--limit", type=int, default=50, help="Max stale items per content type.")
    parser.add_argument("--content-id", type=int, default=None, help="Refresh one item (needs --content-type).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    load_env()

    kinds = kinds_for(args.content_type)
    if args.content_id is not None and len(kinds) != 1:
        print("ERROR: --content-id requires --content-type movie or tv_show", file=sys.stderr)
        return 2

    try:
        settings = get_settings()
        db = load_env_and_db(settings)
        refresher = ContentRefresher(build_orchestrator(db, cli_api_key=args.tmdb_api_key, settings=settings))
    except SyncValidationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    if args.content_id is not None:
        result = refresher.refresh(kinds[0], args.content_id)
        print("Summary")
        print(f"content_id={result.content_id}")
        print(f"refreshed={','.join(result.refreshed) or '-'}")
        print(f"wrote={result.wrote}")
        if result.error:
            print(f"error={result.error}")
        return 0

    failures = []
    print("Summary")
    for kind in kinds:
        report = refresher.refresh_stale(kind, limit=args.limit)
        print(f"{kind.table}.examined={report.examined}")
        print(f"{kind.table}.refreshed={report.processed}")
        print(f"{kind.table}.updated={report.updated}")
        print(f"{kind.table}.failed={report.failed}")
        failures.extend(report.failures)

    print(f"failures={len(failures)}")
    for failure in failures[:10]:
        print(f"- {failure.kind} {failure.content_id} [{failure.stage}]: {failure.error}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
