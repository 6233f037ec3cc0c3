#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from scripts._sync_common import add_common_args, build_orchestrator, configure_logging, kinds_for, load_env_and_db
from catalog_sync.config import SyncValidationError, get_settings
from catalog_sync.ingestion.maintenance import refresh_provider_catalog
from catalog_sync.utils.env import load_env


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="refresh_provider_catalog",
        description="Pull TMDb's full watch-provider lists and upsert every provider into core.providers.",
    )
    add_common_args(parser)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    load_env()

    try:
        settings = get_settings()
        db = load_env_and_db(settings)
        orchestrator = build_orchestrator(db, cli_api_key=args.tmdb_api_key, settings=settings)
    except SyncValidationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    report = refresh_provider_catalog(orchestrator, kinds_for(args.content_type))
    print("Summary")
    for key, count in sorted(report.fetched.items()):
        print(f"fetched.{key}={count}")
    print(f"providers.created={report.created}")
    print(f"providers.updated={report.updated}")
    print(f"errors={len(report.errors)}")
    for error in report.errors[:10]:
        print(f"- [{error['stage']}]: {error['error']}")
    return 1 if report.errors and not report.fetched else 0


if __name__ == "__main__":
    raise SystemExit(main())
