#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from scripts._sync_common import configure_logging, load_env_and_db
from catalog_sync.config import get_settings
from catalog_sync.ingestion.maintenance import reclassify_providers
from catalog_sync.ingestion.provider_classifier import ProviderClassifier, ProviderRuleError
from catalog_sync.utils.env import load_env


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="reclassify_providers",
        description="Re-apply the provider rule table to core.providers (bulk update, links untouched).",
    )
    parser.add_argument("--rules", default=None, help="JSON rule table (defaults to PROVIDER_RULES_PATH or built-ins).")
    parser.add_argument("--explain", default=None, help="Print the rule matching this provider name and exit.")
    parser.add_argument(
        "--purge-misfiled-links",
        action="store_true",
        help="Delete where-to-watch links that point at watch providers the rules classify as networks.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    load_env()

    try:
        classifier = ProviderClassifier.from_path(args.rules or get_settings().provider_rules_path)
    except ProviderRuleError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    if args.explain:
        rule = classifier.explain(args.explain)
        if rule is None:
            print(f"{args.explain!r} -> streaming (no rule matched)")
        else:
            print(f"{args.explain!r} -> {rule.provider_type} (rule {rule.name})")
        return 0

    db = load_env_and_db()
    report = reclassify_providers(
        db,
        classifier,
        dry_run=bool(args.dry_run),
        purge_misfiled_links=bool(args.purge_misfiled_links),
    )

    print("Summary")
    print(f"dry_run={report.dry_run}")
    print(f"providers_examined={report.examined}")
    print(f"providers_changed={report.changed}")
    for source_type, by_type in sorted(report.changes.items()):
        for provider_type, ids in sorted(by_type.items()):
            print(f"- {source_type} -> {provider_type}: {', '.join(str(i) for i in sorted(ids))}")
    print(f"links_purged={report.purged_links}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
