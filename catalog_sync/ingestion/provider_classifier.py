from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from catalog_sync.models.content import ContentKind
from catalog_sync.models.providers import (
    MONETIZATION_TYPES,
    ClassifiedFeed,
    ProviderKey,
    ProviderLinkUpsert,
    ProviderType,
    ProviderUpsert,
    SourceType,
    merge_provider_upserts,
)

logger = logging.getLogger(__name__)

NETWORK_DISPLAY_PRIORITY = 999
NETWORK_LINK_TEMPLATE = "https://www.themoviedb.org/network/{id}"


class ProviderRuleError(ValueError):
    pass


@dataclass(frozen=True)
class ProviderRule:
    """
    One row of the classification table.

    A rule matches a provider when its id is listed in `provider_ids` or its
    name matches `pattern` (case-insensitive search).
    """

    name: str
    provider_type: ProviderType
    pattern: str | None = None
    provider_ids: tuple[int, ...] = ()

    def matches(self, provider_id: int | None, provider_name: str) -> bool:
        if provider_id is not None and provider_id in self.provider_ids:
            return True
        if self.pattern and re.search(self.pattern, provider_name, re.IGNORECASE):
            return True
        return False


# Evaluated top to bottom, first match wins; anything unmatched is streaming.
DEFAULT_PROVIDER_RULES: tuple[ProviderRule, ...] = (
    ProviderRule(
        name="streaming-services",
        provider_type=ProviderType.STREAMING,
        pattern=(
            r"(?<![a-z0-9])(?:netflix|disney\+|amazon prime video|hbo max|hulu|apple tv\+|paramount\+"
            r"|peacock|youtube premium|sling tv|now tv|exxen|gain|tabii|tod|blutv|puhu)(?![a-z0-9])"
        ),
    ),
    ProviderRule(
        name="digital-storefronts",
        provider_type=ProviderType.DIGITAL_PURCHASE,
        pattern=(
            r"(?<![a-z0-9])(?:apple tv(?!\+)|google play movies|amazon video|microsoft store|vudu|fandango"
            r"|rakuten)(?![a-z0-9])"
        ),
    ),
    ProviderRule(
        name="free-ad-supported",
        provider_type=ProviderType.FREE,
        pattern=r"(?<![a-z0-9])(?:pluto tv|tubi|freevee|plex|youtube|roku channel)(?![a-z0-9])",
    ),
    ProviderRule(
        name="broadcast-networks",
        provider_type=ProviderType.NETWORK,
        pattern=r"channel|network|broadcasting|\btv\b(?!\+)",
    ),
)


def validate_rules(rules: Sequence[ProviderRule]) -> tuple[ProviderRule, ...]:
    seen: set[str] = set()
    for index, rule in enumerate(rules):
        label = rule.name or f"#{index}"
        if not rule.name:
            raise ProviderRuleError(f"Provider rule {label} has no name.")
        if rule.name in seen:
            raise ProviderRuleError(f"Duplicate provider rule name: {rule.name!r}")
        seen.add(rule.name)
        if not isinstance(rule.provider_type, ProviderType):
            raise ProviderRuleError(f"Provider rule {label} has unknown type {rule.provider_type!r}.")
        if not rule.pattern and not rule.provider_ids:
            raise ProviderRuleError(f"Provider rule {label} needs a pattern or provider_ids.")
        if rule.pattern:
            try:
                re.compile(rule.pattern, re.IGNORECASE)
            except re.error as exc:
                raise ProviderRuleError(f"Provider rule {label} has an invalid pattern: {exc}") from exc
    return tuple(rules)


def _rule_from_mapping(raw: Mapping[str, Any], index: int) -> ProviderRule:
    try:
        provider_type = ProviderType(str(raw.get("provider_type") or raw.get("type") or ""))
    except ValueError as exc:
        raise ProviderRuleError(f"Provider rule #{index} has unknown type {raw.get('provider_type')!r}.") from exc
    ids = raw.get("provider_ids") or ()
    if not isinstance(ids, (list, tuple)) or not all(isinstance(i, int) for i in ids):
        raise ProviderRuleError(f"Provider rule #{index} provider_ids must be a list of integers.")
    return ProviderRule(
        name=str(raw.get("name") or ""),
        provider_type=provider_type,
        pattern=raw.get("pattern") or None,
        provider_ids=tuple(ids),
    )


def load_provider_rules(path: str | Path) -> tuple[ProviderRule, ...]:
    """
    Load an ordered rule table from JSON: a list of
    `{"name", "provider_type", "pattern"?, "provider_ids"?}` objects.
    """

    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ProviderRuleError(f"Unable to read provider rules from {path}: {exc}") from exc
    if not isinstance(payload, list):
        raise ProviderRuleError("Provider rules file must contain a JSON list.")
    rules = []
    for index, raw in enumerate(payload):
        if not isinstance(raw, Mapping):
            raise ProviderRuleError(f"Provider rule #{index} must be an object.")
        rules.append(_rule_from_mapping(raw, index))
    return validate_rules(rules)


class ProviderClassifier:
    def __init__(self, rules: Sequence[ProviderRule] | None = None) -> None:
        self.rules = validate_rules(rules if rules is not None else DEFAULT_PROVIDER_RULES)

    @classmethod
    def from_path(cls, path: str | Path | None) -> "ProviderClassifier":
        if not path:
            return cls()
        return cls(load_provider_rules(path))

    def explain(self, provider_name: str, provider_id: int | None = None) -> ProviderRule | None:
        name = (provider_name or "").strip()
        for rule in self.rules:
            if rule.matches(provider_id, name):
                return rule
        return None

    def classify(self, record: Mapping[str, Any]) -> tuple[int, ProviderType]:
        provider_id = record.get("provider_id", record.get("id"))
        if not isinstance(provider_id, int):
            raise ValueError(f"Provider record has no integer id: {provider_id!r}")
        name = str(record.get("provider_name") or record.get("name") or "")
        rule = self.explain(name, provider_id)
        return provider_id, rule.provider_type if rule else ProviderType.STREAMING


def parse_watch_providers(
    payload: Mapping[str, Any],
    *,
    content_id: int,
    kind: ContentKind,
    countries: Iterable[str],
    classifier: ProviderClassifier,
) -> ClassifiedFeed:
    """
    Turn a `/watch/providers` payload into provider rows and `watch_provider` links.

    Only configured countries and known monetization types are kept; each link
    is keyed by content, source, provider, country and monetization so repeated
    entries collapse to the last one seen.
    """

    wanted = frozenset(c.upper() for c in countries)
    feed = ClassifiedFeed(watch_countries=wanted)
    results = payload.get("results")
    if not isinstance(results, Mapping):
        return feed

    for country_code, region in results.items():
        country = str(country_code).upper()
        if country not in wanted or not isinstance(region, Mapping):
            continue
        region_link = region.get("link") if isinstance(region.get("link"), str) else None
        for monetization in MONETIZATION_TYPES:
            entries = region.get(str(monetization))
            if not isinstance(entries, list):
                continue
            for entry in entries:
                if not isinstance(entry, Mapping):
                    continue
                try:
                    provider_id, provider_type = classifier.classify(entry)
                except ValueError:
                    logger.warning("Skipping provider entry without id: content=%s entry=%s", content_id, entry)
                    continue
                priority = entry.get("display_priority") if isinstance(entry.get("display_priority"), int) else None
                provider = ProviderUpsert(
                    provider_id=provider_id,
                    name=str(entry.get("provider_name") or "").strip(),
                    provider_type=provider_type,
                    logo_path=entry.get("logo_path") or None,
                    display_priority=priority,
                    source_type=SourceType.WATCH_PROVIDER,
                    supported_countries=frozenset({country}),
                )
                feed.add_provider(provider)
                link = ProviderLinkUpsert(
                    content_id=content_id,
                    content_type=kind.content_type,
                    provider_id=provider_id,
                    country_code=country,
                    monetization_type=str(monetization),
                    source_type=SourceType.WATCH_PROVIDER,
                    link=region_link,
                    display_priority=priority,
                )
                feed.links[link.key] = link
    return feed


def parse_networks(
    details: Mapping[str, Any],
    *,
    content_id: int,
    kind: ContentKind,
    default_country: str = "TR",
) -> ClassifiedFeed:
    """Build `network` links from a series detail payload. Movies have none."""

    feed = ClassifiedFeed()
    if kind is not ContentKind.SERIES:
        return feed
    networks = details.get("networks")
    if not isinstance(networks, list):
        return feed

    for network in networks:
        if not isinstance(network, Mapping) or not isinstance(network.get("id"), int):
            continue
        network_id = network["id"]
        origin = str(network.get("origin_country") or "").strip().upper() or None
        country = origin or default_country.upper()
        provider = ProviderUpsert(
            provider_id=network_id,
            name=str(network.get("name") or "").strip(),
            provider_type=ProviderType.NETWORK,
            logo_path=network.get("logo_path") or None,
            display_priority=NETWORK_DISPLAY_PRIORITY,
            source_type=SourceType.NETWORK,
            country_of_origin=origin,
            supported_countries=frozenset({country}),
        )
        feed.add_provider(provider)
        link = ProviderLinkUpsert(
            content_id=content_id,
            content_type=kind.content_type,
            provider_id=network_id,
            country_code=country,
            monetization_type="flatrate",
            source_type=SourceType.NETWORK,
            link=NETWORK_LINK_TEMPLATE.format(id=network_id),
            display_priority=NETWORK_DISPLAY_PRIORITY,
        )
        feed.links[link.key] = link
    return feed


def parse_provider_catalog(
    entries: Iterable[Any],
    *,
    classifier: ProviderClassifier,
) -> dict[ProviderKey, ProviderUpsert]:
    """
    Turn `/watch/providers/{movie|tv}` results into watch-provider upserts.

    Supported countries come from the keys of `display_priorities`; the same
    provider listed for movies and series folds into one entry.
    """

    providers: dict[ProviderKey, ProviderUpsert] = {}
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        try:
            provider_id, provider_type = classifier.classify(entry)
        except ValueError:
            logger.warning("Skipping catalog provider without id: %s", entry)
            continue
        priorities = entry.get("display_priorities")
        countries = frozenset(str(c).upper() for c in priorities) if isinstance(priorities, Mapping) else frozenset()
        priority = entry.get("display_priority") if isinstance(entry.get("display_priority"), int) else None
        provider = ProviderUpsert(
            provider_id=provider_id,
            name=str(entry.get("provider_name") or "").strip(),
            provider_type=provider_type,
            source_type=SourceType.WATCH_PROVIDER,
            logo_path=entry.get("logo_path") or None,
            display_priority=priority,
            supported_countries=countries,
        )
        providers[provider.key] = merge_provider_upserts(providers.get(provider.key), provider)
    return providers


def watch_links_only(links: Iterable[Any]) -> list[Any]:
    """Drop network-sourced links; accepts `ProviderLinkUpsert` objects or stored rows."""

    kept = []
    for link in links:
        source = link.get("source_type") if isinstance(link, Mapping) else getattr(link, "source_type", None)
        if str(source) == SourceType.WATCH_PROVIDER:
            kept.append(link)
    return kept

