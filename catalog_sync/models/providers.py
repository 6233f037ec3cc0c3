from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ProviderType(StrEnum):
    STREAMING = "streaming"
    NETWORK = "network"
    DIGITAL_PURCHASE = "digital_purchase"
    FREE = "free"


class SourceType(StrEnum):
    """Which upstream feed produced a provider row or link."""

    WATCH_PROVIDER = "watch_provider"
    NETWORK = "network"


class MonetizationType(StrEnum):
    FLATRATE = "flatrate"
    BUY = "buy"
    RENT = "rent"
    ADS = "ads"
    FREE = "free"


MONETIZATION_TYPES: tuple[MonetizationType, ...] = tuple(MonetizationType)

# Mirrors the unique index on core.content_providers. TMDb numbers networks and
# watch providers independently, so the provider id only means something next
# to its source type.
LINK_CONFLICT_COLUMNS = "content_id,content_type,source_type,provider_id,country_code,monetization_type"

ProviderKey = tuple[str, int]
LinkKey = tuple[int, str, str, int, str, str]


@dataclass(frozen=True)
class ProviderUpsert:
    provider_id: int
    name: str
    provider_type: ProviderType
    source_type: SourceType = SourceType.WATCH_PROVIDER
    logo_path: str | None = None
    display_priority: int | None = None
    country_of_origin: str | None = None
    supported_countries: frozenset[str] = field(default_factory=frozenset)
    is_active: bool = True

    @property
    def key(self) -> ProviderKey:
        return (str(self.source_type), int(self.provider_id))


@dataclass(frozen=True)
class ProviderLinkUpsert:
    content_id: int
    content_type: str
    provider_id: int
    country_code: str
    monetization_type: str
    source_type: SourceType
    link: str | None = None
    display_priority: int | None = None
    presentation_type: str | None = "hd"
    data_source: str = "tmdb"

    @property
    def key(self) -> LinkKey:
        return (
            int(self.content_id),
            self.content_type,
            str(self.source_type),
            int(self.provider_id),
            self.country_code,
            self.monetization_type,
        )

    def to_row(self, *, last_updated: str) -> dict[str, Any]:
        return {
            "content_id": int(self.content_id),
            "content_type": self.content_type,
            "provider_id": int(self.provider_id),
            "country_code": self.country_code,
            "monetization_type": self.monetization_type,
            "source_type": str(self.source_type),
            "link": self.link,
            "display_priority": self.display_priority,
            "presentation_type": self.presentation_type,
            "data_source": self.data_source,
            "last_updated": last_updated,
        }


@dataclass
class ClassifiedFeed:
    """Providers and links parsed from one or both upstream provider feeds."""

    providers: dict[ProviderKey, ProviderUpsert] = field(default_factory=dict)
    links: dict[LinkKey, ProviderLinkUpsert] = field(default_factory=dict)
    # Countries the distribution feed was read for; None when it was not fetched.
    watch_countries: frozenset[str] | None = None

    def add_provider(self, provider: ProviderUpsert) -> None:
        self.providers[provider.key] = merge_provider_upserts(self.providers.get(provider.key), provider)

    def extend(self, other: "ClassifiedFeed") -> "ClassifiedFeed":
        for provider in other.providers.values():
            self.add_provider(provider)
        self.links.update(other.links)
        if other.watch_countries is not None:
            self.watch_countries = (self.watch_countries or frozenset()) | other.watch_countries
        return self

    @property
    def link_list(self) -> list[ProviderLinkUpsert]:
        return list(self.links.values())


def merge_provider_upserts(existing: ProviderUpsert | None, incoming: ProviderUpsert) -> ProviderUpsert:
    """Fold two sightings of the same `(source_type, id)` provider; later values win, countries union."""

    if existing is None:
        return incoming
    if existing.key != incoming.key:
        raise ValueError(f"Cannot merge provider {existing.key} with {incoming.key}")
    return ProviderUpsert(
        provider_id=incoming.provider_id,
        name=incoming.name or existing.name,
        provider_type=incoming.provider_type,
        source_type=incoming.source_type,
        logo_path=incoming.logo_path or existing.logo_path,
        display_priority=incoming.display_priority if incoming.display_priority is not None else existing.display_priority,
        country_of_origin=incoming.country_of_origin or existing.country_of_origin,
        supported_countries=existing.supported_countries | incoming.supported_countries,
        is_active=existing.is_active or incoming.is_active,
    )
