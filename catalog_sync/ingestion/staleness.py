from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Callable, Mapping

DEFAULT_STALENESS = timedelta(hours=6)


class StaleCategory(StrEnum):
    PROVIDERS = "providers"
    RATINGS = "ratings"

    @property
    def column(self) -> str:
        return f"{self.value}_last_updated"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class StalenessGate:
    """
    Decides whether a category of an item is due for a re-fetch.

    A missing row or a null/unparsable stamp is stale; otherwise the item is
    stale only once `now - stamp` exceeds the threshold.
    """

    def __init__(
        self,
        threshold: timedelta = DEFAULT_STALENESS,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.threshold = threshold
        self.clock = clock

    @classmethod
    def from_hours(cls, hours: float, *, clock: Callable[[], datetime] = utcnow) -> "StalenessGate":
        return cls(timedelta(hours=hours), clock=clock)

    def is_stale(
        self,
        item_row: Mapping[str, Any] | None,
        category: StaleCategory | str,
        now: datetime | None = None,
    ) -> bool:
        try:
            category = StaleCategory(category)
        except ValueError as exc:
            raise ValueError(f"Unknown staleness category: {category!r}") from exc

        if not item_row:
            return True
        stamp = parse_timestamp(item_row.get(category.column))
        if stamp is None:
            return True
        current = now or self.clock()
        return current - stamp > self.threshold

    def stale_categories(self, item_row: Mapping[str, Any] | None, now: datetime | None = None) -> set[StaleCategory]:
        current = now or self.clock()
        return {category for category in StaleCategory if self.is_stale(item_row, category, current)}
