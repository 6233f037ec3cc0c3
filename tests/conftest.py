from __future__ import annotations

import copy
import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlparse

import pytest
import requests

from catalog_sync.config import SyncSettings
from catalog_sync.ingestion.staleness import StalenessGate
from catalog_sync.ingestion.sync_orchestrator import SyncOrchestrator
from catalog_sync.integrations.tmdb.client import TmdbCatalogClient
from catalog_sync.integrations.tmdb.rate_limiter import IntervalRateLimiter

FIXTURES = Path(__file__).resolve().parent / "fixtures" / "tmdb"
BASE_URL = "https://api.themoviedb.org/3"


def load_fixture(name: str) -> dict[str, Any]:
    return json.loads((FIXTURES / name).read_text())


# --- Supabase fake ---

PRIMARY_KEYS = {"providers": ("id", "source_type")}


class _FakeResponse:
    def __init__(self, *, data=None, error=None):  # noqa: ANN001
        self.data = data if data is not None else []
        self.error = error


class _FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._columns = "*"
        self._on_conflict: str | None = None
        self._filters: list = []
        self._order: str | None = None
        self._range: tuple[int, int] | None = None
        self._limit: int | None = None

    def select(self, columns: str = "*", **_kwargs):  # noqa: ANN003
        self._columns = columns
        return self

    def insert(self, payload):  # noqa: ANN001
        self._op, self._payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict: str | None = None, **_kwargs):  # noqa: ANN001, ANN003
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):  # noqa: ANN001
        self._op, self._payload = "update", payload
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column: str, value):  # noqa: ANN001
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value):  # noqa: ANN001
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def gte(self, column: str, value):  # noqa: ANN001
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def in_(self, column: str, values):  # noqa: ANN001
        wanted = list(values)
        self._filters.append(lambda row: row.get(column) in wanted)
        return self

    def ilike(self, column: str, pattern: str):
        regex = re.compile(".*".join(re.escape(part) for part in pattern.split("%")), re.IGNORECASE)
        self._filters.append(lambda row: isinstance(row.get(column), str) and bool(regex.fullmatch(row[column])))
        return self

    def or_(self, filters: str):
        # PostgREST `or=(a.is.null,b.eq.x)`; only `is.null` and `eq` are understood here.
        clauses = []
        for clause in filters.split(","):
            column, op, value = clause.strip().split(".", 2)
            clauses.append((column, op, value))

        def matches(row: dict[str, Any]) -> bool:
            for column, op, value in clauses:
                current = row.get(column)
                if op == "is" and value == "null" and current is None:
                    return True
                if op == "eq" and value == "{}" and current == {}:
                    return True
                if op == "eq" and current is not None and str(current) == value:
                    return True
            return False

        self._filters.append(matches)
        return self

    def order(self, column: str, **_kwargs):  # noqa: ANN003
        self._order = column
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> _FakeResponse:
        self._db.calls.append((self._op, self._table))
        for op, table, when, exc in self._db.raise_on:
            if op == self._op and table == self._table and (when is None or when(self._payload)):
                raise exc
        if self._table in self._db.fail_tables:
            return _FakeResponse(error=f"boom on {self._table}")
        rows = self._db.tables.setdefault(self._table, [])
        if self._op == "select":
            return _FakeResponse(data=self._select(rows))
        self._db.writes.append((self._op, self._table, copy.deepcopy(self._payload)))
        if self._op == "insert":
            return _FakeResponse(data=self._insert(rows))
        if self._op == "upsert":
            return _FakeResponse(data=self._upsert(rows))
        if self._op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(copy.deepcopy(self._payload))
                    updated.append(copy.deepcopy(row))
            return _FakeResponse(data=updated)
        removed = [row for row in rows if self._matches(row)]
        self._db.tables[self._table] = [row for row in rows if not self._matches(row)]
        return _FakeResponse(data=copy.deepcopy(removed))

    def _select(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        selected = [row for row in rows if self._matches(row)]
        if self._order:
            selected.sort(key=lambda r: (r.get(self._order) is None, r.get(self._order)))
        if self._range:
            start, end = self._range
            selected = selected[start : end + 1]
        if self._limit is not None:
            selected = selected[: self._limit]
        if self._columns.strip() != "*":
            columns = [c.strip() for c in self._columns.split(",") if c.strip()]
            selected = [{c: row.get(c) for c in columns} for row in selected]
        return copy.deepcopy(selected)

    def _insert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        payload = self._payload if isinstance(self._payload, list) else [self._payload]
        inserted = []
        for item in payload:
            pk = PRIMARY_KEYS.get(self._table, ("id",))
            if "id" in item and any(all(r.get(k) == item.get(k) for k in pk) for r in rows):
                raise RuntimeError(f"duplicate key value violates unique constraint on {self._table} {pk}")
            row = copy.deepcopy(item)
            row.setdefault("id", self._db.next_id())
            rows.append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def _upsert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        payload = self._payload if isinstance(self._payload, list) else [self._payload]
        keys = [k.strip() for k in (self._on_conflict or "id").split(",")]
        out = []
        for item in payload:
            existing = next((r for r in rows if all(r.get(k) == item.get(k) for k in keys)), None)
            if existing is None:
                existing = copy.deepcopy(item)
                existing.setdefault("id", self._db.next_id())
                rows.append(existing)
            else:
                existing.update(copy.deepcopy(item))
            out.append(copy.deepcopy(existing))
        return out


class FakeSupabase:
    """In-memory stand-in for the supabase-py query builder."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = copy.deepcopy(tables or {})
        self.calls: list[tuple[str, str]] = []
        self.writes: list[tuple[str, str, Any]] = []
        self.fail_tables: set[str] = set()
        self.raise_on: list[tuple[str, str, Callable[[Any], bool] | None, BaseException]] = []
        self._seq = 10_000

    def next_id(self) -> int:
        self._seq += 1
        return self._seq

    def raise_when(
        self,
        op: str,
        table: str,
        exc: BaseException,
        when: Callable[[Any], bool] | None = None,
    ) -> None:
        """Make `execute()` raise, the way supabase-py raises `postgrest.APIError`."""

        self.raise_on.append((op, table, when, exc))

    def schema(self, _name: str):  # noqa: ANN001
        return self

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])


# --- TMDb fake ---


class _FakeHttpResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload)

    def json(self) -> Any:
        return self._payload


class FakeTmdbSession:
    """
    Routes TMDb paths to canned payloads.

    Keys are `path` or `path?language=xx`. A value may be a dict (200), an int
    status code, an exception instance to raise, or a list consumed one entry
    per call.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def get(self, url: str, params=None, headers=None, timeout=None):  # noqa: ANN001
        path = urlparse(url).path
        if path.startswith("/3/"):
            path = path[len("/3/") :]
        params = dict(params or {})
        self.calls.append((path, params))
        language = params.get("language")
        key = f"{path}?language={language}" if f"{path}?language={language}" in self.routes else path
        if key not in self.routes:
            return _FakeHttpResponse(404, {"status_message": "The resource you requested could not be found."})
        value = self.routes[key]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, int):
            return _FakeHttpResponse(value, {"status_message": "error"})
        return _FakeHttpResponse(200, value)

    def paths(self) -> list[str]:
        return [path for path, _ in self.calls]


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:  # noqa: ANN003
        self.now = self.now + timedelta(**kwargs)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# --- fixtures ---


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        tmdb_api_key="test-key",
        languages=("en", "tr"),
        countries=("US", "TR"),
        min_interval_seconds=0.0,
        language_workers=2,
        item_workers=1,
    )


@pytest.fixture
def matrix_routes() -> dict[str, Any]:
    return {
        "trending/movie/week": load_fixture("trending_movie_page1.json"),
        "movie/603?language=en": load_fixture("movie_603_en.json"),
        "movie/603?language=tr": load_fixture("movie_603_tr.json"),
        "movie/603/watch/providers": load_fixture("movie_603_watch_providers.json"),
    }


@pytest.fixture
def make_client():
    def factory(session: FakeTmdbSession, *, sleep: SleepRecorder | None = None) -> TmdbCatalogClient:
        return TmdbCatalogClient(
            "test-key",
            session=session,  # type: ignore[arg-type]
            limiter=IntervalRateLimiter(0),
            base_url=BASE_URL,
            sleep=sleep or SleepRecorder(),
        )

    return factory


@pytest.fixture
def make_orchestrator(make_client, settings, clock):  # noqa: ANN001
    def factory(session: FakeTmdbSession, db: FakeSupabase, **overrides) -> SyncOrchestrator:  # noqa: ANN003
        return SyncOrchestrator(
            make_client(session),
            db,  # type: ignore[arg-type]
            overrides.pop("settings", settings),
            clock=clock,
            gate=StalenessGate(clock=clock),
            **overrides,
        )

    return factory


@pytest.fixture
def no_network(monkeypatch):  # noqa: ANN001
    def _blocked(*_args, **_kwargs):  # noqa: ANN002, ANN003
        raise AssertionError("real HTTP call attempted")

    monkeypatch.setattr(requests.Session, "get", _blocked)
