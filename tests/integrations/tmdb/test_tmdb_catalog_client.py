from __future__ import annotations

import pytest
import requests

from catalog_sync.integrations.tmdb.client import (
    FetchExhausted,
    TmdbCatalogClient,
    TmdbClientError,
    UpstreamHTTPError,
    resolve_api_key,
)
from catalog_sync.integrations.tmdb.rate_limiter import IntervalRateLimiter
from catalog_sync.models.content import ContentKind
from conftest import FakeTmdbSession, SleepRecorder


def test_fetch_retries_connection_errors_with_doubling_backoff(make_client) -> None:
    sleep = SleepRecorder()
    session = FakeTmdbSession(
        {
            "movie/603?language=en": [
                requests.ConnectionError("reset"),
                requests.Timeout("slow"),
                {"id": 603, "title": "The Matrix"},
            ]
        }
    )
    client = make_client(session, sleep=sleep)

    payload = client.fetch_details(ContentKind.MOVIE, 603, language="en")

    assert payload["title"] == "The Matrix"
    assert sleep.calls == [1.0, 2.0]
    assert len(session.calls) == 3


def test_fetch_raises_exhausted_after_all_attempts(make_client) -> None:
    sleep = SleepRecorder()
    session = FakeTmdbSession({"movie/603?language=en": requests.ConnectionError("down")})
    client = make_client(session, sleep=sleep)

    with pytest.raises(FetchExhausted) as excinfo:
        client.fetch_details(ContentKind.MOVIE, 603, language="en")

    assert excinfo.value.attempts == 4
    assert isinstance(excinfo.value.last_error, requests.ConnectionError)
    assert sleep.calls == [1.0, 2.0, 4.0]
    assert len(session.calls) == 4


def test_non_2xx_is_not_retried(make_client) -> None:
    sleep = SleepRecorder()
    session = FakeTmdbSession({"movie/603?language=en": 503})
    client = make_client(session, sleep=sleep)

    resp = client.fetch(f"{client.base_url}/movie/603", {"language": "en"})
    assert resp.status_code == 503

    with pytest.raises(UpstreamHTTPError) as excinfo:
        client.fetch_details(ContentKind.MOVIE, 603, language="en")
    assert excinfo.value.status_code == 503
    assert sleep.calls == []
    assert len(session.calls) == 2


def test_other_transport_errors_are_wrapped_without_retry(make_client) -> None:
    sleep = SleepRecorder()
    session = FakeTmdbSession(
        {"movie/550?language=en": requests.exceptions.ChunkedEncodingError("connection broken: IncompleteRead")}
    )
    client = make_client(session, sleep=sleep)

    with pytest.raises(TmdbClientError) as excinfo:
        client.fetch_details(ContentKind.MOVIE, 550, language="en")

    assert not isinstance(excinfo.value, FetchExhausted)
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ChunkedEncodingError)
    assert excinfo.value.url.endswith("/movie/550")
    assert sleep.calls == []
    assert len(session.calls) == 1


def test_api_key_is_sent_as_query_param(make_client) -> None:
    session = FakeTmdbSession({"trending/tv/week": {"results": [{"id": 1399}, "junk"]}})
    client = make_client(session)

    results = client.fetch_trending_page(ContentKind.SERIES, 2)

    assert results == [{"id": 1399}]
    path, params = session.calls[0]
    assert path == "trending/tv/week"
    assert params == {"api_key": "test-key", "page": 2, "language": "en-US"}


def test_details_append_to_response_and_watch_provider_path(make_client) -> None:
    session = FakeTmdbSession({"tv/1399": {"id": 1399}, "tv/1399/watch/providers": {"results": {}}})
    client = make_client(session)

    client.fetch_details(ContentKind.SERIES, 1399, language="en", append_to_response="keywords")
    client.fetch_watch_providers(ContentKind.SERIES, 1399)

    assert session.calls[0][1]["append_to_response"] == "keywords"
    assert session.paths() == ["tv/1399", "tv/1399/watch/providers"]


def test_client_rejects_empty_key() -> None:
    with pytest.raises(ValueError):
        TmdbCatalogClient("  ", session=FakeTmdbSession())  # type: ignore[arg-type]


def test_every_attempt_goes_through_the_shared_limiter(settings) -> None:
    limiter = IntervalRateLimiter(0)
    session = FakeTmdbSession({"movie/1?language=en": [requests.Timeout("t"), {"id": 1}]})
    client = TmdbCatalogClient.from_settings(settings, session=session, limiter=limiter)  # type: ignore[arg-type]
    client._sleep = SleepRecorder()

    client.fetch_details(ContentKind.MOVIE, 1, language="en")

    assert limiter.acquired == 2


@pytest.mark.parametrize(
    ("env", "body", "query", "expected"),
    [
        ("env-key", "body-key", "query-key", "env-key"),
        (None, "body-key", "query-key", "body-key"),
        ("", "  ", "query-key", "query-key"),
        (None, None, None, None),
    ],
)
def test_resolve_api_key_precedence(env, body, query, expected) -> None:
    assert resolve_api_key(env, body, query) == expected


def test_provider_catalog_path_and_filtering(make_client) -> None:
    session = FakeTmdbSession({"watch/providers/tv": {"results": [{"provider_id": 8}, None, "junk"]}})
    client = make_client(session)

    assert client.fetch_provider_catalog(ContentKind.SERIES) == [{"provider_id": 8}]
    path, params = session.calls[0]
    assert path == "watch/providers/tv"
    assert params == {"api_key": "test-key", "language": "en-US"}


def test_default_timeout_is_three_seconds() -> None:
    client = TmdbCatalogClient("k", session=FakeTmdbSession())  # type: ignore[arg-type]
    assert client.timeout_seconds == 3.0
