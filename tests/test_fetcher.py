# tests/test_fetcher.py
import pytest
import requests

from scripts.course_analytics.errors import AuthError, FetchError
from scripts.course_analytics.fetcher import (
    FetchResult,
    RetryPolicy,
    extract_records,
)
from tests.fakes import FakeResponse, connection_error, paged_handler


def _rows(n, start=0):
    return [{"id": i} for i in range(start, start + n)]


# --- pagination ---
def test_stops_after_short_page(make_fetcher):
    fetcher, session = make_fetcher(paged_handler([_rows(3), _rows(3, 3), _rows(1, 6)]))

    result = fetcher.fetch_all("https://api.test/items", page_size=3)

    assert result.ok
    assert [len(p) for p in result.pages] == [3, 3, 1]
    assert [r["id"] for r in result.records] == list(range(7))
    assert [c["params"]["page"] for c in session.calls] == [1, 2, 3]


def test_empty_page_ends_without_being_kept(make_fetcher):
    fetcher, session = make_fetcher(paged_handler([_rows(2), _rows(2, 2)]))

    result = fetcher.fetch_all("https://api.test/items", page_size=2)

    assert len(result.pages) == 2
    assert len(session.calls) == 3
    assert result.pages[-1].has_more is True


def test_empty_first_page_yields_no_records(make_fetcher):
    fetcher, _ = make_fetcher(lambda url, params: [])

    result = fetcher.fetch_all("https://api.test/items")

    assert result.ok
    assert result.pages == []
    assert result.records == []


def test_max_pages_caps_requests(make_fetcher):
    fetcher, session = make_fetcher(lambda url, params: _rows(5))

    result = fetcher.fetch_all("https://api.test/items", page_size=5, max_pages=4)

    assert len(session.calls) == 4
    assert len(result.records) == 20
    assert result.pages[-1].has_more is False


def test_page_size_and_initial_params_sent(make_fetcher):
    fetcher, session = make_fetcher(lambda url, params: _rows(1))

    fetcher.fetch_all(
        "https://api.test/items",
        initial_params={"since": "2024-01-01"},
        size_param="per_page",
        page_size=50,
    )

    assert session.calls[0]["params"] == {"since": "2024-01-01", "page": 1, "per_page": 50}


def test_offset_paging_advances_by_page_size(make_fetcher):
    pages = {0: {"results": _rows(2)}, 2: {"results": _rows(2, 2)}, 4: {"results": _rows(1, 4)}}
    fetcher, session = make_fetcher(lambda url, params: pages.get(params["start"], {"results": []}))

    result = fetcher.fetch_all(
        "https://kobo.test/data/form",
        page_param="start",
        size_param="limit",
        page_size=2,
        page_origin=0,
        paging="offset",
        records_key="results",
    )

    assert [c["params"]["start"] for c in session.calls] == [0, 2, 4]
    assert len(result.records) == 5


def test_unknown_paging_style_rejected(make_fetcher):
    fetcher, _ = make_fetcher(lambda url, params: [])
    with pytest.raises(ValueError):
        fetcher.fetch_all("https://api.test/items", paging="cursor")


# --- retries ---
def test_transient_failure_retried_then_succeeds(make_fetcher, sleeps):
    responses = iter([FakeResponse(500), FakeResponse(502), FakeResponse(200, [{"id": 1}])])
    fetcher, session = make_fetcher(lambda url, params: next(responses))

    payload = fetcher.request_json("https://api.test/one")

    assert payload == [{"id": 1}]
    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_exhausted_retries_raise_fetch_error(make_fetcher, sleeps):
    fetcher, session = make_fetcher(lambda url, params: connection_error(), max_attempts=4)

    with pytest.raises(FetchError) as exc_info:
        fetcher.request_json("https://api.test/down")

    assert len(session.calls) == 4
    assert exc_info.value.attempts == 4
    assert isinstance(exc_info.value.cause, requests.ConnectionError)
    assert sleeps == [1.0, 2.0, 4.0]


def test_backoff_is_capped():
    policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=5.0)
    assert [policy.delay_for(a) for a in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_invalid_json_is_retried(make_fetcher):
    responses = iter([FakeResponse(200, ValueError("bad json")), FakeResponse(200, {"ok": True})])
    fetcher, session = make_fetcher(lambda url, params: next(responses))

    assert fetcher.request_json("https://api.test/one") == {"ok": True}
    assert len(session.calls) == 2


def test_rate_limited_403_is_retried(make_fetcher):
    responses = iter([
        FakeResponse(403, headers={"X-RateLimit-Remaining": "0"}),
        FakeResponse(200, {"ok": True}),
    ])
    fetcher, _ = make_fetcher(lambda url, params: next(responses))

    assert fetcher.request_json("https://api.test/one") == {"ok": True}


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failure_not_retried(make_fetcher, sleeps, status):
    fetcher, session = make_fetcher(lambda url, params: FakeResponse(status, text="Bad credentials"))

    with pytest.raises(AuthError):
        fetcher.request_json("https://api.test/secret")

    assert len(session.calls) == 1
    assert sleeps == []


def test_failure_mid_pagination_keeps_earlier_pages(make_fetcher):
    def handler(url, params):
        if params["page"] == 1:
            return _rows(2)
        return FakeResponse(503)

    fetcher, _ = make_fetcher(handler, max_attempts=2)

    result = fetcher.fetch_all("https://api.test/items", page_size=2)

    assert not result.ok
    assert isinstance(result.error, FetchError)
    assert len(result.records) == 2
    assert len(result.error.pages) == 1
    with pytest.raises(FetchError):
        result.raise_for_error()


def test_auth_failure_returned_on_result(make_fetcher):
    fetcher, _ = make_fetcher(lambda url, params: FakeResponse(401))

    result = fetcher.fetch_all("https://api.test/items")

    assert isinstance(result.error, AuthError)
    assert result.pages == []


# --- payload shapes ---
def test_extract_records_shapes():
    assert extract_records([{"a": 1}, "noise", {"b": 2}]) == [{"a": 1}, {"b": 2}]
    assert extract_records({"meetings": [{"id": 1}]}, "meetings") == [{"id": 1}]
    assert extract_records({"total": 0}, "meetings") == []
    assert extract_records({"id": 7}) == [{"id": 7}]
    assert extract_records(None) == []


def test_fetch_result_flattens_pages():
    result = FetchResult(url="u")
    assert result.ok
    assert result.records == []
