import asyncio
import json

import httpx
import pytest

from pipelines.sources.itbi import (
    FetchError,
    ItbiSourceConfig,
    fetch_itbi_features,
    parse_page,
    sanitize_json_text,
)

BASE_URL = "https://itbi.example.test/"


def _rows(start: int, count: int) -> list[dict]:
    return [{"street": f"Rua {i}", "year_month": "2024-01"} for i in range(start, start + count)]


class PagedSource:
    """Serves fixed pages keyed by offset and records every request."""

    def __init__(self, pages: dict[int, list[dict]], total_records: int | None = None):
        self.pages = pages
        self.total_records = total_records
        self.requests: list[tuple[int, int]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["offset"])
        limit = int(request.url.params["limit"])
        self.requests.append((offset, limit))
        body = {"data": self.pages.get(offset, [])}
        if self.total_records is not None:
            body["total_records"] = self.total_records
        return httpx.Response(200, json=body)


def _fetch(handler, **config_kwargs):
    config = ItbiSourceConfig(base_url=BASE_URL, **config_kwargs)
    return asyncio.run(fetch_itbi_features(config, transport=httpx.MockTransport(handler)))


def test_pagination_concatenates_pages_and_stops_at_short_page():
    first, second, third = _rows(0, 3), _rows(3, 3), _rows(6, 1)
    source = PagedSource({0: first, 3: second, 6: third})

    features = _fetch(source, page_size=3)

    assert features == first + second + third
    assert source.requests == [(0, 3), (3, 3), (6, 3)]


def test_pagination_stops_when_total_records_reached():
    source = PagedSource({0: _rows(0, 2), 2: _rows(2, 2), 4: _rows(4, 2)}, total_records=4)

    features = _fetch(source, page_size=2)

    assert len(features) == 4
    assert source.requests == [(0, 2), (2, 2)]


def test_empty_page_ends_pagination_without_error():
    source = PagedSource({0: _rows(0, 2)})

    features = _fetch(source, page_size=2)

    assert len(features) == 2
    assert source.requests == [(0, 2), (2, 2)]


def test_empty_dataset_returns_empty_list():
    source = PagedSource({})

    assert _fetch(source, page_size=10) == []


def test_safety_cap_truncates_result():
    source = PagedSource({offset: _rows(offset, 2) for offset in range(0, 20, 2)})

    features = _fetch(source, page_size=2, max_records=5)

    assert len(features) == 5
    assert features == _rows(0, 5)
    assert source.requests == [(0, 2), (2, 2), (4, 2)]


def test_nan_tokens_are_replaced_before_parsing():
    body = '{"data": [{"street": "Rua A", "total_built_area_m2": NaN, "x": -Infinity}], "total_records": 1}'

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=body)

    features = _fetch(handler, page_size=10)

    assert features == [{"street": "Rua A", "total_built_area_m2": None, "x": None}]


def test_http_error_status_raises_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(FetchError, match="status 500"):
        _fetch(handler, page_size=10)


def test_timeout_raises_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(FetchError, match="timed out"):
        _fetch(handler, page_size=10, timeout=0.5)


def test_failure_on_later_page_discards_partial_result():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.params["offset"])
        if request.url.params["offset"] == "0":
            return httpx.Response(200, json={"data": _rows(0, 2)})
        raise httpx.ConnectError("connection reset", request=request)

    with pytest.raises(FetchError):
        _fetch(handler, page_size=2)
    assert calls == ["0", "2"]


def test_malformed_body_raises_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway error</html>")

    with pytest.raises(FetchError, match="not valid JSON"):
        _fetch(handler, page_size=10)


def test_sanitize_leaves_string_values_alone():
    text = '{"street": "Rua NaN", "value": NaN}'

    assert sanitize_json_text(text) == '{"street": "Rua NaN", "value": null}'


def test_parse_page_accepts_double_encoded_payload():
    inner = json.dumps({"data": [{"street": "Rua B"}], "total_records": "1"})

    page = parse_page(json.dumps(inner))

    assert page.records == [{"street": "Rua B"}]
    assert page.total_records == 1


def test_parse_page_accepts_decoded_mapping():
    page = parse_page({"data": [{"street": "Rua C"}, "junk"]})

    assert page.records == [{"street": "Rua C"}]
    assert page.total_records is None


@pytest.mark.parametrize("payload", ['[1, 2]', '{"data": "nope"}', "42"])
def test_parse_page_rejects_unexpected_envelopes(payload):
    with pytest.raises(FetchError):
        parse_page(payload)


def test_sanitize_ignores_colon_then_nan_inside_strings():
    text = '{"street": "Rua A: NaN, bloco 2", "area": NaN, "series": [1, NaN, -Infinity]}'

    assert sanitize_json_text(text) == (
        '{"street": "Rua A: NaN, bloco 2", "area": null, "series": [1, null, null]}'
    )


def test_nan_inside_address_survives_fetch():
    body = '{"data": [{"street": "Rua A: NaN, bloco 2", "total_built_area_m2": NaN}]}'

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=body)

    features = _fetch(handler, page_size=10)

    assert features == [{"street": "Rua A: NaN, bloco 2", "total_built_area_m2": None}]


@pytest.mark.parametrize(
    "payload",
    [
        {"data": [], "total_records": float("nan")},
        {"data": [], "total_records": float("inf")},
        {"data": [], "total_records": "inf"},
        '{"data": [], "total_records": 1e400}',
        '{"data": [], "total_records": NaN}',
    ],
)
def test_non_finite_total_records_is_ignored(payload):
    page = parse_page(payload)

    assert page.records == []
    assert page.total_records is None


def test_non_finite_total_records_falls_back_to_short_page_rule():
    pages = {0: _rows(0, 2), 2: _rows(2, 2), 4: _rows(4, 1)}
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["offset"])
        requests.append(offset)
        rows = json.dumps(pages.get(offset, []))
        return httpx.Response(200, text=f'{{"data": {rows}, "total_records": 1e400}}')

    features = _fetch(handler, page_size=2)

    assert features == _rows(0, 5)
    assert requests == [0, 2, 4]
