from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import app
from jobs.load_all import snapshot_loader
from pipelines.model import PropertyRecord, UseClass
from pipelines.snapshot import RecordSnapshot, SnapshotStore


def _record(address, year_month, value, area, count=1, **extra):
    year, month = map(int, year_month.split("-"))
    return PropertyRecord(
        address=address,
        date=date(year, month, 1),
        total_value=value,
        total_area=area,
        transaction_count=count,
        **extra,
    )


@pytest.fixture()
def snapshot():
    return RecordSnapshot(
        records=(
            _record("Rua São João", "2024-03", 300_000, 100, neighborhood="República"),
            _record("Rua São João", "2024-03", 600_000, 300, count=2, neighborhood="República"),
            _record("Rua São João", "2024-05", 500_000, 200),
            _record("Rua São João", "2024-05", 90_000, 12, typology="VAGA DE GARAGEM"),
            _record(
                "Rua São Bento",
                "2024-04",
                800_000,
                100,
                use_class=UseClass.NAO_RESIDENCIAL,
                raw_tag="COMERCIAL VERTICAL",
            ),
        ),
        fetched_count=5,
    )


@pytest.fixture()
def client(monkeypatch):
    monkeypatch.setenv("ITBI_LOAD_ON_STARTUP", "false")
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def loaded_client(client, snapshot):
    app.state.store = SnapshotStore(snapshot)
    return client


def test_health_reports_loading_before_first_snapshot(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "loading"}


def test_queries_return_503_without_snapshot(client):
    response = client.get("/streets/insights", params={"street": "sao joao"})

    assert response.status_code == 503


def test_suggestions(loaded_client):
    response = loaded_client.get("/streets/suggest", params={"q": "sao"})

    assert response.status_code == 200
    assert response.json() == {
        "count": 1,
        "items": [{"address": "Rua São João", "neighborhood": "República"}],
    }


def test_commercial_suggestions(loaded_client):
    response = loaded_client.get("/streets/suggest", params={"q": "sao", "use": "commercial"})

    assert [item["address"] for item in response.json()["items"]] == ["Rua São Bento"]


def test_unknown_use_is_rejected(loaded_client):
    response = loaded_client.get("/streets/suggest", params={"q": "sao", "use": "industrial"})

    assert response.status_code == 400


def test_insights_use_weighted_prices_and_skip_parking(loaded_client):
    response = loaded_client.get(
        "/streets/insights", params={"street": "sao joao", "as_of": "2024-06-01"}
    )

    assert response.status_code == 200
    payload = response.json()
    points = {point["month"]: point for point in payload["series"]["points"]}
    assert len(points) == 24
    assert points["2024-03"]["weighted_price"] == pytest.approx(2250.0)
    assert points["2024-03"]["transaction_total"] == 3
    assert points["2024-05"]["weighted_price"] == pytest.approx(2500.0)
    assert points["2024-04"]["weighted_price"] is None
    assert payload["matched_records"] == 3
    assert payload["neighborhood"] == "República"
    assert payload["latest_price"] == pytest.approx(2500.0)
    assert payload["trend"]["direction"] == "up"
    assert payload["total_transactions"] == 4
    assert payload["launches"] == []


def test_blank_street_is_rejected(loaded_client):
    response = loaded_client.get("/streets/insights", params={"street": "  "})

    assert response.status_code == 400


def test_records_endpoint_limits_items(loaded_client):
    response = loaded_client.get("/records", params={"street": "joao", "limit": 1})

    payload = response.json()
    assert payload["count"] == 3
    assert len(payload["items"]) == 1
    assert payload["items"][0]["per_area_price"] == pytest.approx(3000.0)


def test_refresh_loads_snapshot_from_source(client):
    features = [{"street": "Rua Augusta", "year_month": "2024-01", "total_transactions": 2}]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": features, "total_records": 1})

    app.state.loader = snapshot_loader(
        app.state.settings, transport=httpx.MockTransport(handler)
    )

    response = client.post("/refresh")

    assert response.status_code == 200
    assert response.json()["records"] == 1
    assert client.get("/health").json()["status"] == "ok"


def test_refresh_failure_returns_502_and_marks_unavailable(client):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="down")

    app.state.loader = snapshot_loader(
        app.state.settings, transport=httpx.MockTransport(handler)
    )

    response = client.post("/refresh")

    assert response.status_code == 502
    health = client.get("/health").json()
    assert health["status"] == "unavailable"
    assert "status 500" in health["error"]


def test_refresh_with_non_finite_total_records_succeeds(client):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, text='{"data": [{"street": "Rua X", "year_month": "2024-01"}], "total_records": NaN}'
        )

    app.state.loader = snapshot_loader(
        app.state.settings, transport=httpx.MockTransport(handler)
    )

    response = client.post("/refresh")

    assert response.status_code == 200
    assert response.json()["records"] == 1


def test_cors_preflight_is_answered(client):
    response = client.options(
        "/health",
        headers={"Origin": "https://app.example.test", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] in {"https://app.example.test", "*"}
