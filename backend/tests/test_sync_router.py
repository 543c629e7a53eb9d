import pytest
from fastapi.testclient import TestClient

from marketplace_sync.main import app
from marketplace_sync.services.payments_sync import scheduler
from marketplace_sync.services.payments_sync.errors import IntegrationLoadError
from marketplace_sync.services.payments_sync.models import SyncJobSummary
from marketplace_sync.utils.logger import etsy_logger


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def recorded_runs(monkeypatch):
    calls = []

    async def _fake_run(**kwargs):
        calls.append(kwargs)
        return SyncJobSummary(provider="etsy")

    monkeypatch.setattr(scheduler, "run_marketplace_payments_sync", _fake_run)
    return calls


def test_preflight_returns_ok_with_cors_headers(client, recorded_runs):
    resp = client.options("/sync-marketplace-payments")

    assert resp.status_code == 200
    assert resp.text == "ok"
    assert resp.headers["access-control-allow-origin"] == "*"
    assert resp.headers["access-control-allow-headers"] == "authorization, x-client-info, apikey, content-type"
    assert recorded_runs == []


def test_post_runs_global_sync_and_reports_success(client, recorded_runs):
    resp = client.post("/sync-marketplace-payments")

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "x-request-id" in resp.headers
    assert recorded_runs == [{"integration_id": None, "user_id": None}]


def test_post_body_narrows_scope(client, recorded_runs):
    resp = client.post(
        "/sync-marketplace-payments",
        json={"integration_id": "int-7", "user_id": "U1", "ignored": True},
    )

    assert resp.status_code == 200
    assert recorded_runs == [{"integration_id": "int-7", "user_id": "U1"}]


def test_non_object_body_means_global_run(client, recorded_runs):
    resp = client.post("/sync-marketplace-payments", json=["int-7"])

    assert resp.status_code == 200
    assert recorded_runs == [{"integration_id": None, "user_id": None}]


def test_post_failure_maps_to_sync_failed(client, monkeypatch):
    async def _failing_run(**kwargs):
        raise IntegrationLoadError("integrations table unreachable")

    monkeypatch.setattr(scheduler, "run_marketplace_payments_sync", _failing_run)

    resp = client.post("/sync-marketplace-payments")

    assert resp.status_code == 500
    assert resp.json() == {"error": "SYNC_FAILED"}
    assert resp.headers["access-control-allow-origin"] == "*"


def test_healthz(client):
    resp = client.get("/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_etsy_logs_can_be_read_and_cleared(client):
    etsy_logger.clear_logs()
    etsy_logger.log_etsy_event(
        "token_refresh_request",
        "Refreshing Etsy access token",
        request_data={"refresh_token": "refresh-abcdefgh1234"},
    )

    resp = client.get("/etsy/logs", params={"limit": 10})

    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["logs"][0]["event_type"] == "token_refresh_request"
    assert body["logs"][0]["request_data"]["refresh_token"] == "refr...1234"

    resp = client.delete("/etsy/logs")

    assert resp.status_code == 200
    assert client.get("/etsy/logs").json()["total"] == 0
