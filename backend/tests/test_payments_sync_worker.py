import pytest

from marketplace_sync.services.payments_sync import scheduler
from marketplace_sync.services.payments_sync.models import IntegrationSyncResult, SyncJobSummary
from marketplace_sync.workers import payments_sync_worker


@pytest.mark.asyncio
async def test_run_once_reports_summary_counts(monkeypatch):
    async def _fake_run():
        summary = SyncJobSummary(provider="etsy")
        ok = IntegrationSyncResult(integration_id="int-1", shop_id="shop-1")
        ok.payments_upserted = 3
        failed = IntegrationSyncResult(integration_id="int-2", shop_id="shop-2", status="error")
        summary.results = [ok, failed]
        return summary

    monkeypatch.setattr(scheduler, "run_marketplace_payments_sync", _fake_run)

    result = await payments_sync_worker.run_payments_sync_once()

    assert result == {
        "status": "completed",
        "integrations": 2,
        "failed": 1,
        "payments_upserted": 3,
        "deadline_exceeded": False,
    }


@pytest.mark.asyncio
async def test_run_once_turns_failures_into_error_status(monkeypatch):
    async def _boom():
        raise RuntimeError("Supabase client not configured")

    monkeypatch.setattr(scheduler, "run_marketplace_payments_sync", _boom)

    result = await payments_sync_worker.run_payments_sync_once()

    assert result == {"status": "error", "error": "Supabase client not configured"}


@pytest.mark.asyncio
async def test_worker_loop_stops_after_max_cycles(monkeypatch):
    calls = []

    async def _fake_run():
        calls.append(1)
        return SyncJobSummary(provider="etsy")

    monkeypatch.setattr(scheduler, "run_marketplace_payments_sync", _fake_run)

    cycles = await payments_sync_worker.run_payments_sync_worker_loop(interval_seconds=0, max_cycles=3)

    assert cycles == 3
    assert len(calls) == 3
