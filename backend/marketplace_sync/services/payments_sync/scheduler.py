from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import List, Optional

from marketplace_sync.config import settings
from marketplace_sync.services.etsy import EtsyService, EtsyTokenRefreshError
from marketplace_sync.services.etsy_token_refresh_service import EtsyTokenRefresher
from marketplace_sync.services.supabase_store import SupabaseSyncStore, get_supabase_client
from marketplace_sync.utils.logger import logger

from .integrations import load_active_integrations
from .models import Integration, IntegrationSyncResult, SyncJobSummary
from .reconciliation import PaymentReconciler


async def sync_integration(
    integration: Integration,
    refresher: EtsyTokenRefresher,
    reconciler: PaymentReconciler,
) -> IntegrationSyncResult:
    """Token -> reconcile for one integration, inside its own error boundary."""
    refreshes_before = refresher.refresh_count
    try:
        access_token = await refresher.ensure_access_token(integration)
    except EtsyTokenRefreshError as exc:
        logger.error(
            "[payments-sync] integration=%s shop=%s token refresh failed: %s",
            integration.id,
            integration.shop_id,
            exc,
        )
        return IntegrationSyncResult(
            integration_id=integration.id,
            shop_id=integration.shop_id,
            status="error",
            error_message=f"ETSY_TOKEN_REFRESH_FAILED: {exc.message}",
        )
    except Exception as exc:
        logger.error(
            "[payments-sync] integration=%s token lookup failed: %s",
            integration.id,
            exc,
            exc_info=True,
        )
        return IntegrationSyncResult(
            integration_id=integration.id,
            shop_id=integration.shop_id,
            status="error",
            error_message=str(exc),
        )

    try:
        result = await reconciler.reconcile_integration(integration, access_token)
    except Exception as exc:
        logger.error(
            "[payments-sync] integration=%s shop=%s reconciliation failed: %s",
            integration.id,
            integration.shop_id,
            exc,
            exc_info=True,
        )
        result = IntegrationSyncResult(
            integration_id=integration.id,
            shop_id=integration.shop_id,
            status="error",
            error_message=str(exc),
        )
    result.token_refreshed = refresher.refresh_count > refreshes_before
    return result


async def run_marketplace_payments_sync(
    *,
    store=None,
    etsy: Optional[EtsyService] = None,
    provider: Optional[str] = None,
    integration_id: Optional[str] = None,
    user_id: Optional[str] = None,
    max_concurrency: Optional[int] = None,
    deadline_seconds: Optional[float] = None,
) -> SyncJobSummary:
    """Run one payments sync cycle.

    Integrations are processed concurrently (bounded by max_concurrency).
    Failures inside one integration are recorded on its result and never
    cancel the others. Failing to load the integrations raises
    IntegrationLoadError. Once the deadline has passed no further integration
    is started; work already committed is kept.
    """
    provider = provider or settings.SYNC_PROVIDER
    max_concurrency = max_concurrency or settings.SYNC_MAX_CONCURRENT_INTEGRATIONS
    deadline_seconds = deadline_seconds if deadline_seconds is not None else settings.SYNC_DEADLINE_SECONDS

    started = time.monotonic()
    summary = SyncJobSummary(provider=provider)

    if store is None:
        store = SupabaseSyncStore(get_supabase_client())

    if etsy is None:
        etsy = EtsyService()

    async with etsy:
        integrations = await asyncio.to_thread(
            load_active_integrations,
            store,
            provider,
            integration_id=integration_id,
            user_id=user_id,
        )
        if not integrations:
            logger.info("[payments-sync] no active %s integrations, nothing to do", provider)
            summary.finished_at = datetime.now(timezone.utc)
            return summary

        refresher = EtsyTokenRefresher(store, etsy)
        reconciler = PaymentReconciler(store, etsy, provider=provider)
        semaphore = asyncio.Semaphore(max_concurrency)

        async def _run_bounded(integration: Integration) -> IntegrationSyncResult:
            async with semaphore:
                if time.monotonic() - started >= deadline_seconds:
                    summary.deadline_exceeded = True
                    logger.warning(
                        "[payments-sync] deadline of %ss exceeded, not starting integration=%s",
                        deadline_seconds,
                        integration.id,
                    )
                    return IntegrationSyncResult(
                        integration_id=integration.id,
                        shop_id=integration.shop_id,
                        status="not_started",
                    )
                logger.info(
                    "[payments-sync] syncing integration=%s shop=%s",
                    integration.id,
                    integration.shop_id,
                )
                return await sync_integration(integration, refresher, reconciler)

        results: List[IntegrationSyncResult] = await asyncio.gather(
            *(_run_bounded(integration) for integration in integrations)
        )
        summary.results = list(results)

    summary.finished_at = datetime.now(timezone.utc)
    logger.info(
        "[payments-sync] completed provider=%s integrations=%s failed=%s payments_upserted=%s deadline_exceeded=%s",
        provider,
        summary.integrations_total,
        summary.integrations_failed,
        summary.payments_upserted,
        summary.deadline_exceeded,
    )
    return summary
