"""Access-token lifecycle for Etsy integrations.

The flow for one integration is:
    stored token still valid -> reuse it, no network call
    otherwise -> per-integration lock -> re-read the row (someone else may
    have refreshed it) -> POST the OAuth token endpoint -> compare-and-swap
    the new access/refresh token + expiry onto the integration row.

Refreshes for the same integration are serialised in-process by a lock
registry shared by every refresher on the running event loop (so the HTTP
trigger and the worker loop wait on the same lock), and across processes by
the compare-and-swap on expires_at.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from marketplace_sync.config import settings
from marketplace_sync.services.etsy import EtsyService, EtsyTokenRefreshError
from marketplace_sync.services.payments_sync.models import Integration, parse_timestamp
from marketplace_sync.utils.logger import logger

# One registry per event loop; asyncio.Lock must not cross loops.
_refresh_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def shared_refresh_locks() -> Dict[str, asyncio.Lock]:
    loop = asyncio.get_running_loop()
    locks = _refresh_locks.get(loop)
    if locks is None:
        locks = {}
        _refresh_locks[loop] = locks
    return locks


class EtsyTokenRefresher:
    def __init__(
        self,
        store,
        etsy: EtsyService,
        *,
        skew_seconds: Optional[int] = None,
        locks: Optional[Dict[str, asyncio.Lock]] = None,
    ):
        self.store = store
        self.etsy = etsy
        self.skew_seconds = (
            skew_seconds if skew_seconds is not None else settings.ETSY_TOKEN_REFRESH_SKEW_SECONDS
        )
        self._locks = locks
        self.refresh_count = 0

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _lock_for(self, integration_id: str) -> asyncio.Lock:
        locks = self._locks if self._locks is not None else shared_refresh_locks()
        lock = locks.get(integration_id)
        if lock is None:
            lock = asyncio.Lock()
            locks[integration_id] = lock
        return lock

    def is_token_valid(self, access_token: Optional[str], expires_at) -> bool:
        if not access_token:
            return False
        expiry = parse_timestamp(expires_at)
        if expiry is None:
            return False
        return expiry > self._now() + timedelta(seconds=self.skew_seconds)

    async def ensure_access_token(self, integration: Integration) -> str:
        """Return a usable access token for ``integration``, refreshing if needed.

        Raises EtsyTokenRefreshError when the refresh call fails; the caller
        decides how far that failure propagates.
        """
        if self.is_token_valid(integration.access_token, integration.expires_at):
            return integration.access_token

        async with self._lock_for(integration.id):
            current = await asyncio.to_thread(self.store.get_integration, integration.id)
            if current is not None:
                if self.is_token_valid(current.get("access_token"), current.get("expires_at")):
                    logger.info(
                        "[token-refresh] integration=%s already refreshed by another run",
                        integration.id,
                    )
                    integration.access_token = current.get("access_token")
                    integration.refresh_token = current.get("refresh_token")
                    integration.expires_at = current.get("expires_at")
                    return integration.access_token
                # Work from the latest stored refresh token / expiry.
                integration.refresh_token = current.get("refresh_token") or integration.refresh_token
                integration.expires_at = current.get("expires_at")

            return await self._refresh(integration)

    async def _refresh(self, integration: Integration) -> str:
        logger.info(
            "[token-refresh] refreshing integration=%s shop=%s old_expires_at=%s",
            integration.id,
            integration.shop_id,
            integration.expires_at,
        )
        token = await self.etsy.refresh_access_token(
            integration.api_key or "",
            integration.refresh_token or "",
        )
        self.refresh_count += 1

        new_expires_at = (self._now() + timedelta(seconds=int(token.expires_in))).isoformat()
        fields = {
            "access_token": token.access_token,
            # Etsy rotates refresh tokens; keep the old one if none came back.
            "refresh_token": token.refresh_token or integration.refresh_token,
            "expires_at": new_expires_at,
        }

        updated = await asyncio.to_thread(
            self.store.update_integration_tokens,
            integration.id,
            fields,
            expected_expires_at=integration.expires_at,
        )
        if updated is None:
            logger.warning(
                "[token-refresh] integration=%s was refreshed concurrently; keeping the stored row",
                integration.id,
            )
        else:
            logger.info(
                "[token-refresh] SUCCESS integration=%s new_expires_at=%s",
                integration.id,
                new_expires_at,
            )

        integration.access_token = fields["access_token"]
        integration.refresh_token = fields["refresh_token"]
        integration.expires_at = new_expires_at
        return token.access_token


__all__ = ["EtsyTokenRefresher", "EtsyTokenRefreshError"]
