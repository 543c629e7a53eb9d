from __future__ import annotations

from typing import List, Optional

from marketplace_sync.utils.logger import logger

from .errors import IntegrationLoadError
from .models import Integration


def load_active_integrations(
    store,
    provider: str,
    *,
    integration_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[Integration]:
    """Return every active integration for ``provider``.

    By default this is a global selection across all users (the job runs as a
    background cron). ``integration_id`` / ``user_id`` narrow it for a manual
    sync of one shop or one seller.
    """
    try:
        rows = store.list_active_integrations(
            provider,
            integration_id=integration_id,
            user_id=user_id,
        )
    except Exception as exc:
        logger.error("[payments-sync] failed to load %s integrations: %s", provider, exc)
        raise IntegrationLoadError(f"Failed to load active {provider} integrations: {exc}") from exc

    integrations = []
    for row in rows:
        if not row.get("id"):
            logger.warning("[payments-sync] ignoring integration row without id: shop_id=%s", row.get("shop_id"))
            continue
        integrations.append(Integration.from_row(row))

    logger.info(
        "[payments-sync] loaded %s active %s integrations (integration_id=%s user_id=%s)",
        len(integrations),
        provider,
        integration_id,
        user_id,
    )
    return integrations
