from typing import Any, Dict, List, Optional

from supabase import create_client, Client

from marketplace_sync.config import settings
from marketplace_sync.utils.logger import logger

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    global _supabase_client
    if _supabase_client:
        return _supabase_client

    if not settings.supabase_configured:
        logger.error("SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not set. Sync job cannot reach the store.")
        raise RuntimeError("Supabase client not configured")

    _supabase_client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    return _supabase_client


class SupabaseSyncStore:
    """Table operations the payments sync job performs against Supabase.

    Writes are upserts on natural keys:
    - orders:   etsy_order_id
    - payments: (provider, external_payment_id)

    Methods are blocking (supabase-py sync client); async callers run them
    with asyncio.to_thread.
    """

    ORDER_CONFLICT_KEY = "etsy_order_id"
    PAYMENT_CONFLICT_KEY = "provider,external_payment_id"

    def __init__(self, client: Client):
        self.client = client

    def list_active_integrations(
        self,
        provider: str,
        *,
        integration_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = (
            self.client.table("integrations")
            .select("*")
            .eq("provider", provider)
            .eq("is_active", True)
        )
        if integration_id:
            query = query.eq("id", integration_id)
        if user_id:
            query = query.eq("user_id", user_id)
        res = query.execute()
        return list(res.data or [])

    def get_integration(self, integration_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.client.table("integrations")
            .select("*")
            .eq("id", integration_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None

    def update_integration_tokens(
        self,
        integration_id: str,
        fields: Dict[str, Any],
        *,
        expected_expires_at: Optional[Any],
    ) -> Optional[Dict[str, Any]]:
        """Compare-and-swap the token fields.

        The row is only updated while its expires_at still equals the value the
        caller observed. Returns the updated row, or None when another writer
        refreshed the integration in between.
        """
        query = self.client.table("integrations").update(fields).eq("id", integration_id)
        if expected_expires_at is None:
            query = query.is_("expires_at", "null")
        else:
            query = query.eq("expires_at", expected_expires_at)
        res = query.execute()
        rows = res.data or []
        return rows[0] if rows else None

    def find_products_by_sku(self, sku: str) -> List[Dict[str, Any]]:
        # Two rows are enough to tell "unique" from "ambiguous".
        res = (
            self.client.table("products")
            .select("id, user_id")
            .eq("skn", sku)
            .limit(2)
            .execute()
        )
        return list(res.data or [])

    def get_order_by_remote_id(self, etsy_order_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.client.table("orders")
            .select("id, status, fulfillment_status")
            .eq("etsy_order_id", etsy_order_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None

    def upsert_order(self, row: Dict[str, Any]) -> None:
        self.client.table("orders").upsert(row, on_conflict=self.ORDER_CONFLICT_KEY).execute()

    def upsert_payment(self, row: Dict[str, Any]) -> None:
        self.client.table("payments").upsert(row, on_conflict=self.PAYMENT_CONFLICT_KEY).execute()
