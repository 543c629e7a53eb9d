"""Mirror Etsy payments into local orders/payments rows.

For one integration the engine lists the shop's payments and, for each one,
walks payment -> order detail -> first line item SKU -> local product, then
upserts an orders row and a payments row on their natural keys. Any link
missing from that chain drops the payment (nothing is written for it) and
the loop moves on. Re-running over the same remote data rewrites the same
rows, so the engine is safe to run as often as the scheduler likes.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from pydantic import ValidationError

from marketplace_sync.config import settings
from marketplace_sync.models.etsy import EtsyLineItem, EtsyOrder, EtsyPayment
from marketplace_sync.services.etsy import EtsyService
from marketplace_sync.utils.logger import logger

from .models import Integration, IntegrationSyncResult, PaymentOutcome

ORDER_STATUS_PAID = "paid"
FULFILLMENT_STATUS_UNFULFILLED = "unfulfilled"


def _format_payment_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    return str(value)


def build_order_row(
    product: Dict[str, Any],
    order: EtsyOrder,
    line_item: EtsyLineItem,
    *,
    remote_order_id: str,
    include_initial_status: bool = True,
) -> Dict[str, Any]:
    """Map a remote order + its first line item onto an orders row.

    Status fields are only set when the order is first created; later runs
    leave fulfilment transitions made elsewhere alone.
    """
    quantity = line_item.quantity or 1
    unit_price = line_item.unit_price()
    total_price = None
    if unit_price is not None:
        total_price = float(
            (Decimal(str(unit_price)) * quantity).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        )

    row = {
        "user_id": product["user_id"],
        "product_id": product["id"],
        "etsy_order_id": remote_order_id,
        "order_number": order.order_number or f"ETSY-{remote_order_id}",
        "product_name": line_item.title,
        "quantity": quantity,
        "unit_price": unit_price,
        "total_price": total_price,
    }
    if include_initial_status:
        row["status"] = ORDER_STATUS_PAID
        row["fulfillment_status"] = FULFILLMENT_STATUS_UNFULFILLED
    return row


def build_payment_row(
    product: Dict[str, Any],
    payment: EtsyPayment,
    *,
    provider: str,
    default_currency: str = "USD",
) -> Dict[str, Any]:
    return {
        "provider": provider,
        "user_id": product["user_id"],
        "order_id": payment.order_id,
        "external_payment_id": payment.payment_id,
        "amount": payment.amount.to_decimal_amount(),
        "currency": payment.amount.currency or default_currency,
        "status": payment.status,
        "payment_date": _format_payment_date(payment.create_date),
    }


class PaymentReconciler:
    def __init__(
        self,
        store,
        etsy: EtsyService,
        *,
        provider: Optional[str] = None,
        default_currency: Optional[str] = None,
    ):
        self.store = store
        self.etsy = etsy
        self.provider = provider or settings.SYNC_PROVIDER
        self.default_currency = default_currency or settings.DEFAULT_CURRENCY

    async def reconcile_integration(
        self,
        integration: Integration,
        access_token: str,
    ) -> IntegrationSyncResult:
        result = IntegrationSyncResult(integration_id=integration.id, shop_id=integration.shop_id)

        payments = await self.etsy.list_payments(
            integration.shop_id,
            access_token,
            client_id=integration.api_key,
        )
        if payments is None:
            logger.warning(
                "[payments-sync] integration=%s shop=%s payments list unavailable, nothing to sync this cycle",
                integration.id,
                integration.shop_id,
            )
            result.status = "skipped"
            return result

        result.payments_seen = len(payments)
        for raw_payment in payments:
            outcome = await self.reconcile_payment(integration, access_token, raw_payment)
            result.record(outcome)

        logger.info(
            "[payments-sync] integration=%s shop=%s seen=%s upserted=%s skipped=%s",
            integration.id,
            integration.shop_id,
            result.payments_seen,
            result.payments_upserted,
            result.skipped,
        )
        return result

    async def reconcile_payment(
        self,
        integration: Integration,
        access_token: str,
        raw_payment: Dict[str, Any],
    ) -> str:
        """Resolve one remote payment and upsert its rows. Returns a PaymentOutcome."""
        if not isinstance(raw_payment, dict) or not raw_payment.get("order_id"):
            return PaymentOutcome.MISSING_ORDER_ID
        if not raw_payment.get("payment_id"):
            logger.warning(
                "[payments-sync] integration=%s order=%s payment without payment_id",
                integration.id,
                raw_payment.get("order_id"),
            )
            return PaymentOutcome.MISSING_PAYMENT_ID

        try:
            payment = EtsyPayment.model_validate(raw_payment)
        except ValidationError as exc:
            logger.warning(
                "[payments-sync] integration=%s payment=%s invalid payload: %s",
                integration.id,
                raw_payment.get("payment_id"),
                exc.errors()[:3],
            )
            return PaymentOutcome.INVALID_PAYLOAD

        remote_order_id = payment.order_id
        raw_order = await self.etsy.get_order(
            integration.shop_id,
            remote_order_id,
            access_token,
            client_id=integration.api_key,
        )
        if raw_order is None:
            logger.info(
                "[payments-sync] integration=%s order=%s detail unavailable, skipping payment=%s",
                integration.id,
                remote_order_id,
                payment.payment_id,
            )
            return PaymentOutcome.ORDER_FETCH_FAILED
        if not raw_order:
            logger.info(
                "[payments-sync] integration=%s order=%s not returned by Etsy, skipping payment=%s",
                integration.id,
                remote_order_id,
                payment.payment_id,
            )
            return PaymentOutcome.ORDER_NOT_FOUND

        try:
            order = EtsyOrder.model_validate(raw_order)
        except ValidationError:
            return PaymentOutcome.INVALID_PAYLOAD

        # Only the first line item is used to attribute the order.
        line_item = order.first_line_item()
        if line_item is None:
            return PaymentOutcome.NO_LINE_ITEMS
        if not line_item.sku:
            return PaymentOutcome.MISSING_SKU

        products = await asyncio.to_thread(self.store.find_products_by_sku, line_item.sku)
        if not products:
            logger.info(
                "[payments-sync] integration=%s order=%s sku=%s has no local product",
                integration.id,
                remote_order_id,
                line_item.sku,
            )
            return PaymentOutcome.PRODUCT_NOT_FOUND
        if len(products) > 1:
            logger.warning(
                "[payments-sync] integration=%s order=%s sku=%s matches several products",
                integration.id,
                remote_order_id,
                line_item.sku,
            )
            return PaymentOutcome.AMBIGUOUS_PRODUCT
        product = products[0]

        existing = await asyncio.to_thread(self.store.get_order_by_remote_id, remote_order_id)
        await asyncio.to_thread(
            self.store.upsert_order,
            build_order_row(
                product,
                order,
                line_item,
                remote_order_id=remote_order_id,
                include_initial_status=existing is None,
            ),
        )
        await asyncio.to_thread(
            self.store.upsert_payment,
            build_payment_row(
                product,
                payment,
                provider=self.provider,
                default_currency=self.default_currency,
            ),
        )
        return PaymentOutcome.UPSERTED
