from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError


_DATETIME = TypeAdapter(datetime)


class PaymentOutcome:
    UPSERTED = "upserted"
    MISSING_PAYMENT_ID = "missing_payment_id"
    INVALID_PAYLOAD = "invalid_payload"
    MISSING_ORDER_ID = "missing_order_id"
    ORDER_FETCH_FAILED = "order_fetch_failed"
    ORDER_NOT_FOUND = "order_not_found"
    NO_LINE_ITEMS = "no_line_items"
    MISSING_SKU = "missing_sku"
    PRODUCT_NOT_FOUND = "product_not_found"
    AMBIGUOUS_PRODUCT = "ambiguous_product"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (any fractional-second precision, with
    or without a trailing "Z") and unix seconds. Naive values are treated as
    UTC. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = value.strip()
    try:
        parsed = _DATETIME.validate_python(value)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Integration:
    """One connected shop, as stored in the integrations table."""

    id: str
    provider: str
    shop_id: str
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[Any] = None
    is_active: bool = True
    user_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Integration":
        return cls(
            id=str(row["id"]),
            provider=row.get("provider") or "",
            shop_id=str(row.get("shop_id") or ""),
            api_key=row.get("api_key"),
            access_token=row.get("access_token"),
            refresh_token=row.get("refresh_token"),
            expires_at=row.get("expires_at"),
            is_active=bool(row.get("is_active", True)),
            user_id=row.get("user_id"),
        )


@dataclass
class IntegrationSyncResult:
    integration_id: str
    shop_id: str
    status: str = "ok"  # ok | skipped | error | not_started
    payments_seen: int = 0
    orders_upserted: int = 0
    payments_upserted: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)
    token_refreshed: bool = False
    error_message: Optional[str] = None

    def record(self, outcome: str) -> None:
        if outcome == PaymentOutcome.UPSERTED:
            self.orders_upserted += 1
            self.payments_upserted += 1
        else:
            self.skipped[outcome] = self.skipped.get(outcome, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "shop_id": self.shop_id,
            "status": self.status,
            "payments_seen": self.payments_seen,
            "orders_upserted": self.orders_upserted,
            "payments_upserted": self.payments_upserted,
            "skipped": dict(self.skipped),
            "token_refreshed": self.token_refreshed,
            "error_message": self.error_message,
        }


@dataclass
class SyncJobSummary:
    provider: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    results: List[IntegrationSyncResult] = field(default_factory=list)
    deadline_exceeded: bool = False

    @property
    def integrations_total(self) -> int:
        return len(self.results)

    @property
    def integrations_failed(self) -> int:
        return sum(1 for r in self.results if r.status == "error")

    @property
    def payments_upserted(self) -> int:
        return sum(r.payments_upserted for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "integrations_total": self.integrations_total,
            "integrations_failed": self.integrations_failed,
            "payments_upserted": self.payments_upserted,
            "deadline_exceeded": self.deadline_exceeded,
            "results": [r.to_dict() for r in self.results],
        }
