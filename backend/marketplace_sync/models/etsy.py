from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict


def _to_two_places(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class EtsyTokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    token_type: Optional[str] = None


class EtsyMoney(BaseModel):
    """Amount in minor units, e.g. ``{"value": 4999, "currency": "USD"}``."""

    model_config = ConfigDict(extra="ignore")

    value: int
    currency: Optional[str] = None
    divisor: int = 100

    def to_decimal_amount(self) -> float:
        divisor = self.divisor or 100
        return _to_two_places(Decimal(self.value) / Decimal(divisor))


class EtsyPayment(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: EtsyMoney
    status: Optional[str] = None
    create_date: Optional[Union[int, float, str]] = None


class EtsyLineItem(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    sku: Optional[str] = None
    title: Optional[str] = None
    quantity: int = 1
    price: Optional[Union[float, EtsyMoney]] = None

    def unit_price(self) -> Optional[float]:
        if self.price is None:
            return None
        if isinstance(self.price, EtsyMoney):
            return self.price.to_decimal_amount()
        return _to_two_places(Decimal(str(self.price)))


class EtsyOrder(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    order_id: Optional[str] = None
    order_number: Optional[str] = None
    line_items: List[EtsyLineItem] = []

    def first_line_item(self) -> Optional[EtsyLineItem]:
        return self.line_items[0] if self.line_items else None
