"""
Storefront: ドメインモデル

注文のリードモデルと、その構成要素(明細・配送先)。
金額は Decimal で扱い、合計は常にサーバ側で計算する。
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

FULFILLMENT_PROCESSING = "Processing"
FULFILLMENT_CONFIRMED = "Confirmed"

# ASCII 数字 10 桁のみ(全角やアラビア数字、末尾の改行は不可)
_PHONE_RE = re.compile(r"[0-9]{10}")
_CENTS = Decimal("0.01")


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "COD"
    ONLINE = "ONLINE"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class LineItem(BaseModel):
    product_id: int
    name: str
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, decimal_places=2)
    image: str = ""

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class ShippingAddress(BaseModel):
    name: str
    street: str
    city: str
    region: str
    postal_code: str
    phone: str

    def has_gateway_phone(self) -> bool:
        """決済ゲートウェイが受け付ける 10 桁の電話番号か"""
        return _PHONE_RE.fullmatch(self.phone) is not None


def order_total(line_items: list[LineItem]) -> Decimal:
    return sum((item.subtotal for item in line_items), Decimal("0")).quantize(_CENTS)


class Order(BaseModel):
    id: str
    owner_email: str
    line_items: list[LineItem]
    total_amount: Decimal
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    fulfillment_status: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "Order":
        return cls(
            id=row.id,
            owner_email=row.owner_email,
            line_items=row.line_items,
            total_amount=row.total_amount,
            shipping_address=row.shipping_address,
            payment_method=row.payment_method,
            payment_status=row.payment_status,
            fulfillment_status=row.fulfillment_status,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
