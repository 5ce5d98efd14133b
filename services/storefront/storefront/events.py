"""
Storefront: 注文イベント定義

注文に起きた事実をイベントとして定義する。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from .models import LineItem, PaymentMethod, ShippingAddress


class OrderPlaced(BaseModel):
    """注文が作成された"""
    order_id: str
    owner_email: str
    line_items: list[LineItem]
    total_amount: Decimal
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    timestamp: datetime


class PaymentSessionCreated(BaseModel):
    """決済ゲートウェイでセッションが発行された"""
    order_id: str
    external_order_id: str
    timestamp: datetime


class PaymentConfirmed(BaseModel):
    """ゲートウェイが支払い済みを報告した"""
    order_id: str
    fulfillment_status: str
    timestamp: datetime


class FulfillmentStatusChanged(BaseModel):
    """管理者が配送ステータスを変更した"""
    order_id: str
    previous_status: str
    fulfillment_status: str
    changed_by: str
    timestamp: datetime
