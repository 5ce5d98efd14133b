"""
Storefront: 注文集約 (Order Aggregate)

イベント履歴をリプレイして注文の現在の状態を復元する。
支払いステータスの状態遷移はここで守る。

apply_xxx メソッド: 各イベントを適用して状態を変更する
"""

from decimal import Decimal

from .models import FULFILLMENT_CONFIRMED, FULFILLMENT_PROCESSING, PaymentMethod, PaymentStatus


class OrderAggregate:
    """
    注文集約: イベントから現在の状態を再構築する。

    支払いステータスの状態遷移:
        PENDING → PAID  (ゲートウェイの支払い確認のみ)
    逆方向の遷移は存在しない。
    """

    def __init__(self) -> None:
        self.id: str | None = None
        self.owner_email: str = ""
        self.total_amount: Decimal = Decimal("0")
        self.payment_method: PaymentMethod | None = None
        self.payment_status: PaymentStatus | None = None
        self.fulfillment_status: str = ""
        self.external_order_id: str | None = None
        self.version: int = 0

    @property
    def exists(self) -> bool:
        return self.id is not None

    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID

    # ── イベント適用メソッド ──────────────────────────

    def apply_order_placed(self, data: dict) -> None:
        self.id = data["order_id"]
        self.owner_email = data["owner_email"]
        self.total_amount = Decimal(str(data["total_amount"]))
        self.payment_method = PaymentMethod(data["payment_method"])
        self.payment_status = PaymentStatus.PENDING
        self.fulfillment_status = FULFILLMENT_PROCESSING

    def apply_payment_session_created(self, data: dict) -> None:
        self.external_order_id = data["external_order_id"]

    def apply_payment_confirmed(self, data: dict) -> None:
        self.payment_status = PaymentStatus.PAID
        self.fulfillment_status = data.get("fulfillment_status", FULFILLMENT_CONFIRMED)

    def apply_fulfillment_status_changed(self, data: dict) -> None:
        self.fulfillment_status = data["fulfillment_status"]

    # ── イベントリプレイ ─────────────────────────────

    def apply_event(self, event_type: str, event_data: dict) -> None:
        """イベントタイプに応じた apply メソッドを呼び出す。"""
        handler = {
            "OrderPlaced": self.apply_order_placed,
            "PaymentSessionCreated": self.apply_payment_session_created,
            "PaymentConfirmed": self.apply_payment_confirmed,
            "FulfillmentStatusChanged": self.apply_fulfillment_status_changed,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        """イベント列から集約を再構築する。"""
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg
