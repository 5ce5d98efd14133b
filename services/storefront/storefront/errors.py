"""
Storefront: エラー分類

すべての業務エラーは StorefrontError を継承し、HTTP ステータスを持つ。
HTTP 層(main.py)の例外ハンドラが JSON レスポンスへ変換する。
"""


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(StorefrontError):
    """リクエストの必須項目が欠けている、または不正"""
    status_code = 400


class InvalidStateError(ValidationError):
    """注文の状態が要求された操作を許さない(COD 注文の決済セッションなど)"""


class Unauthenticated(StorefrontError):
    """Bearer トークンがない"""
    status_code = 401


class InvalidCredential(StorefrontError):
    """トークンが不正・期限切れ"""
    status_code = 403


class Unauthorized(StorefrontError):
    """ロールが不足している"""
    status_code = 403


class NotFoundError(StorefrontError):
    status_code = 404


class GatewayError(StorefrontError):
    """
    決済ゲートウェイ呼び出しの失敗。

    上流のステータスコードとレスポンス本文を診断用に保持する。
    自動リトライはしない。呼び出し元がリトライを判断する。
    """
    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None, upstream_body=None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class PersistenceError(StorefrontError):
    status_code = 500
