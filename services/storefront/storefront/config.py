"""
Storefront: 設定

起動時に一度だけ環境変数から Settings を組み立て、
必要なコンポーネント(ライフサイクル管理・決済ゲートウェイ・認証)へ
コンストラクタ経由で渡す。モジュールレベルのグローバル設定は持たない。
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """必須の設定値が欠けている、または不正な場合に送出される。"""


def _required(env: dict, key: str) -> str:
    value = env.get(key, "").strip()
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {key}")
    return value


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str
    cashfree_app_id: str
    cashfree_secret_key: str
    redis_url: str = "redis://localhost:6379"
    cashfree_base_url: str = "https://sandbox.cashfree.com/pg"
    cashfree_api_version: str = "2023-08-01"
    # {order_id} は注文 ID に置換される
    payment_return_url: str = "http://localhost:5173/payment-status?order_id={order_id}"
    currency: str = "INR"
    gateway_timeout: float = 30.0
    token_ttl_seconds: int = 3600
    cors_origins: tuple[str, ...] = field(default=("http://localhost:5173",))
    create_schema: bool = True

    @classmethod
    def from_env(cls, env: dict | None = None, env_file: str | None = ".env") -> "Settings":
        """
        環境変数から Settings を構築する。

        env_file が存在すれば python-dotenv で読み込んでから評価する。
        env を渡した場合は os.environ の代わりにそれを使う(テスト用)。
        """
        if env is None:
            if env_file and Path(env_file).exists():
                load_dotenv(env_file)
                logger.info("Loaded environment from %s", env_file)
            env = dict(os.environ)

        origins = env.get("CORS_ORIGINS", "")
        return cls(
            database_url=_required(env, "DATABASE_URL"),
            jwt_secret=_required(env, "JWT_SECRET"),
            cashfree_app_id=_required(env, "CASHFREE_APP_ID"),
            cashfree_secret_key=_required(env, "CASHFREE_SECRET_KEY"),
            redis_url=env.get("REDIS_URL", cls.redis_url),
            cashfree_base_url=env.get("CASHFREE_BASE_URL", cls.cashfree_base_url).rstrip("/"),
            cashfree_api_version=env.get("CASHFREE_API_VERSION", cls.cashfree_api_version),
            payment_return_url=env.get("PAYMENT_RETURN_URL", cls.payment_return_url),
            gateway_timeout=float(env.get("GATEWAY_TIMEOUT", cls.gateway_timeout)),
            token_ttl_seconds=int(env.get("TOKEN_TTL_SECONDS", cls.token_ttl_seconds)),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip())
            or ("http://localhost:5173",),
            create_schema=_as_bool(env.get("CREATE_SCHEMA", "true")),
        )
