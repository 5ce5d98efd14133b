"""
Storefront: 永続化層

テーブル定義と非同期エンジン / セッションファクトリの生成。
注文は orders テーブル(リードモデル)と order_events テーブル
(追記専用のイベント履歴)の二つで管理する。
"""

import logging
from contextlib import asynccontextmanager

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .errors import PersistenceError

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(16), nullable=False, default="USER"),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("name", String(255), nullable=False),
    Column("images", JSON, nullable=False),
    Column("category", String(64), nullable=False),
    Column("new_price", Numeric(12, 2), nullable=False),
    Column("old_price", Numeric(12, 2), nullable=False),
    Column("date", DateTime(timezone=True), nullable=False),
    Column("available", Boolean, nullable=False, default=True),
)

carts = Table(
    "carts",
    metadata,
    Column("owner_email", String(255), primary_key=True),
    # {product_id(str): quantity}
    Column("items", JSON, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

orders = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("owner_email", String(255), nullable=False, index=True),
    Column("line_items", JSON, nullable=False),
    Column("total_amount", Numeric(12, 2), nullable=False),
    Column("shipping_address", JSON, nullable=False),
    Column("payment_method", String(16), nullable=False),
    Column("payment_status", String(16), nullable=False),
    Column("fulfillment_status", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

order_events = Table(
    "order_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(36), nullable=False, index=True),
    Column("event_type", String(64), nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("version", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    # 同一注文・同一バージョンの二重書き込みを検知する(楽観的ロック)
    UniqueConstraint("order_id", "version", name="uq_order_events_order_version"),
)


def make_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """全テーブルを作成する(既存テーブルはそのまま)。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


@asynccontextmanager
async def open_session(session_factory: async_sessionmaker[AsyncSession]):
    """
    セッションを開き、SQLAlchemy の例外を PersistenceError に変換する。

    例外時はロールバックするので、途中まで書いた状態は残らない。
    """
    async with session_factory() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            logger.exception("Database operation failed")
            raise PersistenceError("Database operation failed") from e
