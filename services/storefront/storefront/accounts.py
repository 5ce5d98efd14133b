"""
Storefront: アカウント

サインアップ・ログイン・管理者昇格。
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth import AuthGate, Caller, Role, check_password, hash_password
from .db import open_session, users
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], gate: AuthGate):
        self.session_factory = session_factory
        self.gate = gate

    async def signup(self, username: str, email: str, password: str) -> dict:
        if not username or not email or not password:
            raise ValidationError("All fields are required")

        async with open_session(self.session_factory) as session:
            result = await session.execute(select(users.c.id).where(users.c.email == email))
            if result.first():
                raise ValidationError("Email already exists")
            try:
                await session.execute(
                    insert(users).values(
                        id=str(uuid4()),
                        username=username,
                        email=email,
                        password_hash=hash_password(password),
                        role=Role.USER.value,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                await session.commit()
            except IntegrityError as e:
                # 同時サインアップで UNIQUE 制約に当たった
                await session.rollback()
                raise ValidationError("Email already exists") from e

        logger.info("User registered: %s", email)
        return {"success": True, "message": "User registered successfully"}

    async def login(self, email: str, password: str) -> dict:
        if not email or not password:
            raise ValidationError("Email and password required")

        async with open_session(self.session_factory) as session:
            result = await session.execute(select(users).where(users.c.email == email))
            user = result.fetchone()

        if not user:
            raise ValidationError("Invalid email")
        if not check_password(password, user.password_hash):
            raise ValidationError("Invalid password")

        role = Role(user.role)
        token = self.gate.issue_token(user.username, user.email, role)
        return {"success": True, "token": token, "role": role.value}

    async def make_admin(self, caller: Caller, email: str) -> dict:
        caller.require(Role.ADMIN)
        if not email:
            raise ValidationError("Email is required")

        async with open_session(self.session_factory) as session:
            result = await session.execute(
                update(users).where(users.c.email == email).values(role=Role.ADMIN.value)
            )
            if result.rowcount == 0:
                raise NotFoundError("User not found")
            await session.commit()

        logger.info("%s promoted %s to admin", caller.identity, email)
        return {"success": True, "message": f"{email} is now an admin"}

    async def verify_admin(self, caller: Caller) -> dict:
        return {"isAdmin": caller.is_admin}
