"""
Storefront: 認可ゲート

Bearer トークン(JWT, HS256)から呼び出し元の identity と role を解決する。
ロールは閉じた列挙 {USER, ADMIN} とし、権限チェックは Caller.require に集約する。
パスワードは bcrypt でハッシュ化する。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import bcrypt
import jwt
from fastapi import Request

from .config import Settings
from .errors import InvalidCredential, Unauthenticated, Unauthorized

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Caller:
    identity: str
    role: Role
    username: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def require(self, role: Role) -> None:
        """指定ロールを持たなければ Unauthorized を送出する。"""
        if role is Role.ADMIN and not self.is_admin:
            logger.warning("Admin access denied for %s", self.identity)
            raise Unauthorized("Admin access required")

    def can_access(self, owner_email: str) -> bool:
        return self.is_admin or self.identity == owner_email


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


class AuthGate:
    def __init__(self, settings: Settings):
        self.secret = settings.jwt_secret
        self.ttl = timedelta(seconds=settings.token_ttl_seconds)

    def issue_token(self, username: str, email: str, role: Role) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "username": username,
            "email": email,
            "role": role.value,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def resolve(self, credential: str | None) -> Caller:
        """
        Bearer トークンを検証して Caller を返す。

        トークンなし → Unauthenticated
        署名不正・期限切れ・クレーム欠落 → InvalidCredential
        """
        if not credential:
            raise Unauthenticated("No token provided")
        try:
            claims = jwt.decode(credential, self.secret, algorithms=[JWT_ALGORITHM])
        except jwt.PyJWTError as e:
            logger.info("Rejected token: %s", e)
            raise InvalidCredential("Invalid token") from e

        try:
            return Caller(
                identity=claims["email"],
                role=Role(claims.get("role", Role.USER.value)),
                username=claims.get("username", ""),
            )
        except (KeyError, ValueError) as e:
            raise InvalidCredential("Invalid token") from e


def bearer_token(authorization: str | None) -> str | None:
    """Authorization ヘッダから "Bearer xxx" のトークン部分を取り出す。"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def current_caller(request: Request) -> Caller:
    """FastAPI 依存関数: リクエストの呼び出し元を解決する。"""
    gate: AuthGate = request.app.state.auth
    return gate.resolve(bearer_token(request.headers.get("authorization")))
