"""
连接认证服务 - 将 Bearer 凭据解析为用户身份

Two credential kinds are accepted:
1. JWTs signed with ``SECRET_KEY`` (``sub`` is the user id);
2. opaque API tokens, looked up by SHA-256 digest through the identity store.

An expired JWT or one with a bad signature raises ``TokenExpiredException``
so callers can tell "this token is dead" apart from every other failure,
which raises ``UnauthorizedException``.
"""
from typing import Optional
from datetime import datetime, timedelta, timezone
import hashlib
import uuid

import jwt

from application.ports.identity import AuthenticatedUser, IdentityStore
from core.config import settings
from core.exceptions import UnauthorizedException, TokenExpiredException
from core.logging_config import get_logger


logger = get_logger(__name__)


def hash_token(token: str) -> str:
    """计算令牌的SHA-256哈希"""
    return hashlib.sha256(token.encode()).hexdigest()


class Authenticator:
    """Identity verification used by the WebSocket handshake and HTTP routes."""

    def __init__(self, identity_store: Optional[IdentityStore] = None) -> None:
        self._store = identity_store

    def create_access_token(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        name: Optional[str] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """创建访问令牌"""
        expire = datetime.now(timezone.utc) + (
            expires_delta if expires_delta is not None
            else timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        to_encode = {
            "sub": str(user_id),
            "email": email,
            "name": name,
            "exp": expire,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    async def authenticate(self, token: Optional[str]) -> AuthenticatedUser:
        if not token:
            raise UnauthorizedException("Authentication failed", reason="no_token")

        user = self._verify_jwt(token)
        if user is not None:
            return user

        user = await self._verify_api_token(token)
        if user is not None:
            return user
        raise UnauthorizedException("Authentication failed", reason="invalid_token")

    def _verify_jwt(self, token: str) -> Optional[AuthenticatedUser]:
        """Return the identity for a valid JWT, None when ``token`` is not one of ours."""
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
            )
        except (jwt.ExpiredSignatureError, jwt.InvalidSignatureError) as exc:
            logger.info("auth_token_rejected", error=type(exc).__name__)
            raise TokenExpiredException()
        except jwt.InvalidTokenError:
            # Not a JWT; may still be an API token
            return None

        if payload.get("type", "access") != "access":
            return None
        user_id = payload.get("sub")
        if not user_id:
            return None
        return AuthenticatedUser(id=str(user_id), email=payload.get("email"), name=payload.get("name"))

    async def _verify_api_token(self, token: str) -> Optional[AuthenticatedUser]:
        if self._store is None:
            return None
        try:
            record = await self._store.find_api_token(hash_token(token))
            if record is None or record.revoked:
                return None
            return await self._store.get_user(record.user_id)
        except Exception as exc:
            logger.warning("auth_identity_store_failed", error=str(exc))
            raise UnauthorizedException("Authentication failed", reason="identity_store_error") from exc
