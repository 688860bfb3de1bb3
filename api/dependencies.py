"""
API依赖项 - 认证与实时服务获取
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.requests import HTTPConnection
from typing import Optional

from application.ports.identity import AuthenticatedUser
from application.services.auth_service import Authenticator
from application.services.broadcast_service import BroadcastService
from application.services.collaboration_service import CollaborationServer
from core.exceptions import UnauthorizedException

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT or API token bearer authentication",
    auto_error=False,
)


def get_authenticator(conn: HTTPConnection) -> Authenticator:
    authenticator = getattr(conn.app.state, "authenticator", None)
    if authenticator is None:
        raise RuntimeError("Authenticator not initialized. Ensure lifespan sets app.state.authenticator.")
    return authenticator


def get_broadcaster(conn: HTTPConnection) -> BroadcastService:
    """Return the façade; it reports "not available" itself when realtime failed to start."""
    broadcaster = getattr(conn.app.state, "broadcaster", None)
    if broadcaster is None:
        broadcaster = BroadcastService()
        conn.app.state.broadcaster = broadcaster
    return broadcaster


def get_collaboration_server(conn: HTTPConnection) -> Optional[CollaborationServer]:
    return getattr(conn.app.state, "collaboration_server", None)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    authenticator: Authenticator = Depends(get_authenticator),
) -> AuthenticatedUser:
    """获取当前登录用户（令牌过期时抛出 TokenExpiredException）"""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("未提供认证凭据", reason="no_token")
    return await authenticator.authenticate(credentials.credentials)
