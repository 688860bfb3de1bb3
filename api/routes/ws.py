"""WebSocket route for realtime plan collaboration.

Connection flow: accept -> authenticate the bearer credential once ->
register with the collaboration server -> dispatch client messages until
the socket closes -> tear down presence.

Close codes:
- 4001: credential expired or signature invalid; do not retry with it.
- 1008: any other authentication failure.
- 1001: heartbeat gave up on a silent client.

Heartbeat: after an idle interval the server sends ``{"type": "ping"}``
and closes after more than the configured number of silent rounds.
"""
from __future__ import annotations

from typing import Optional, Union
import asyncio

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends

from api.dependencies import get_authenticator, get_collaboration_server
from application.services.auth_service import Authenticator
from application.services.collaboration_service import CollaborationServer
from core.config import settings
from core.exceptions import TokenExpiredException
from core.logging_config import get_logger
from domain.realtime.events import ConnectionEvent
from infrastructure.realtime.connection_manager import Connection, ConnectionState
from shared.codes import WSCloseCode


logger = get_logger(__name__)


router = APIRouter(tags=["WebSocket"])


def _extract_token(ws: WebSocket) -> Optional[str]:
    # Prefer query param, fallback to header `Authorization: Bearer x`
    token = ws.query_params.get("token")
    if token:
        return token
    auth = ws.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


async def _receive(ws: WebSocket) -> Union[str, bytes]:
    message = await ws.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    text = message.get("text")
    return text if text is not None else (message.get("bytes") or b"")


async def _serve(ws: WebSocket, conn: Connection, server: CollaborationServer) -> None:
    idle_ping_interval = float(settings.realtime.idle_ping_interval_s)
    pong_grace = float(settings.realtime.pong_grace_s)
    missed_limit = int(settings.realtime.missed_ping_limit)

    missed = 0
    while True:
        if idle_ping_interval > 0:
            try:
                raw = await asyncio.wait_for(_receive(ws), timeout=idle_ping_interval)
            except asyncio.TimeoutError:
                # Idle: send ping and wait a short grace for any traffic
                missed += 1
                if not await conn.send({"type": ConnectionEvent.PING.value}):
                    await conn.close(code=WSCloseCode.GOING_AWAY)
                    return
                try:
                    raw = await asyncio.wait_for(_receive(ws), timeout=pong_grace)
                except asyncio.TimeoutError:
                    if missed > missed_limit:
                        logger.info("ws_heartbeat_timeout", user_id=conn.user_id, missed=missed)
                        await conn.close(code=WSCloseCode.GOING_AWAY)
                        return
                    continue
        else:
            raw = await _receive(ws)
        # any inbound traffic proves the client alive
        missed = 0
        await server.handle_message(conn, raw)


@router.websocket(settings.realtime.ws_path)
async def collaboration_endpoint(
    ws: WebSocket,
    authenticator: Authenticator = Depends(get_authenticator),
) -> None:
    await ws.accept()
    logger.debug("ws_state", state=ConnectionState.AUTHENTICATING.value)

    try:
        user = await authenticator.authenticate(_extract_token(ws))
    except TokenExpiredException:
        logger.info("ws_auth_failed", reason="token_expired")
        await ws.close(code=WSCloseCode.TOKEN_EXPIRED, reason="Token expired or invalid")
        return
    except Exception as exc:
        logger.info("ws_auth_failed", reason=getattr(exc, "details", None) or type(exc).__name__)
        await ws.close(code=WSCloseCode.POLICY_VIOLATION, reason="Authentication failed")
        return

    server = get_collaboration_server(ws)
    if server is None:
        logger.error("ws_server_unavailable", user_id=user.id)
        await ws.close(code=WSCloseCode.TRY_AGAIN_LATER, reason="Realtime unavailable")
        return

    structlog.contextvars.bind_contextvars(user_id=user.id)
    conn = await server.connect(user, ws)
    try:
        await _serve(ws, conn, server)
    except WebSocketDisconnect:
        logger.info("ws_disconnected", user_id=user.id)
    except Exception as exc:
        logger.error("ws_error", user_id=user.id, error=str(exc), exc_info=True)
    finally:
        await server.disconnect(conn)
        structlog.contextvars.unbind_contextvars("user_id")
