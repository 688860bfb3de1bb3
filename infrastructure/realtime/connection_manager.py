"""In-process WebSocket connection registry.

Tracks the live connection of each authenticated user and owns the
per-connection outbound queue and sender task. One connection per user is
tracked for delivery: registering a new socket for a user supersedes the
previous one ("last socket wins").
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from core.config import settings
from core.logging_config import get_logger
from shared.codes import WSCloseCode


logger = get_logger(__name__)

_OVERFLOW_POLICIES = {"drop_oldest", "drop_new", "disconnect"}


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    CLOSED = "closed"


def serialize_message(message: Any) -> dict:
    """Convert an envelope model or an ad hoc dict into a JSON-ready dict."""
    to_wire = getattr(message, "to_wire", None)
    if callable(to_wire):
        return to_wire()
    if isinstance(message, BaseModel):
        return message.model_dump(mode="json", by_alias=True)
    return jsonable_encoder(message)


def socket_is_open(ws: Any) -> bool:
    return (
        getattr(ws, "client_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
        and getattr(ws, "application_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
    )


class Connection:
    """One authenticated transport session plus its cursor state."""

    def __init__(
        self,
        user_id: str,
        websocket: WebSocket,
        *,
        user_name: Optional[str] = None,
        queue_max: int = 100,
        overflow_policy: str = "drop_oldest",
    ) -> None:
        self.user_id = user_id
        self.user_name = user_name
        self.websocket = websocket
        self.state = ConnectionState.CONNECTED
        self.current_plan_id: Optional[str] = None
        self.current_node_id: Optional[str] = None
        self.connected_at = datetime.now(timezone.utc)
        policy = (overflow_policy or "drop_oldest").lower()
        if policy not in _OVERFLOW_POLICIES:
            logger.warning("ws_send_queue_policy_invalid", policy=policy, fallback="drop_oldest")
            policy = "drop_oldest"
        self._policy = policy
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, int(queue_max)))
        self._sender: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.CONNECTED and socket_is_open(self.websocket)

    def start(self) -> None:
        if self._sender is None:
            self._sender = asyncio.create_task(self._sender_loop())

    async def send(self, payload: Any) -> bool:
        """Queue ``payload`` for delivery; returns False when it was dropped."""
        if not self.is_open:
            return False
        if not isinstance(payload, dict):
            payload = serialize_message(payload)
        try:
            self._queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            pass
        if self._policy == "drop_new":
            logger.warning("ws_send_queue_drop_new", user_id=self.user_id)
            return False
        if self._policy == "disconnect":
            logger.warning("ws_send_queue_disconnect", user_id=self.user_id)
            await self.close(code=WSCloseCode.TRY_AGAIN_LATER)
            return False
        # drop_oldest
        try:
            self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        try:
            self._queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("ws_send_queue_drop_after_trim", user_id=self.user_id)
            return False

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.state = ConnectionState.CLOSED
        self.stop()
        if socket_is_open(self.websocket):
            try:
                await self.websocket.close(code=code, reason=reason)
            except RuntimeError as exc:
                logger.debug("ws_close_failed", user_id=self.user_id, error=str(exc))

    def stop(self) -> None:
        self.state = ConnectionState.CLOSED
        task, self._sender = self._sender, None
        if task is not None and not task.done():
            task.cancel()

    async def _sender_loop(self) -> None:
        try:
            while True:
                payload = await self._queue.get()
                try:
                    await self.websocket.send_json(payload)
                except Exception as exc:  # pragma: no cover
                    logger.warning("ws_send_failed", user_id=self.user_id, error=str(exc))
        except asyncio.CancelledError:
            return


class ConnectionManager:
    """Registry of live connections keyed by user id."""

    def __init__(self, *, queue_max: Optional[int] = None, overflow_policy: Optional[str] = None) -> None:
        self._by_user: Dict[str, Connection] = {}
        self._queue_max = queue_max if queue_max is not None else settings.realtime.send_queue_max
        self._overflow_policy = overflow_policy or settings.realtime.send_overflow_policy

    def register(self, user_id: str, ws: WebSocket, *, user_name: Optional[str] = None) -> Connection:
        conn = Connection(
            user_id,
            ws,
            user_name=user_name,
            queue_max=self._queue_max,
            overflow_policy=self._overflow_policy,
        )
        previous = self._by_user.get(user_id)
        self._by_user[user_id] = conn
        conn.start()
        if previous is not None:
            logger.info("ws_connection_superseded", user_id=user_id)
        logger.info("ws_registered", user_id=user_id, connections=len(self._by_user))
        return conn

    def unregister(self, conn: Connection) -> bool:
        """Drop ``conn`` from the registry unless a newer socket replaced it."""
        conn.stop()
        if self._by_user.get(conn.user_id) is not conn:
            return False
        del self._by_user[conn.user_id]
        logger.info("ws_unregistered", user_id=conn.user_id, connections=len(self._by_user))
        return True

    def get(self, user_id: str) -> Optional[Connection]:
        return self._by_user.get(user_id)

    def is_current(self, conn: Connection) -> bool:
        return self._by_user.get(conn.user_id) is conn

    def all(self) -> List[Connection]:
        return list(self._by_user.values())

    def __len__(self) -> int:
        return len(self._by_user)

    async def send(self, user_id: str, payload: Any) -> bool:
        conn = self._by_user.get(user_id)
        if conn is None or not conn.is_open:
            return False
        return await conn.send(payload)

    def close_all(self) -> None:
        for conn in self.all():
            conn.stop()
        self._by_user.clear()
