"""Collaboration server: presence, room membership and routed fan-out.

Owns all connection and membership state of the process. Every mutation
runs on the event loop that serves the sockets and completes before the
handler first awaits, so the maps need no locking; peers are notified
afterwards, each send independent of the others.

Outbound messages come in two shapes: typed ``{type, payload, metadata}``
envelopes built by ``domain.realtime.messages`` and the lighter presence
dicts built here (``{type, userId, timestamp, ...}``). Both are delivered
as-is.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from fastapi import WebSocket

from application.ports.identity import AuthenticatedUser
from application.ports.realtime import OutboundMessage, message_type
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import MissingFieldException
from domain.realtime.events import ConnectionEvent, InboundType, PresenceEvent, utc_now_z
from domain.realtime.presence import PresenceState
from infrastructure.realtime.connection_manager import Connection, ConnectionManager, serialize_message


logger = get_logger(__name__)

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]

PROCESSING_FAILED = "Failed to process message"


def _present(data: Dict[str, Any], field: str) -> Any:
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingFieldException(field, message_type=str(data.get("type")))
    return value


def _required(data: Dict[str, Any], field: str) -> str:
    """Required identifier, normalised to a string."""
    value = _present(data, field)
    return str(value).strip() if isinstance(value, str) else str(value)


class CollaborationServer:
    def __init__(
        self,
        *,
        connections: Optional[ConnectionManager] = None,
        typing_timeout: Optional[float] = None,
        typing_reset_on_restart: Optional[bool] = None,
    ) -> None:
        self._conn = connections or ConnectionManager()
        self._presence = PresenceState()
        self._typing_timeout = (
            typing_timeout if typing_timeout is not None else settings.realtime.typing_timeout_s
        )
        self._typing_reset = (
            typing_reset_on_restart
            if typing_reset_on_restart is not None
            else settings.realtime.typing_reset_on_restart
        )
        # (user_id, node_id) -> pending expiry, when restarts reset the window
        self._typing_timers: Dict[Tuple[str, str], asyncio.Task] = {}
        # every pending expiry when restarts stack independent timers
        self._stacked_timers: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Handler] = {
            InboundType.JOIN_PLAN.value: self._on_join_plan,
            InboundType.LEAVE_PLAN.value: self._on_leave_plan,
            InboundType.JOIN_NODE.value: self._on_join_node,
            InboundType.LEAVE_NODE.value: self._on_leave_node,
            InboundType.TYPING_START.value: self._on_typing_start,
            InboundType.TYPING_STOP.value: self._on_typing_stop,
            InboundType.UPDATE_PRESENCE.value: self._on_update_presence,
            InboundType.BROADCAST.value: self._on_broadcast,
            InboundType.PING.value: self._on_ping,
            InboundType.PONG.value: self._on_pong,
        }

    @property
    def connections(self) -> ConnectionManager:
        return self._conn

    @property
    def presence(self) -> PresenceState:
        return self._presence

    # -------------------- Connection lifecycle --------------------

    async def connect(self, user: Union[AuthenticatedUser, str], ws: WebSocket) -> Connection:
        """Register an authenticated socket and acknowledge it."""
        if isinstance(user, AuthenticatedUser):
            user_id, user_name = user.id, user.name
        else:
            user_id, user_name = str(user), None
        conn = self._conn.register(user_id, ws, user_name=user_name)
        await conn.send({
            "type": ConnectionEvent.CONNECTION.value,
            "status": "connected",
            "userId": user_id,
        })
        logger.info("user_connected", user_id=user_id)
        return conn

    async def disconnect(self, conn: Connection) -> None:
        """Tear down every membership trace of a closed socket.

        State is unwound before any peer is notified. A socket that was
        superseded by a newer one for the same user leaves alone whatever
        the newer connection currently occupies.
        """
        user_id = conn.user_id
        live = None if self._conn.is_current(conn) else self._conn.get(user_id)
        self._conn.unregister(conn)

        node_id = conn.current_node_id
        plan_id = conn.current_plan_id
        if live is not None and live.current_node_id == node_id:
            node_id = None
        if live is not None and live.current_plan_id == plan_id:
            plan_id = None
        conn.current_node_id = None
        conn.current_plan_id = None

        if node_id:
            self._presence.nodes.discard(node_id, user_id)
        if plan_id:
            self._presence.plans.discard(plan_id, user_id)
        if live is None:
            self._presence.forget_typing(user_id)
            self._cancel_user_typing_timers(user_id)

        if node_id:
            await self.broadcast_to_node(node_id, plan_id, self._presence_message(
                PresenceEvent.USER_LEFT_NODE, user_id, nodeId=node_id), exclude_user_id=user_id)
        if plan_id:
            await self.broadcast_to_plan(plan_id, self._presence_message(
                PresenceEvent.USER_LEFT_PLAN, user_id, planId=plan_id), exclude_user_id=user_id)
        logger.info("user_disconnected", user_id=user_id, superseded=live is not None)

    # -------------------- Inbound dispatch --------------------

    async def handle_message(self, conn: Connection, raw: Union[str, bytes, Dict[str, Any]]) -> None:
        """Process one client message; errors are reported to the sender only."""
        if isinstance(raw, dict):
            data: Any = raw
        else:
            try:
                data = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning("ws_message_invalid_json", user_id=conn.user_id)
                await self._send_error(conn, PROCESSING_FAILED)
                return
        if not isinstance(data, dict):
            logger.warning("ws_message_not_object", user_id=conn.user_id)
            await self._send_error(conn, PROCESSING_FAILED)
            return

        mtype = str(data.get("type") or "")
        handler = self._handlers.get(mtype)
        if handler is None:
            logger.info("ws_message_type_unknown", user_id=conn.user_id, type=mtype)
            return
        try:
            await handler(conn, data)
        except MissingFieldException as exc:
            await self._send_error(conn, exc.message, field=exc.field)
        except Exception as exc:
            logger.error("ws_message_failed", user_id=conn.user_id, type=mtype, error=str(exc), exc_info=True)
            await self._send_error(conn, PROCESSING_FAILED)

    async def _on_join_plan(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.join_plan(conn, _required(data, "planId"))

    async def _on_leave_plan(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.leave_plan(conn)

    async def _on_join_node(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.join_node(conn, _required(data, "nodeId"))

    async def _on_leave_node(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.leave_node(conn)

    async def _on_typing_start(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.typing_start(conn, _required(data, "nodeId"))

    async def _on_typing_stop(self, conn: Connection, data: Dict[str, Any]) -> None:
        await self.typing_stop(conn.user_id, _required(data, "nodeId"), conn.current_plan_id)

    async def _on_update_presence(self, conn: Connection, data: Dict[str, Any]) -> None:
        # status is relayed as sent (string or object)
        await self.update_presence(conn, _present(data, "status"))

    async def _on_broadcast(self, conn: Connection, data: Dict[str, Any]) -> None:
        message = data.get("message")
        if not conn.current_plan_id or not message:
            logger.debug("ws_broadcast_ignored", user_id=conn.user_id, plan_id=conn.current_plan_id)
            return
        await self.broadcast_to_plan(
            conn.current_plan_id,
            self._presence_message(PresenceEvent.MESSAGE, conn.user_id, message=message),
            exclude_user_id=conn.user_id,
        )

    async def _on_ping(self, conn: Connection, data: Dict[str, Any]) -> None:
        await conn.send({"type": ConnectionEvent.PONG.value})

    async def _on_pong(self, conn: Connection, data: Dict[str, Any]) -> None:
        # Heartbeat reply; receiving it is what matters.
        return None

    # -------------------- Plan rooms --------------------

    async def join_plan(self, conn: Connection, plan_id: str) -> None:
        if conn.current_plan_id:
            await self.leave_plan(conn)
        user_id = conn.user_id
        self._presence.plans.add(plan_id, user_id)
        conn.current_plan_id = plan_id
        logger.info("plan_room_joined", user_id=user_id, plan_id=plan_id)

        await self.broadcast_to_plan(plan_id, self._presence_message(
            PresenceEvent.USER_JOINED_PLAN, user_id, planId=plan_id), exclude_user_id=user_id)
        await conn.send({
            "type": PresenceEvent.ACTIVE_USERS.value,
            "planId": plan_id,
            "users": self._presence.plans.members(plan_id),
        })

    async def leave_plan(self, conn: Connection) -> None:
        plan_id = conn.current_plan_id
        if not plan_id:
            return
        user_id = conn.user_id
        self._presence.plans.discard(plan_id, user_id)
        conn.current_plan_id = None
        logger.info("plan_room_left", user_id=user_id, plan_id=plan_id)

        await self.broadcast_to_plan(plan_id, self._presence_message(
            PresenceEvent.USER_LEFT_PLAN, user_id, planId=plan_id), exclude_user_id=user_id)

    # -------------------- Node rooms --------------------

    async def join_node(self, conn: Connection, node_id: str) -> None:
        if conn.current_node_id:
            await self.leave_node(conn)
        user_id = conn.user_id
        self._presence.nodes.add(node_id, user_id)
        conn.current_node_id = node_id
        logger.info("node_room_joined", user_id=user_id, node_id=node_id, plan_id=conn.current_plan_id)

        await self.broadcast_to_node(node_id, conn.current_plan_id, self._presence_message(
            PresenceEvent.USER_JOINED_NODE, user_id, nodeId=node_id), exclude_user_id=user_id)
        await conn.send({
            "type": PresenceEvent.NODE_VIEWERS.value,
            "nodeId": node_id,
            "users": self._presence.nodes.members(node_id),
        })

    async def leave_node(self, conn: Connection) -> None:
        node_id = conn.current_node_id
        if not node_id:
            return
        user_id = conn.user_id
        self._presence.nodes.discard(node_id, user_id)
        self._presence.typing.discard(node_id, user_id)
        self._cancel_typing_timer(user_id, node_id)
        conn.current_node_id = None
        logger.info("node_room_left", user_id=user_id, node_id=node_id)

        await self.broadcast_to_node(node_id, conn.current_plan_id, self._presence_message(
            PresenceEvent.USER_LEFT_NODE, user_id, nodeId=node_id), exclude_user_id=user_id)

    # -------------------- Typing indicators --------------------

    async def typing_start(self, conn: Connection, node_id: str) -> None:
        user_id = conn.user_id
        plan_id = conn.current_plan_id
        self._presence.typing.add(node_id, user_id)
        self._schedule_typing_expiry(user_id, node_id, plan_id)
        await self.broadcast_to_node(node_id, plan_id, self._presence_message(
            PresenceEvent.TYPING_START, user_id, nodeId=node_id), exclude_user_id=user_id)

    async def typing_stop(self, user_id: str, node_id: str, plan_id: Optional[str] = None) -> None:
        """Clear a typing flag; clearing an absent one is a no-op that still notifies peers."""
        self._presence.typing.discard(node_id, user_id)
        self._cancel_typing_timer(user_id, node_id)
        await self.broadcast_to_node(node_id, plan_id, self._presence_message(
            PresenceEvent.TYPING_STOP, user_id, nodeId=node_id), exclude_user_id=user_id)

    def _schedule_typing_expiry(self, user_id: str, node_id: str, plan_id: Optional[str]) -> None:
        task = asyncio.create_task(self._expire_typing(user_id, node_id, plan_id))
        if self._typing_reset:
            previous = self._typing_timers.pop((user_id, node_id), None)
            if previous is not None:
                previous.cancel()
            self._typing_timers[(user_id, node_id)] = task
        else:
            self._stacked_timers.add(task)
            task.add_done_callback(self._stacked_timers.discard)

    async def _expire_typing(self, user_id: str, node_id: str, plan_id: Optional[str]) -> None:
        await asyncio.sleep(self._typing_timeout)
        key = (user_id, node_id)
        if self._typing_timers.get(key) is asyncio.current_task():
            del self._typing_timers[key]
        logger.debug("typing_expired", user_id=user_id, node_id=node_id)
        try:
            await self.typing_stop(user_id, node_id, plan_id)
        except Exception as exc:
            logger.error("typing_expiry_failed", user_id=user_id, node_id=node_id, error=str(exc), exc_info=True)

    def _cancel_typing_timer(self, user_id: str, node_id: str) -> None:
        if not self._typing_reset:
            return
        task = self._typing_timers.pop((user_id, node_id), None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _cancel_user_typing_timers(self, user_id: str) -> None:
        for key in [k for k in self._typing_timers if k[0] == user_id]:
            self._cancel_typing_timer(*key)

    # -------------------- Presence status --------------------

    async def update_presence(self, conn: Connection, status: Any) -> None:
        if not conn.current_plan_id:
            return
        await self.broadcast_to_plan(conn.current_plan_id, self._presence_message(
            PresenceEvent.PRESENCE_UPDATE, conn.user_id, status=status), exclude_user_id=conn.user_id)

    # -------------------- Routing --------------------

    async def broadcast_to_plan(
        self, plan_id: str, message: OutboundMessage, exclude_user_id: Optional[str] = None
    ) -> int:
        """Deliver to every open connection in the plan room; returns the delivery count."""
        return await self._fan_out(self._presence.plans.members(plan_id), message, exclude_user_id)

    async def broadcast_to_node(
        self,
        node_id: str,
        plan_id: Optional[str],
        message: OutboundMessage,
        exclude_user_id: Optional[str] = None,
    ) -> int:
        # plan_id only annotates the delivery; routing is by node room
        delivered = await self._fan_out(self._presence.nodes.members(node_id), message, exclude_user_id)
        logger.debug("node_broadcast", node_id=node_id, plan_id=plan_id, delivered=delivered)
        return delivered

    async def broadcast_to_all(self, message: OutboundMessage, exclude_user_id: Optional[str] = None) -> int:
        return await self._fan_out([c.user_id for c in self._conn.all()], message, exclude_user_id)

    async def send_to_user(self, user_id: str, message: OutboundMessage) -> bool:
        conn = self._conn.get(user_id)
        if conn is None or not conn.is_open:
            logger.debug("ws_user_not_connected", user_id=user_id, type=message_type(message))
            return False
        return await conn.send(serialize_message(message))

    async def _fan_out(self, user_ids: List[str], message: OutboundMessage, exclude_user_id: Optional[str]) -> int:
        targets = [uid for uid in user_ids if uid != exclude_user_id]
        if not targets:
            return 0
        payload = serialize_message(message)
        delivered = 0
        for uid in targets:
            conn = self._conn.get(uid)
            if conn is None or not conn.is_open:
                continue
            if await conn.send(payload):
                delivered += 1
        return delivered

    # -------------------- Presence queries --------------------

    def active_plan_users(self, plan_id: str) -> List[str]:
        return self._presence.plans.members(plan_id)

    def active_node_users(self, node_id: str) -> List[str]:
        return self._presence.nodes.members(node_id)

    def typing_users(self, node_id: str) -> List[str]:
        return self._presence.typing.members(node_id)

    # -------------------- Shutdown --------------------

    async def aclose(self) -> None:
        """Cancel pending typing timers and stop every sender; presence is not persisted."""
        timers = list(self._typing_timers.values()) + list(self._stacked_timers)
        self._typing_timers.clear()
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._conn.close_all()
        self._presence.clear()
        logger.info("collaboration_server_closed", cancelled_timers=len(timers))

    # -------------------- Helpers --------------------

    @staticmethod
    def _presence_message(event: PresenceEvent, user_id: str, **fields: Any) -> Dict[str, Any]:
        return {"type": event.value, "userId": user_id, **fields, "timestamp": utc_now_z()}

    @staticmethod
    async def _send_error(conn: Connection, message: str, *, field: Optional[str] = None) -> None:
        body: Dict[str, Any] = {"type": ConnectionEvent.ERROR.value, "message": message}
        if field:
            body["field"] = field
        await conn.send(body)
