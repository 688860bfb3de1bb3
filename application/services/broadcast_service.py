"""Broadcast façade: the entry point business code uses for realtime delivery.

Every operation is fire-and-forget from the caller's point of view. When
no collaboration server is registered, or delivery raises, the call is
logged and reported as ``False`` (or an empty list for queries); nothing
ever propagates into the mutation that triggered the broadcast.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional

from application.ports.realtime import CollaborationServerPort, OutboundMessage, message_type
from core.logging_config import get_logger
from domain.realtime.messages import custom_message


logger = get_logger(__name__)


class BroadcastService:
    def __init__(self, server: Optional[CollaborationServerPort] = None) -> None:
        self._server = server

    # -------------------- Server registration --------------------

    def set_server(self, server: Optional[CollaborationServerPort]) -> None:
        self._server = server
        logger.info("broadcast_server_registered", available=server is not None)

    def get_server(self) -> Optional[CollaborationServerPort]:
        return self._server

    def is_available(self) -> bool:
        return self._server is not None

    # -------------------- Delivery --------------------

    async def _safe_broadcast(
        self,
        deliver: Callable[[CollaborationServerPort], Awaitable[Any]],
        **context: Any,
    ) -> bool:
        server = self._server
        if server is None:
            logger.info("broadcast_skipped", reason="server_unavailable", **context)
            return False
        try:
            delivered = await deliver(server)
        except Exception as exc:
            logger.error("broadcast_failed", error=str(exc), exc_info=True, **context)
            return False
        logger.debug("broadcast_succeeded", delivered=delivered, **context)
        return True

    async def notify_plan_room(
        self, plan_id: str, message: OutboundMessage, exclude_user_id: Optional[str] = None
    ) -> bool:
        """Deliver ``message`` to everyone currently viewing ``plan_id``."""
        return await self._safe_broadcast(
            lambda s: s.broadcast_to_plan(plan_id, message, exclude_user_id),
            target="plan", plan_id=plan_id, type=message_type(message),
        )

    async def notify_node_room(
        self,
        node_id: str,
        plan_id: Optional[str],
        message: OutboundMessage,
        exclude_user_id: Optional[str] = None,
    ) -> bool:
        return await self._safe_broadcast(
            lambda s: s.broadcast_to_node(node_id, plan_id, message, exclude_user_id),
            target="node", node_id=node_id, plan_id=plan_id, type=message_type(message),
        )

    async def notify_everyone(self, message: OutboundMessage, exclude_user_id: Optional[str] = None) -> bool:
        return await self._safe_broadcast(
            lambda s: s.broadcast_to_all(message, exclude_user_id),
            target="all", type=message_type(message),
        )

    async def broadcast_custom(
        self,
        plan_id: str,
        event_type: str,
        payload: Any,
        exclude_user_id: Optional[str] = None,
    ) -> bool:
        """Wrap an arbitrary event type and payload and send it to the plan room."""
        return await self.notify_plan_room(plan_id, custom_message(plan_id, event_type, payload), exclude_user_id)

    async def send_to_user(self, user_id: str, message: OutboundMessage) -> bool:
        """Direct delivery; a user who is not connected is a normal ``False``."""
        server = self._server
        if server is None:
            logger.info("send_to_user_skipped", reason="server_unavailable", user_id=user_id)
            return False
        try:
            return bool(await server.send_to_user(user_id, message))
        except Exception as exc:
            logger.error("send_to_user_failed", user_id=user_id, error=str(exc), exc_info=True)
            return False

    # -------------------- Presence queries --------------------

    def _safe_query(self, query: Callable[[CollaborationServerPort], List[str]], **context: Any) -> List[str]:
        server = self._server
        if server is None:
            return []
        try:
            return list(query(server))
        except Exception as exc:
            logger.error("presence_query_failed", error=str(exc), exc_info=True, **context)
            return []

    def active_plan_users(self, plan_id: str) -> List[str]:
        return self._safe_query(lambda s: s.active_plan_users(plan_id), plan_id=plan_id)

    def active_node_users(self, node_id: str) -> List[str]:
        return self._safe_query(lambda s: s.active_node_users(node_id), node_id=node_id)

    def typing_users(self, node_id: str) -> List[str]:
        return self._safe_query(lambda s: s.typing_users(node_id), node_id=node_id)
