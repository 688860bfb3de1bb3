"""
Realtime port (contracts-first).

Defines what the broadcast façade needs from a collaboration server so
the façade can be wired to the real server at startup, or to a fake in
tests, without depending on the concrete connection handling.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol, Union

from pydantic import BaseModel


# A typed envelope (domain.realtime.events.EventMessage) or an ad hoc dict
OutboundMessage = Union[BaseModel, Mapping[str, Any]]


class CollaborationServerPort(Protocol):
    """Routing and presence-query surface of a collaboration server."""

    async def broadcast_to_plan(
        self, plan_id: str, message: OutboundMessage, exclude_user_id: Optional[str] = None
    ) -> int: ...

    async def broadcast_to_node(
        self,
        node_id: str,
        plan_id: Optional[str],
        message: OutboundMessage,
        exclude_user_id: Optional[str] = None,
    ) -> int: ...

    async def broadcast_to_all(self, message: OutboundMessage, exclude_user_id: Optional[str] = None) -> int: ...

    async def send_to_user(self, user_id: str, message: OutboundMessage) -> bool: ...

    def active_plan_users(self, plan_id: str) -> List[str]: ...

    def active_node_users(self, node_id: str) -> List[str]: ...

    def typing_users(self, node_id: str) -> List[str]: ...


def message_type(message: Any) -> Optional[str]:
    """Best-effort ``type`` of an outbound message, for logging."""
    if isinstance(message, Mapping):
        value = message.get("type")
    else:
        value = getattr(message, "type", None)
    return None if value is None else str(getattr(value, "value", value))


__all__ = ["OutboundMessage", "CollaborationServerPort", "message_type"]
