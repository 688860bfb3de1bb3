"""
Realtime event taxonomy and wire models (schema version 1.0.0).

Lifecycle and collaboration events travel as ``{type, payload, metadata}``
envelopes and are modelled here as a closed, discriminated union: one
frozen model per event type with its own payload shape. Presence and
connection housekeeping messages are lighter, unversioned dicts built by
the collaboration server; only their type names live here.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from domain.common.exceptions import UnknownEventTypeException


SCHEMA_VERSION = "1.0.0"


def utc_now_z() -> str:
    """Current UTC time as ISO-8601 with a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Event type names
# ---------------------------------------------------------------------------


class ConnectionEvent(str, Enum):
    CONNECTION = "connection"
    PING = "ping"
    PONG = "pong"
    ERROR = "error"


class PlanEvent(str, Enum):
    CREATED = "plan.created"
    UPDATED = "plan.updated"
    DELETED = "plan.deleted"
    STATUS_CHANGED = "plan.status_changed"


class NodeEvent(str, Enum):
    CREATED = "node.created"
    UPDATED = "node.updated"
    DELETED = "node.deleted"
    MOVED = "node.moved"
    STATUS_CHANGED = "node.status_changed"


class CollaborationEvent(str, Enum):
    USER_ASSIGNED = "collaboration.user_assigned"
    USER_UNASSIGNED = "collaboration.user_unassigned"
    COMMENT_ADDED = "collaboration.comment_added"
    COMMENT_UPDATED = "collaboration.comment_updated"
    COMMENT_DELETED = "collaboration.comment_deleted"
    LOG_ADDED = "collaboration.log_added"
    LABEL_ADDED = "collaboration.label_added"
    LABEL_REMOVED = "collaboration.label_removed"
    DECISION_REQUESTED = "collaboration.decision_requested"
    DECISION_RESOLVED = "collaboration.decision_resolved"


class CollaboratorEvent(str, Enum):
    ADDED = "collaborator.added"
    REMOVED = "collaborator.removed"
    ROLE_CHANGED = "collaborator.role_changed"


class PresenceEvent(str, Enum):
    USER_JOINED_PLAN = "user_joined_plan"
    USER_LEFT_PLAN = "user_left_plan"
    USER_JOINED_NODE = "user_joined_node"
    USER_LEFT_NODE = "user_left_node"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    PRESENCE_UPDATE = "presence_update"
    ACTIVE_USERS = "active_users"
    NODE_VIEWERS = "node_viewers"
    # Relay of a client "broadcast" request to plan-room peers
    MESSAGE = "message"


class InboundType(str, Enum):
    """Message types a client may send to the server."""

    JOIN_PLAN = "join_plan"
    LEAVE_PLAN = "leave_plan"
    JOIN_NODE = "join_node"
    LEAVE_NODE = "leave_node"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    UPDATE_PRESENCE = "update_presence"
    BROADCAST = "broadcast"
    PING = "ping"
    PONG = "pong"


LIFECYCLE_EVENT_TYPES: frozenset[str] = frozenset(
    e.value
    for group in (PlanEvent, NodeEvent, CollaborationEvent, CollaboratorEvent)
    for e in group
)

EVENT_TYPES: frozenset[str] = LIFECYCLE_EVENT_TYPES | frozenset(
    e.value for group in (ConnectionEvent, PresenceEvent) for e in group
)


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class WireModel(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class EventMetadata(WireModel):
    """Actor, time and routing data stamped on every envelope."""

    user_id: Optional[str] = None
    user_name: Optional[str] = None
    timestamp: str = Field(default_factory=utc_now_z)
    # Owning plan; used for room routing even for node-scoped events
    plan_id: Optional[str] = None
    version: str = SCHEMA_VERSION


# Payloads. Identifiers are normalised to strings by the factories; other
# columns pass through as stored (datetimes serialize to ISO-8601).

class PlanCreatedPayload(WireModel):
    id: Optional[str] = None
    title: Any = None
    description: Any = None
    status: Any = None
    owner_id: Optional[str] = None
    created_at: Any = None
    metadata: Any = None


class PlanUpdatedPayload(WireModel):
    id: Optional[str] = None
    title: Any = None
    description: Any = None
    status: Any = None
    owner_id: Optional[str] = None
    updated_at: Any = None
    metadata: Any = None


class PlanDeletedPayload(WireModel):
    id: Optional[str] = None


class StatusChangedPayload(WireModel):
    id: Optional[str] = None
    old_status: Any = None
    new_status: Any = None


class NodeCreatedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None
    parent_id: Optional[str] = None
    node_type: Any = None
    title: Any = None
    description: Any = None
    status: Any = None
    order_index: Any = None
    due_date: Any = None
    created_at: Any = None
    metadata: Any = None


class NodeUpdatedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None
    parent_id: Optional[str] = None
    node_type: Any = None
    title: Any = None
    description: Any = None
    status: Any = None
    order_index: Any = None
    due_date: Any = None
    updated_at: Any = None
    metadata: Any = None


class NodeDeletedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None


class NodeMovedPayload(WireModel):
    node_id: Optional[str] = None
    old_parent_id: Optional[str] = None
    new_parent_id: Optional[str] = None
    old_order_index: Any = None
    new_order_index: Any = None


class AssignmentPayload(WireModel):
    node_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class CommentAddedPayload(WireModel):
    id: Optional[str] = None
    node_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    content: Any = None
    comment_type: Any = None
    created_at: Any = None


class CommentUpdatedPayload(WireModel):
    id: Optional[str] = None
    node_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    content: Any = None
    comment_type: Any = None
    updated_at: Any = None


class NodeItemRemovedPayload(WireModel):
    """Removal of a node-attached item (comment, label)."""

    id: Optional[str] = None
    node_id: Optional[str] = None


class LogAddedPayload(WireModel):
    id: Optional[str] = None
    node_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    content: Any = None
    log_type: Any = None
    tags: Any = None
    actor_type: str = "human"
    created_at: Any = None


class LabelAddedPayload(WireModel):
    id: Optional[str] = None
    node_id: Optional[str] = None
    label: Any = None


class DecisionRequestedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None
    node_id: Optional[str] = None
    title: Any = None
    context: Any = None
    options: Any = None
    urgency: Any = None
    requested_by_agent_name: Any = None
    expires_at: Any = None
    status: Any = None
    created_at: Any = None


class DecisionResolvedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None
    node_id: Optional[str] = None
    title: Any = None
    decision: Any = None
    rationale: Any = None
    status: Any = None
    decided_at: Any = None


class CollaboratorAddedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    role: Any = None


class CollaboratorRemovedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None
    user_id: Optional[str] = None


class CollaboratorRoleChangedPayload(WireModel):
    id: Optional[str] = None
    plan_id: Optional[str] = None
    user_id: Optional[str] = None
    old_role: Any = None
    role: Any = None


# ---------------------------------------------------------------------------
# Envelopes (one variant per lifecycle/collaboration event type)
# ---------------------------------------------------------------------------


class EventMessage(WireModel):
    """Base ``{type, payload, metadata}`` envelope."""

    type: str
    payload: WireModel
    metadata: EventMetadata

    @property
    def plan_id(self) -> Optional[str]:
        return self.metadata.plan_id


class PlanCreated(EventMessage):
    type: Literal["plan.created"] = "plan.created"
    payload: PlanCreatedPayload


class PlanUpdated(EventMessage):
    type: Literal["plan.updated"] = "plan.updated"
    payload: PlanUpdatedPayload


class PlanDeleted(EventMessage):
    type: Literal["plan.deleted"] = "plan.deleted"
    payload: PlanDeletedPayload


class PlanStatusChanged(EventMessage):
    type: Literal["plan.status_changed"] = "plan.status_changed"
    payload: StatusChangedPayload


class NodeCreated(EventMessage):
    type: Literal["node.created"] = "node.created"
    payload: NodeCreatedPayload


class NodeUpdated(EventMessage):
    type: Literal["node.updated"] = "node.updated"
    payload: NodeUpdatedPayload


class NodeDeleted(EventMessage):
    type: Literal["node.deleted"] = "node.deleted"
    payload: NodeDeletedPayload


class NodeMoved(EventMessage):
    type: Literal["node.moved"] = "node.moved"
    payload: NodeMovedPayload


class NodeStatusChanged(EventMessage):
    type: Literal["node.status_changed"] = "node.status_changed"
    payload: StatusChangedPayload


class UserAssigned(EventMessage):
    type: Literal["collaboration.user_assigned"] = "collaboration.user_assigned"
    payload: AssignmentPayload


class UserUnassigned(EventMessage):
    type: Literal["collaboration.user_unassigned"] = "collaboration.user_unassigned"
    payload: AssignmentPayload


class CommentAdded(EventMessage):
    type: Literal["collaboration.comment_added"] = "collaboration.comment_added"
    payload: CommentAddedPayload


class CommentUpdated(EventMessage):
    type: Literal["collaboration.comment_updated"] = "collaboration.comment_updated"
    payload: CommentUpdatedPayload


class CommentDeleted(EventMessage):
    type: Literal["collaboration.comment_deleted"] = "collaboration.comment_deleted"
    payload: NodeItemRemovedPayload


class LogAdded(EventMessage):
    type: Literal["collaboration.log_added"] = "collaboration.log_added"
    payload: LogAddedPayload


class LabelAdded(EventMessage):
    type: Literal["collaboration.label_added"] = "collaboration.label_added"
    payload: LabelAddedPayload


class LabelRemoved(EventMessage):
    type: Literal["collaboration.label_removed"] = "collaboration.label_removed"
    payload: NodeItemRemovedPayload


class DecisionRequested(EventMessage):
    type: Literal["collaboration.decision_requested"] = "collaboration.decision_requested"
    payload: DecisionRequestedPayload


class DecisionResolved(EventMessage):
    type: Literal["collaboration.decision_resolved"] = "collaboration.decision_resolved"
    payload: DecisionResolvedPayload


class CollaboratorAdded(EventMessage):
    type: Literal["collaborator.added"] = "collaborator.added"
    payload: CollaboratorAddedPayload


class CollaboratorRemoved(EventMessage):
    type: Literal["collaborator.removed"] = "collaborator.removed"
    payload: CollaboratorRemovedPayload


class CollaboratorRoleChanged(EventMessage):
    type: Literal["collaborator.role_changed"] = "collaborator.role_changed"
    payload: CollaboratorRoleChangedPayload


RealtimeEvent = Annotated[
    Union[
        PlanCreated,
        PlanUpdated,
        PlanDeleted,
        PlanStatusChanged,
        NodeCreated,
        NodeUpdated,
        NodeDeleted,
        NodeMoved,
        NodeStatusChanged,
        UserAssigned,
        UserUnassigned,
        CommentAdded,
        CommentUpdated,
        CommentDeleted,
        LogAdded,
        LabelAdded,
        LabelRemoved,
        DecisionRequested,
        DecisionResolved,
        CollaboratorAdded,
        CollaboratorRemoved,
        CollaboratorRoleChanged,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[RealtimeEvent] = TypeAdapter(RealtimeEvent)


def parse_event(data: Mapping[str, Any]) -> EventMessage:
    """Decode a wire envelope into its typed variant.

    Raises:
        UnknownEventTypeException: ``type`` is not a lifecycle/collaboration event.
        pydantic.ValidationError: the envelope shape does not match its type.
    """
    event_type = data.get("type") if isinstance(data, Mapping) else None
    if event_type not in LIFECYCLE_EVENT_TYPES:
        raise UnknownEventTypeException(event_type if isinstance(event_type, str) else None)
    return _event_adapter.validate_python(data)


__all__ = [
    "SCHEMA_VERSION",
    "utc_now_z",
    "ConnectionEvent",
    "PlanEvent",
    "NodeEvent",
    "CollaborationEvent",
    "CollaboratorEvent",
    "PresenceEvent",
    "InboundType",
    "LIFECYCLE_EVENT_TYPES",
    "EVENT_TYPES",
    "WireModel",
    "EventMetadata",
    "EventMessage",
    "RealtimeEvent",
    "parse_event",
]
