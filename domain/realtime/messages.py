"""
Envelope factories for lifecycle and collaboration events.

Each factory takes a domain object (a row mapping or any object exposing
the column names as attributes) or plain identifiers, plus the acting
user, and returns a ready-to-send envelope. Factories are pure: the only
non-deterministic part is the embedded timestamp, and missing optional
columns degrade to ``None`` instead of raising.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pydantic.alias_generators import to_camel

from domain.realtime.events import (
    AssignmentPayload,
    CollaboratorAdded,
    CollaboratorAddedPayload,
    CollaboratorRemoved,
    CollaboratorRemovedPayload,
    CollaboratorRoleChanged,
    CollaboratorRoleChangedPayload,
    CommentAdded,
    CommentAddedPayload,
    CommentDeleted,
    CommentUpdated,
    CommentUpdatedPayload,
    DecisionRequested,
    DecisionRequestedPayload,
    DecisionResolved,
    DecisionResolvedPayload,
    EventMetadata,
    LabelAdded,
    LabelAddedPayload,
    LabelRemoved,
    LogAdded,
    LogAddedPayload,
    NodeCreated,
    NodeCreatedPayload,
    NodeDeleted,
    NodeDeletedPayload,
    NodeItemRemovedPayload,
    NodeMoved,
    NodeMovedPayload,
    NodeStatusChanged,
    NodeUpdated,
    NodeUpdatedPayload,
    PlanCreated,
    PlanCreatedPayload,
    PlanDeleted,
    PlanDeletedPayload,
    PlanStatusChanged,
    PlanUpdated,
    PlanUpdatedPayload,
    StatusChangedPayload,
    UserAssigned,
    UserUnassigned,
    utc_now_z,
)


Ident = Optional[Any]


@dataclass(frozen=True)
class NodeMove:
    """Before/after position of a moved node."""

    old_parent_id: Ident = None
    new_parent_id: Ident = None
    old_order_index: Optional[int] = None
    new_order_index: Optional[int] = None


def _field(source: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` (or its camelCase form) from a mapping or an object."""
    if source is None:
        return default
    try:
        if isinstance(source, Mapping):
            if name in source:
                return source[name]
            return source.get(to_camel(name), default)
        return getattr(source, name, default)
    except Exception:
        return default


def _ident(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def event_metadata(user_id: Ident, plan_id: Ident, user_name: Optional[str] = None) -> EventMetadata:
    return EventMetadata(
        user_id=_ident(user_id),
        user_name=_ident(user_name),
        timestamp=utc_now_z(),
        plan_id=_ident(plan_id),
    )


def custom_message(plan_id: Ident, event_type: str, payload: Any) -> dict[str, Any]:
    """Minimal envelope for an ad hoc event type outside the closed taxonomy."""
    return {
        "type": event_type,
        "payload": payload,
        "metadata": {"timestamp": utc_now_z(), "planId": _ident(plan_id)},
    }


# ---------------------------------------------------------------------------
# Plan events
# ---------------------------------------------------------------------------


def plan_created_message(plan: Any, user_id: Ident, user_name: Optional[str] = None) -> PlanCreated:
    plan_id = _field(plan, "id")
    return PlanCreated(
        payload=PlanCreatedPayload(
            id=_ident(plan_id),
            title=_field(plan, "title"),
            description=_field(plan, "description"),
            status=_field(plan, "status"),
            owner_id=_ident(_field(plan, "owner_id")),
            created_at=_field(plan, "created_at"),
            metadata=_field(plan, "metadata"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def plan_updated_message(plan: Any, user_id: Ident, user_name: Optional[str] = None) -> PlanUpdated:
    plan_id = _field(plan, "id")
    return PlanUpdated(
        payload=PlanUpdatedPayload(
            id=_ident(plan_id),
            title=_field(plan, "title"),
            description=_field(plan, "description"),
            status=_field(plan, "status"),
            owner_id=_ident(_field(plan, "owner_id")),
            updated_at=_field(plan, "updated_at"),
            metadata=_field(plan, "metadata"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def plan_deleted_message(plan_id: Ident, user_id: Ident, user_name: Optional[str] = None) -> PlanDeleted:
    return PlanDeleted(
        payload=PlanDeletedPayload(id=_ident(plan_id)),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def plan_status_changed_message(
    plan_id: Ident,
    old_status: Any,
    new_status: Any,
    user_id: Ident,
    user_name: Optional[str] = None,
) -> PlanStatusChanged:
    return PlanStatusChanged(
        payload=StatusChangedPayload(id=_ident(plan_id), old_status=old_status, new_status=new_status),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


# ---------------------------------------------------------------------------
# Node events (metadata.planId is always the owning plan)
# ---------------------------------------------------------------------------


def node_created_message(node: Any, user_id: Ident, user_name: Optional[str] = None) -> NodeCreated:
    plan_id = _field(node, "plan_id")
    return NodeCreated(
        payload=NodeCreatedPayload(
            id=_ident(_field(node, "id")),
            plan_id=_ident(plan_id),
            parent_id=_ident(_field(node, "parent_id")),
            node_type=_field(node, "node_type"),
            title=_field(node, "title"),
            description=_field(node, "description"),
            status=_field(node, "status"),
            order_index=_field(node, "order_index"),
            due_date=_field(node, "due_date"),
            created_at=_field(node, "created_at"),
            metadata=_field(node, "metadata"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def node_updated_message(node: Any, user_id: Ident, user_name: Optional[str] = None) -> NodeUpdated:
    plan_id = _field(node, "plan_id")
    return NodeUpdated(
        payload=NodeUpdatedPayload(
            id=_ident(_field(node, "id")),
            plan_id=_ident(plan_id),
            parent_id=_ident(_field(node, "parent_id")),
            node_type=_field(node, "node_type"),
            title=_field(node, "title"),
            description=_field(node, "description"),
            status=_field(node, "status"),
            order_index=_field(node, "order_index"),
            due_date=_field(node, "due_date"),
            updated_at=_field(node, "updated_at"),
            metadata=_field(node, "metadata"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def node_deleted_message(
    node_id: Ident, plan_id: Ident, user_id: Ident, user_name: Optional[str] = None
) -> NodeDeleted:
    return NodeDeleted(
        payload=NodeDeletedPayload(id=_ident(node_id), plan_id=_ident(plan_id)),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def node_moved_message(
    node_id: Ident,
    plan_id: Ident,
    move: Any,
    user_id: Ident,
    user_name: Optional[str] = None,
) -> NodeMoved:
    """``move`` is a :class:`NodeMove`, a mapping or any object with the same fields."""
    return NodeMoved(
        payload=NodeMovedPayload(
            node_id=_ident(node_id),
            old_parent_id=_ident(_field(move, "old_parent_id")),
            new_parent_id=_ident(_field(move, "new_parent_id")),
            old_order_index=_field(move, "old_order_index"),
            new_order_index=_field(move, "new_order_index"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def node_status_changed_message(
    node_id: Ident,
    plan_id: Ident,
    old_status: Any,
    new_status: Any,
    user_id: Ident,
    user_name: Optional[str] = None,
) -> NodeStatusChanged:
    return NodeStatusChanged(
        payload=StatusChangedPayload(id=_ident(node_id), old_status=old_status, new_status=new_status),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


# ---------------------------------------------------------------------------
# Collaboration events
# ---------------------------------------------------------------------------


def user_assigned_message(
    node_id: Ident,
    plan_id: Ident,
    assigned_user_id: Ident,
    assigned_user_name: Optional[str],
    assigner_user_id: Ident,
    assigner_user_name: Optional[str] = None,
) -> UserAssigned:
    return UserAssigned(
        payload=AssignmentPayload(
            node_id=_ident(node_id),
            user_id=_ident(assigned_user_id),
            user_name=_ident(assigned_user_name),
        ),
        metadata=event_metadata(assigner_user_id, plan_id, assigner_user_name),
    )


def user_unassigned_message(
    node_id: Ident,
    plan_id: Ident,
    unassigned_user_id: Ident,
    unassigned_user_name: Optional[str],
    unassigner_user_id: Ident,
    unassigner_user_name: Optional[str] = None,
) -> UserUnassigned:
    return UserUnassigned(
        payload=AssignmentPayload(
            node_id=_ident(node_id),
            user_id=_ident(unassigned_user_id),
            user_name=_ident(unassigned_user_name),
        ),
        metadata=event_metadata(unassigner_user_id, plan_id, unassigner_user_name),
    )


def comment_added_message(comment: Any, plan_id: Ident, user_name: Optional[str] = None) -> CommentAdded:
    author = _field(comment, "user_id")
    return CommentAdded(
        payload=CommentAddedPayload(
            id=_ident(_field(comment, "id")),
            node_id=_ident(_field(comment, "plan_node_id")),
            user_id=_ident(author),
            user_name=_ident(user_name),
            content=_field(comment, "content"),
            comment_type=_field(comment, "comment_type"),
            created_at=_field(comment, "created_at"),
        ),
        metadata=event_metadata(author, plan_id, user_name),
    )


def comment_updated_message(comment: Any, plan_id: Ident, user_name: Optional[str] = None) -> CommentUpdated:
    author = _field(comment, "user_id")
    return CommentUpdated(
        payload=CommentUpdatedPayload(
            id=_ident(_field(comment, "id")),
            node_id=_ident(_field(comment, "plan_node_id")),
            user_id=_ident(author),
            user_name=_ident(user_name),
            content=_field(comment, "content"),
            comment_type=_field(comment, "comment_type"),
            updated_at=_field(comment, "updated_at"),
        ),
        metadata=event_metadata(author, plan_id, user_name),
    )


def comment_deleted_message(
    comment_id: Ident,
    node_id: Ident,
    plan_id: Ident,
    user_id: Ident,
    user_name: Optional[str] = None,
) -> CommentDeleted:
    return CommentDeleted(
        payload=NodeItemRemovedPayload(id=_ident(comment_id), node_id=_ident(node_id)),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def log_added_message(log: Any, plan_id: Ident, user_name: Optional[str] = None) -> LogAdded:
    author = _field(log, "user_id")
    actor_type = _field(_field(log, "metadata"), "actor_type") or "human"
    return LogAdded(
        payload=LogAddedPayload(
            id=_ident(_field(log, "id")),
            node_id=_ident(_field(log, "plan_node_id")),
            user_id=_ident(author),
            user_name=_ident(user_name),
            content=_field(log, "content"),
            log_type=_field(log, "log_type"),
            tags=_field(log, "tags"),
            actor_type=str(actor_type),
            created_at=_field(log, "created_at"),
        ),
        metadata=event_metadata(author, plan_id, user_name),
    )


def label_added_message(
    label: Any, plan_id: Ident, user_id: Ident, user_name: Optional[str] = None
) -> LabelAdded:
    return LabelAdded(
        payload=LabelAddedPayload(
            id=_ident(_field(label, "id")),
            node_id=_ident(_field(label, "plan_node_id")),
            label=_field(label, "label"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def label_removed_message(
    label_id: Ident,
    node_id: Ident,
    plan_id: Ident,
    user_id: Ident,
    user_name: Optional[str] = None,
) -> LabelRemoved:
    return LabelRemoved(
        payload=NodeItemRemovedPayload(id=_ident(label_id), node_id=_ident(node_id)),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def decision_requested_message(
    decision: Any, plan_id: Ident, user_name: Optional[str] = None
) -> DecisionRequested:
    return DecisionRequested(
        payload=DecisionRequestedPayload(
            id=_ident(_field(decision, "id")),
            plan_id=_ident(_field(decision, "plan_id")),
            node_id=_ident(_field(decision, "node_id")),
            title=_field(decision, "title"),
            context=_field(decision, "context"),
            options=_field(decision, "options"),
            urgency=_field(decision, "urgency"),
            requested_by_agent_name=_field(decision, "requested_by_agent_name"),
            expires_at=_field(decision, "expires_at"),
            status=_field(decision, "status"),
            created_at=_field(decision, "created_at"),
        ),
        metadata=event_metadata(_field(decision, "requested_by_user_id"), plan_id, user_name),
    )


def decision_resolved_message(
    decision: Any, plan_id: Ident, user_name: Optional[str] = None
) -> DecisionResolved:
    return DecisionResolved(
        payload=DecisionResolvedPayload(
            id=_ident(_field(decision, "id")),
            plan_id=_ident(_field(decision, "plan_id")),
            node_id=_ident(_field(decision, "node_id")),
            title=_field(decision, "title"),
            decision=_field(decision, "decision"),
            rationale=_field(decision, "rationale"),
            status=_field(decision, "status"),
            decided_at=_field(decision, "decided_at"),
        ),
        metadata=event_metadata(_field(decision, "decided_by_user_id"), plan_id, user_name),
    )


# ---------------------------------------------------------------------------
# Collaborator roster events
# ---------------------------------------------------------------------------


def collaborator_added_message(
    collaborator: Any, user_id: Ident, user_name: Optional[str] = None
) -> CollaboratorAdded:
    plan_id = _field(collaborator, "plan_id")
    return CollaboratorAdded(
        payload=CollaboratorAddedPayload(
            id=_ident(_field(collaborator, "id")),
            plan_id=_ident(plan_id),
            user_id=_ident(_field(collaborator, "user_id")),
            user_name=_ident(_field(collaborator, "user_name")),
            user_email=_ident(_field(collaborator, "user_email")),
            role=_field(collaborator, "role"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )


def collaborator_removed_message(
    collaborator_id: Ident,
    plan_id: Ident,
    removed_user_id: Ident,
    remover_user_id: Ident,
    remover_user_name: Optional[str] = None,
) -> CollaboratorRemoved:
    return CollaboratorRemoved(
        payload=CollaboratorRemovedPayload(
            id=_ident(collaborator_id),
            plan_id=_ident(plan_id),
            user_id=_ident(removed_user_id),
        ),
        metadata=event_metadata(remover_user_id, plan_id, remover_user_name),
    )


def collaborator_role_changed_message(
    collaborator: Any, old_role: Any, user_id: Ident, user_name: Optional[str] = None
) -> CollaboratorRoleChanged:
    plan_id = _field(collaborator, "plan_id")
    return CollaboratorRoleChanged(
        payload=CollaboratorRoleChangedPayload(
            id=_ident(_field(collaborator, "id")),
            plan_id=_ident(plan_id),
            user_id=_ident(_field(collaborator, "user_id")),
            old_role=old_role,
            role=_field(collaborator, "role"),
        ),
        metadata=event_metadata(user_id, plan_id, user_name),
    )
