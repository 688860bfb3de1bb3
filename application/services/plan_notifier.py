"""Publishes plan/node/collaboration envelopes after successful mutations.

Plan creation and deletion change the plan list every client shows, so
they go to every connection; everything else goes to the owning plan's
room (``metadata.planId``).

Usage from a service after its unit of work commits::

    await notifier.node_status_changed(node.id, node.plan_id, old, new, user.id, user.name,
                                       exclude_user_id=user.id)

Every method returns the façade's delivery flag and never raises.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from application.services.broadcast_service import BroadcastService
from core.logging_config import get_logger
from domain.realtime import messages
from domain.realtime.events import EventMessage, PlanEvent


logger = get_logger(__name__)

GLOBAL_EVENT_TYPES = frozenset({PlanEvent.CREATED.value, PlanEvent.DELETED.value})


class PlanActivityNotifier:
    def __init__(self, broadcaster: BroadcastService) -> None:
        self._broadcaster = broadcaster

    async def publish(self, event: EventMessage, *, exclude_user_id: Optional[str] = None) -> bool:
        if event.type in GLOBAL_EVENT_TYPES:
            return await self._broadcaster.notify_everyone(event, exclude_user_id)
        plan_id = event.metadata.plan_id
        if not plan_id:
            logger.warning("plan_event_unroutable", type=event.type)
            return False
        return await self._broadcaster.notify_plan_room(plan_id, event, exclude_user_id)

    async def _build_and_publish(
        self,
        factory: Callable[..., EventMessage],
        *args: Any,
        exclude_user_id: Optional[str] = None,
        **kwargs: Any,
    ) -> bool:
        try:
            event = factory(*args, **kwargs)
        except Exception as exc:
            logger.error("plan_event_build_failed", factory=factory.__name__, error=str(exc), exc_info=True)
            return False
        return await self.publish(event, exclude_user_id=exclude_user_id)

    # -------------------- Plans --------------------

    async def plan_created(self, plan: Any, user_id: Any, user_name: Optional[str] = None, *,
                           exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.plan_created_message, plan, user_id, user_name, exclude_user_id=exclude_user_id)

    async def plan_updated(self, plan: Any, user_id: Any, user_name: Optional[str] = None, *,
                           exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.plan_updated_message, plan, user_id, user_name, exclude_user_id=exclude_user_id)

    async def plan_deleted(self, plan_id: Any, user_id: Any, user_name: Optional[str] = None, *,
                           exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.plan_deleted_message, plan_id, user_id, user_name, exclude_user_id=exclude_user_id)

    async def plan_status_changed(self, plan_id: Any, old_status: Any, new_status: Any, user_id: Any,
                                  user_name: Optional[str] = None, *,
                                  exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.plan_status_changed_message, plan_id, old_status, new_status, user_id, user_name,
            exclude_user_id=exclude_user_id)

    # -------------------- Nodes --------------------

    async def node_created(self, node: Any, user_id: Any, user_name: Optional[str] = None, *,
                           exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.node_created_message, node, user_id, user_name, exclude_user_id=exclude_user_id)

    async def node_updated(self, node: Any, user_id: Any, user_name: Optional[str] = None, *,
                           exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.node_updated_message, node, user_id, user_name, exclude_user_id=exclude_user_id)

    async def node_deleted(self, node_id: Any, plan_id: Any, user_id: Any, user_name: Optional[str] = None, *,
                           exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.node_deleted_message, node_id, plan_id, user_id, user_name,
            exclude_user_id=exclude_user_id)

    async def node_moved(self, node_id: Any, plan_id: Any, move: Any, user_id: Any,
                         user_name: Optional[str] = None, *,
                         exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.node_moved_message, node_id, plan_id, move, user_id, user_name,
            exclude_user_id=exclude_user_id)

    async def node_status_changed(self, node_id: Any, plan_id: Any, old_status: Any, new_status: Any,
                                  user_id: Any, user_name: Optional[str] = None, *,
                                  exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.node_status_changed_message, node_id, plan_id, old_status, new_status, user_id, user_name,
            exclude_user_id=exclude_user_id)

    # -------------------- Collaboration --------------------

    async def user_assigned(self, node_id: Any, plan_id: Any, assigned_user_id: Any,
                            assigned_user_name: Optional[str], assigner_user_id: Any,
                            assigner_user_name: Optional[str] = None, *,
                            exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.user_assigned_message, node_id, plan_id, assigned_user_id, assigned_user_name,
            assigner_user_id, assigner_user_name, exclude_user_id=exclude_user_id)

    async def user_unassigned(self, node_id: Any, plan_id: Any, unassigned_user_id: Any,
                              unassigned_user_name: Optional[str], unassigner_user_id: Any,
                              unassigner_user_name: Optional[str] = None, *,
                              exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.user_unassigned_message, node_id, plan_id, unassigned_user_id, unassigned_user_name,
            unassigner_user_id, unassigner_user_name, exclude_user_id=exclude_user_id)

    async def comment_added(self, comment: Any, plan_id: Any, user_name: Optional[str] = None, *,
                            exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.comment_added_message, comment, plan_id, user_name, exclude_user_id=exclude_user_id)

    async def comment_updated(self, comment: Any, plan_id: Any, user_name: Optional[str] = None, *,
                              exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.comment_updated_message, comment, plan_id, user_name, exclude_user_id=exclude_user_id)

    async def comment_deleted(self, comment_id: Any, node_id: Any, plan_id: Any, user_id: Any,
                              user_name: Optional[str] = None, *,
                              exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.comment_deleted_message, comment_id, node_id, plan_id, user_id, user_name,
            exclude_user_id=exclude_user_id)

    async def log_added(self, log: Any, plan_id: Any, user_name: Optional[str] = None, *,
                        exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.log_added_message, log, plan_id, user_name, exclude_user_id=exclude_user_id)

    async def label_added(self, label: Any, plan_id: Any, user_id: Any, user_name: Optional[str] = None, *,
                          exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.label_added_message, label, plan_id, user_id, user_name, exclude_user_id=exclude_user_id)

    async def label_removed(self, label_id: Any, node_id: Any, plan_id: Any, user_id: Any,
                            user_name: Optional[str] = None, *,
                            exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.label_removed_message, label_id, node_id, plan_id, user_id, user_name,
            exclude_user_id=exclude_user_id)

    async def decision_requested(self, decision: Any, plan_id: Any, user_name: Optional[str] = None, *,
                                 exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.decision_requested_message, decision, plan_id, user_name, exclude_user_id=exclude_user_id)

    async def decision_resolved(self, decision: Any, plan_id: Any, user_name: Optional[str] = None, *,
                                exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.decision_resolved_message, decision, plan_id, user_name, exclude_user_id=exclude_user_id)

    # -------------------- Collaborators --------------------

    async def collaborator_added(self, collaborator: Any, user_id: Any, user_name: Optional[str] = None, *,
                                 exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.collaborator_added_message, collaborator, user_id, user_name,
            exclude_user_id=exclude_user_id)

    async def collaborator_removed(self, collaborator_id: Any, plan_id: Any, removed_user_id: Any,
                                   remover_user_id: Any, remover_user_name: Optional[str] = None, *,
                                   exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.collaborator_removed_message, collaborator_id, plan_id, removed_user_id,
            remover_user_id, remover_user_name, exclude_user_id=exclude_user_id)

    async def collaborator_role_changed(self, collaborator: Any, old_role: Any, user_id: Any,
                                        user_name: Optional[str] = None, *,
                                        exclude_user_id: Optional[str] = None) -> bool:
        return await self._build_and_publish(
            messages.collaborator_role_changed_message, collaborator, old_role, user_id, user_name,
            exclude_user_id=exclude_user_id)
