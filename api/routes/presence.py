"""
在线状态API路由 - 查询计划/节点中的实时协作者
"""
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from api.dependencies import get_broadcaster, get_current_user
from application.ports.identity import AuthenticatedUser
from application.services.broadcast_service import BroadcastService
from core.response import success_response, Response as ApiResponse


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanPresenceDTO(_CamelModel):
    plan_id: str
    active_users: List[str]
    count: int


class PresenceCountsDTO(_CamelModel):
    active: int
    typing: int


class NodePresenceDTO(_CamelModel):
    node_id: str
    active_users: List[str]
    typing_users: List[str]
    counts: PresenceCountsDTO


router = APIRouter(tags=["在线状态"])


@router.get(
    "/plans/{plan_id}/active-users",
    summary="计划在线用户",
    response_model=ApiResponse[PlanPresenceDTO],
    response_model_by_alias=True,
)
async def plan_active_users(
    plan_id: str,
    _user: AuthenticatedUser = Depends(get_current_user),
    broadcaster: BroadcastService = Depends(get_broadcaster),
):
    """当前正在查看该计划的用户ID列表（实时服务不可用时为空）"""
    users = broadcaster.active_plan_users(plan_id)
    return success_response(data=PlanPresenceDTO(plan_id=plan_id, active_users=users, count=len(users)))


@router.get(
    "/nodes/{node_id}/active-users",
    summary="节点在线与输入中用户",
    response_model=ApiResponse[NodePresenceDTO],
    response_model_by_alias=True,
)
async def node_active_users(
    node_id: str,
    _user: AuthenticatedUser = Depends(get_current_user),
    broadcaster: BroadcastService = Depends(get_broadcaster),
):
    active = broadcaster.active_node_users(node_id)
    typing = broadcaster.typing_users(node_id)
    return success_response(
        data=NodePresenceDTO(
            node_id=node_id,
            active_users=active,
            typing_users=typing,
            counts=PresenceCountsDTO(active=len(active), typing=len(typing)),
        )
    )
