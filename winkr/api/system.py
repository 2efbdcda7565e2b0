"""
@description 系统状态接口
@responsibility 查询回收任务状态与推送连接数
"""

from typing import TYPE_CHECKING, Optional

from fastapi import APIRouter

from winkr.schemas.api import (
    ApiResponse,
    ReclamationResultResponse,
    StatusResponse,
    success_response,
)

if TYPE_CHECKING:
    from winkr.services.notifier import ConnectionManager
    from winkr.tasks.reclaimer import PhotoReclaimer

router = APIRouter()

_reclaimer: Optional["PhotoReclaimer"] = None
_connections: Optional["ConnectionManager"] = None


def init_system_router(reclaimer: "PhotoReclaimer", connections: "ConnectionManager"):
    global _reclaimer, _connections
    _reclaimer = reclaimer
    _connections = connections


@router.get("/status", response_model=ApiResponse[StatusResponse])
async def get_status():
    last_result = None
    if _reclaimer is not None and _reclaimer.last_result is not None:
        last_result = ReclamationResultResponse(**_reclaimer.last_result.to_dict())

    return success_response(
        data=StatusResponse(
            reclaimer_running=_reclaimer.running if _reclaimer is not None else False,
            last_result=last_result,
            online_connections=_connections.connection_count if _connections is not None else 0,
        ),
        message="获取系统状态成功",
    )
