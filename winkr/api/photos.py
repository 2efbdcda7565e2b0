"""
@description 阅后即焚照片接口
@responsibility 处理照片上传、查看、状态/统计查询、过期、删除以及在会话中发送照片消息
"""

from typing import TYPE_CHECKING, Optional

from fastapi import APIRouter, Header, Request

from winkr.core.context import RequestContext
from winkr.schemas.api import (
    ApiResponse,
    PhotoListResponse,
    PhotoResponse,
    PhotoStats,
    PhotoStatusResponse,
    SendPhotoMessageRequest,
    SendPhotoMessageResponse,
    UploadPhotoRequest,
    ViewStats,
    success_response,
)

if TYPE_CHECKING:
    from winkr.services.ephemeral_photo import EphemeralPhotoService
    from winkr.services.photo_chat import PhotoChatService

# 单个请求内所有 I/O 的总时限（秒）
REQUEST_TIMEOUT_SECONDS = 10.0

router = APIRouter()

_photo_service: "EphemeralPhotoService" = None
_photo_chat: "PhotoChatService" = None


def init_photos_router(photo_service: "EphemeralPhotoService", photo_chat: "PhotoChatService"):
    global _photo_service, _photo_chat
    _photo_service = photo_service
    _photo_chat = photo_chat


def _ctx() -> RequestContext:
    return RequestContext(timeout=REQUEST_TIMEOUT_SECONDS)


@router.post("/ephemeral-photos", response_model=ApiResponse[PhotoResponse])
async def upload_photo(request: UploadPhotoRequest, user_id: str = Header(..., alias="X-User-ID")):
    photo = await _photo_service.upload(
        user_id,
        request.file_url,
        request.file_key,
        request.thumbnail_url,
        request.thumbnail_key,
        max_views=request.max_views,
        ttl_seconds=request.ttl_seconds,
        ctx=_ctx(),
    )
    return success_response(data=PhotoResponse.model_validate(photo), message="上传成功")


@router.get("/ephemeral-photos", response_model=ApiResponse[PhotoListResponse])
async def list_photos(
    active_only: bool = False, user_id: str = Header(..., alias="X-User-ID")
):
    if active_only:
        photos = await _photo_service.list_user_active_photos(user_id, ctx=_ctx())
    else:
        photos = await _photo_service.list_user_photos(user_id, ctx=_ctx())
    return success_response(
        data=PhotoListResponse(
            total=len(photos), photos=[PhotoResponse.model_validate(p) for p in photos]
        ),
        message="获取照片列表成功",
    )


@router.get("/ephemeral-photos/analytics", response_model=ApiResponse[PhotoStats])
async def get_analytics(user_id: str = Header(..., alias="X-User-ID")):
    stats = await _photo_service.get_user_stats(user_id, ctx=_ctx())
    return success_response(data=stats, message="获取统计成功")


@router.post("/ephemeral-photos/{access_key}/view", response_model=ApiResponse[PhotoResponse])
async def view_photo(
    access_key: str,
    request: Request,
    viewer_id: Optional[str] = Header(None, alias="X-User-ID"),
    user_agent: Optional[str] = Header(None),
):
    ip_address = request.client.host if request.client else ""
    photo = await _photo_service.view(
        access_key,
        viewer_id=viewer_id,
        ip_address=ip_address,
        user_agent=user_agent or "",
        ctx=_ctx(),
    )
    return success_response(data=PhotoResponse.model_validate(photo), message="查看成功")


@router.get("/ephemeral-photos/{photo_id}/status", response_model=ApiResponse[PhotoStatusResponse])
async def get_photo_status(photo_id: str):
    status = await _photo_service.get_photo_status(photo_id, ctx=_ctx())
    return success_response(data=status, message="获取照片状态成功")


@router.get("/ephemeral-photos/{photo_id}/views", response_model=ApiResponse[ViewStats])
async def get_photo_views(photo_id: str, user_id: str = Header(..., alias="X-User-ID")):
    ctx = _ctx()
    await _photo_service.ensure_owner(user_id, photo_id, ctx=ctx)
    stats = await _photo_service.get_photo_view_stats(photo_id, ctx=ctx)
    return success_response(data=stats, message="获取查看统计成功")


@router.post("/ephemeral-photos/{photo_id}/expire", response_model=ApiResponse[dict])
async def expire_photo(photo_id: str, user_id: str = Header(..., alias="X-User-ID")):
    await _photo_service.expire(user_id, photo_id, ctx=_ctx())
    return success_response(data={"photo_id": photo_id}, message="照片已过期")


@router.delete("/ephemeral-photos/{photo_id}", response_model=ApiResponse[dict])
async def delete_photo(photo_id: str, user_id: str = Header(..., alias="X-User-ID")):
    await _photo_service.delete(user_id, photo_id, ctx=_ctx())
    return success_response(data={"photo_id": photo_id}, message="照片已删除")


@router.post(
    "/conversations/{conversation_id}/ephemeral-photos",
    response_model=ApiResponse[SendPhotoMessageResponse],
)
async def send_photo_message(
    conversation_id: str,
    request: SendPhotoMessageRequest,
    user_id: str = Header(..., alias="X-User-ID"),
):
    result = await _photo_chat.send_ephemeral_photo_message(
        conversation_id, user_id, request.photo_id, request.message, ctx=_ctx()
    )
    return success_response(data=result, message="照片消息已发送")
