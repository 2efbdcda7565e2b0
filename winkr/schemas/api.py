"""
@description API 请求/响应模型
@responsibility 定义所有 API 接口与服务层统计结果的数据结构
"""

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class UploadPhotoRequest(BaseModel):
    file_url: str = Field(..., min_length=1, description="原图访问地址")
    file_key: str = Field(..., min_length=1, description="原图存储 key")
    thumbnail_url: str = Field(..., min_length=1, description="缩略图访问地址")
    thumbnail_key: str = Field(..., min_length=1, description="缩略图存储 key")
    max_views: Optional[int] = Field(None, description="最大查看次数（<=0 或缺省时使用默认值）")
    ttl_seconds: Optional[int] = Field(None, description="有效期秒数（<=0 或缺省时使用默认值）")


class PhotoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="照片 ID")
    user_id: str = Field(..., description="所有者 ID")
    file_url: str = Field(..., description="原图访问地址")
    thumbnail_url: str = Field(..., description="缩略图访问地址")
    access_key: str = Field(..., description="访问密钥")
    is_viewed: bool = Field(..., description="是否已被查看")
    is_expired: bool = Field(..., description="是否已过期")
    view_count: int = Field(..., description="已查看次数")
    max_views: int = Field(..., description="最大查看次数")
    expires_at: datetime = Field(..., description="过期时间（UTC）")
    viewed_at: Optional[datetime] = Field(None, description="首次查看时间")
    expired_at: Optional[datetime] = Field(None, description="过期时间点")
    created_at: datetime = Field(..., description="创建时间")


class PhotoListResponse(BaseModel):
    total: int = Field(..., description="照片数量")
    photos: list[PhotoResponse] = Field(..., description="照片列表")


class PhotoStatusResponse(BaseModel):
    photo_id: str = Field(..., description="照片 ID")
    status: str = Field(
        ..., description="状态（deleted/expired/viewed/time_expired/available）"
    )
    remaining_seconds: int = Field(..., description="距离过期的剩余秒数")
    view_count: int = Field(..., description="已查看次数")
    max_views: int = Field(..., description="最大查看次数")


class PhotoStats(BaseModel):
    """照片聚合统计"""

    total_photos: int = 0
    active_photos: int = 0
    viewed_photos: int = 0
    expired_photos: int = 0
    deleted_photos: int = 0
    photos_today: int = 0
    photos_this_week: int = 0
    photos_this_month: int = 0
    total_views: int = 0
    average_view_time: int = Field(0, description="平均查看时长（秒）")


class ViewStats(BaseModel):
    """
    单张照片的查看统计

    unique_viewers / average_view_time / 分时段计数只基于最近 window 条查看记录
    """

    photo_id: str
    total_views: int = 0
    unique_viewers: int = 0
    average_view_time: float = 0.0
    views_today: int = 0
    views_this_week: int = 0
    views_this_month: int = 0
    window: int = Field(100, description="统计窗口（最近查看记录条数）")


class SendPhotoMessageRequest(BaseModel):
    photo_id: str = Field(..., description="照片 ID")
    message: str = Field("", description="附带的文字")


class SendPhotoMessageResponse(BaseModel):
    message_id: str = Field(..., description="消息 ID")
    sent_at: datetime = Field(..., description="投递时间")
    delivery_time_ms: int = Field(0, description="发送耗时（毫秒）")


class ReclamationResultResponse(BaseModel):
    processed: int = Field(..., description="本次扫描的候选记录数")
    deleted: int = Field(..., description="本次软删除的记录数")
    views_pruned: int = Field(0, description="本次清理的查看记录数")
    errors: int = Field(..., description="失败的批次数")
    duration_ms: int = Field(..., description="耗时（毫秒）")
    timestamp: datetime = Field(..., description="完成时间")


class StatusResponse(BaseModel):
    reclaimer_running: bool = Field(..., description="回收任务是否运行中")
    last_result: Optional[ReclamationResultResponse] = Field(
        None, description="最近一次回收结果"
    )
    online_connections: int = Field(0, description="当前 WebSocket 连接数")


class ApiResponse(BaseModel, Generic[T]):
    """统一 API 响应格式"""

    code: int = Field(..., description="响应码（0=成功，非0=错误）")
    message: str = Field(..., description="响应消息")
    data: Optional[T] = Field(None, description="响应数据")


def success_response(data: T, message: str = "操作成功") -> ApiResponse[T]:
    """创建成功响应"""
    return ApiResponse(code=0, message=message, data=data)


def error_response(code: int, message: str, data: Optional[T] = None) -> ApiResponse[T]:
    """创建错误响应"""
    return ApiResponse(code=code, message=message, data=data)
