"""
@description 聊天领域模型
@responsibility 定义消息服务与聊天缓存之间传递的消息结构
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

EPHEMERAL_PHOTO_MESSAGE_TYPE = "ephemeral_photo"


class ChatMessage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    sender_id: str
    content: str
    message_type: str = "text"
    is_read: bool = False
    created_at: datetime


class SendMessageRequest(BaseModel):
    conversation_id: str
    sender_id: str
    content: str
    message_type: str = "text"
    recipient_id: Optional[str] = Field(None, description="接收方（用于未读计数）")


class EphemeralPhotoMessageBody(BaseModel):
    """阅后即焚照片消息体（写入 messages.content 的 JSON）"""

    type: str = EPHEMERAL_PHOTO_MESSAGE_TYPE
    photo_id: str
    access_key: str
    thumbnail_url: str
    expires_at: str = Field(..., description="RFC3339 UTC")
    message: str = ""
