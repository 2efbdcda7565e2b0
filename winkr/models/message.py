"""
@description 聊天消息数据模型
@responsibility 持久化会话中的消息，支持阅后即焚照片消息类型
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from winkr.core.database import Base
from winkr.utils.helpers import utcnow

MESSAGE_TYPES = ("text", "image", "gif", "ephemeral_photo")


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(String(36), nullable=False, index=True)
    sender_id = Column(String(36), nullable=False, index=True)
    content = Column(Text, nullable=False)
    message_type = Column(String(32), default="text", nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_messages_conversation_type", "conversation_id", "message_type"),
        Index("ix_messages_sender_type", "sender_id", "message_type"),
    )
