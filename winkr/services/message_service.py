"""
@description 消息服务
@responsibility 持久化会话消息并按 ID 查询；发送成功后尽力更新聊天缓存
"""

import uuid
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from winkr.core.database import get_session
from winkr.core.errors import NotFoundError
from winkr.models.message import Message
from winkr.repositories.ephemeral_photo_store import store_operation
from winkr.schemas.chat import ChatMessage, SendMessageRequest
from winkr.services.chat_cache import ChatCache
from winkr.utils.helpers import utcnow


class MessageService:
    def __init__(
        self,
        session_factory=get_session,
        cache: Optional[ChatCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session_factory
        self._cache = cache
        self._clock = clock

    @store_operation("发送消息")
    async def _insert(self, request: SendMessageRequest) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=request.conversation_id,
            sender_id=request.sender_id,
            content=request.content,
            message_type=request.message_type,
            is_read=False,
            is_deleted=False,
            created_at=self._clock(),
        )
        async with self._session() as session:
            session.add(message)
            await session.commit()
        return message

    async def send_message(self, request: SendMessageRequest) -> ChatMessage:
        """写入消息并返回已持久化的消息"""
        message = ChatMessage.model_validate(await self._insert(request))
        logger.info(
            f"消息已发送: message_id={message.id}, conversation={message.conversation_id}, "
            f"type={message.message_type}"
        )

        if self._cache is not None:
            await self._cache.add_message(message.conversation_id, message)
            await self._cache.cache_last_message(message.conversation_id, message)
            await self._cache.cache_message(message)
            if request.recipient_id:
                await self._cache.increment_unread(request.recipient_id, message.conversation_id)
        return message

    async def get_message(self, message_id: str) -> ChatMessage:
        if self._cache is not None:
            cached = await self._cache.get_message(message_id)
            if cached is not None:
                return cached

        message = await self._fetch(message_id)
        if message is None or message.is_deleted:
            raise NotFoundError(f"消息 '{message_id}' 不存在")
        return ChatMessage.model_validate(message)

    @store_operation("查询消息")
    async def _fetch(self, message_id: str) -> Optional[Message]:
        async with self._session() as session:
            return await session.get(Message, message_id)
