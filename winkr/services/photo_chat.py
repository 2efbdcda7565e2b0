"""
@description 聊天内阅后即焚照片
@responsibility 组合照片服务、消息服务、聊天缓存与事件推送，在会话中发送、查看并通知照片消息
"""

import json
import time
from datetime import datetime
from typing import Optional

from loguru import logger

from winkr.core.context import RequestContext, ensure_context
from winkr.core.errors import NotFoundError, OwnerMismatchError, WrongTypeError
from winkr.schemas.api import SendPhotoMessageResponse
from winkr.schemas.chat import (
    EPHEMERAL_PHOTO_MESSAGE_TYPE,
    ChatMessage,
    EphemeralPhotoMessageBody,
    SendMessageRequest,
)
from winkr.services.chat_cache import ChatCache
from winkr.services.ephemeral_photo import EphemeralPhotoService
from winkr.services.message_service import MessageService
from winkr.services.notifier import PhotoEventNotifier
from winkr.utils.helpers import to_rfc3339


class PhotoChatService:
    """会话中的阅后即焚照片消息"""

    def __init__(
        self,
        photos: EphemeralPhotoService,
        messages: MessageService,
        cache: ChatCache,
        notifier: PhotoEventNotifier,
        view_duration_seconds: int = 30,
    ):
        self._photos = photos
        self._messages = messages
        self._cache = cache
        self._notifier = notifier
        self._view_duration = view_duration_seconds

    async def send_ephemeral_photo_message(
        self,
        conversation_id: str,
        sender_id: str,
        photo_id: str,
        text: str = "",
        recipient_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> SendPhotoMessageResponse:
        """
        发送照片消息

        Raises:
            NotFoundError: 照片不存在
            OwnerMismatchError: 发送者不是照片所有者（不会创建消息）
        """
        ctx = ensure_context(ctx)
        started = time.monotonic()
        photo = await self._photos.get(photo_id, ctx=ctx)
        if photo.user_id != sender_id:
            logger.warning(f"发送照片消息被拒绝: photo_id={photo_id}, sender={sender_id}")
            raise OwnerMismatchError()

        body = EphemeralPhotoMessageBody(
            photo_id=photo.id,
            access_key=photo.access_key,
            thumbnail_url=photo.thumbnail_url,
            expires_at=to_rfc3339(photo.expires_at),
            message=text,
        )
        request = SendMessageRequest(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=body.model_dump_json(),
            message_type=EPHEMERAL_PHOTO_MESSAGE_TYPE,
            recipient_id=recipient_id,
        )
        message = await ctx.run(self._messages.send_message(request))

        logger.info(
            f"照片消息已发送: message_id={message.id}, photo_id={photo_id}, "
            f"conversation={conversation_id}"
        )
        return SendPhotoMessageResponse(
            message_id=message.id,
            sent_at=message.created_at,
            delivery_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def get_ephemeral_photo_message(
        self, message_id: str, ctx: Optional[RequestContext] = None
    ) -> ChatMessage:
        message = await ensure_context(ctx).run(self._messages.get_message(message_id))
        if message.message_type != EPHEMERAL_PHOTO_MESSAGE_TYPE:
            raise WrongTypeError()
        return message

    @staticmethod
    def parse_body(message: ChatMessage) -> EphemeralPhotoMessageBody:
        return EphemeralPhotoMessageBody.model_validate(json.loads(message.content))

    async def mark_photo_as_viewed_in_chat(
        self,
        message_id: str,
        photo_id: str,
        viewer_id: Optional[str] = None,
        ip_address: str = "",
        user_agent: str = "",
        ctx: Optional[RequestContext] = None,
    ) -> None:
        """
        记录一次聊天内查看（默认时长）并失效照片缓存

        Raises:
            NotFoundError: 消息不存在，或消息中的照片与 photo_id 不符
            WrongTypeError: 消息不是照片消息
        """
        ctx = ensure_context(ctx)
        message = await self.get_ephemeral_photo_message(message_id, ctx=ctx)
        if self.parse_body(message).photo_id != photo_id:
            raise NotFoundError(f"消息 '{message_id}' 中不包含照片 '{photo_id}'")

        photo = await self._photos.get(photo_id, ctx=ctx)
        await self._photos.track_view(
            photo.id,
            photo.user_id,
            viewer_id=viewer_id,
            ip_address=ip_address,
            user_agent=user_agent,
            duration=self._view_duration,
            ctx=ctx,
        )
        await self._cache.invalidate_photo(photo.id, photo.access_key)
        logger.debug(f"聊天内照片已标记查看: message_id={message_id}, photo_id={photo_id}")

    async def notify_photo_viewed(
        self,
        photo_id: str,
        viewer_id: Optional[str] = None,
        at: Optional[datetime] = None,
        ctx: Optional[RequestContext] = None,
    ) -> int:
        photo = await self._photos.get(photo_id, ctx=ctx)
        return await self._notifier.photo_viewed(photo.id, photo.user_id, viewer_id=viewer_id, at=at)

    async def notify_photo_expired(
        self, photo_id: str, at: Optional[datetime] = None, ctx: Optional[RequestContext] = None
    ) -> int:
        photo = await self._photos.get(photo_id, ctx=ctx)
        return await self._notifier.photo_expired(photo.id, photo.user_id, at=at)

    async def notify_photo_deleted(
        self, photo_id: str, at: Optional[datetime] = None, ctx: Optional[RequestContext] = None
    ) -> int:
        photo = await self._photos.get(photo_id, ctx=ctx)
        return await self._notifier.photo_deleted(photo.id, photo.user_id, at=at)
