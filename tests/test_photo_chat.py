"""
@description 聊天内阅后即焚照片测试
@responsibility 验证照片消息发送、消息体格式、类型校验、聊天内查看与事件通知
"""

import json

import pytest
from sqlalchemy import func, select

from winkr.core.errors import NotFoundError, OwnerMismatchError, WrongTypeError
from winkr.models.message import Message
from winkr.schemas.chat import SendMessageRequest
from winkr.services.message_service import MessageService
from winkr.services.photo_chat import PhotoChatService


@pytest.fixture
def message_service(session_factory, chat_cache, clock):
    return MessageService(session_factory, cache=chat_cache, clock=clock)


@pytest.fixture
def photo_chat(photo_service, message_service, chat_cache, notifier):
    return PhotoChatService(photo_service, message_service, chat_cache, notifier)


async def count_messages(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count(Message.id)))
        return result.scalar()


class TestSendEphemeralPhotoMessage:
    @pytest.mark.asyncio
    async def test_send_embeds_photo_body(self, upload, photo_chat, chat_cache, clock):
        photo = await upload(max_views=1, ttl_seconds=60)

        result = await photo_chat.send_ephemeral_photo_message("c1", "u1", photo.id, "look", recipient_id="u2")

        assert result.sent_at == clock.now
        assert isinstance(result.delivery_time_ms, int)
        assert result.delivery_time_ms >= 0
        message = await photo_chat.get_ephemeral_photo_message(result.message_id)
        assert message.message_type == "ephemeral_photo"
        body = json.loads(message.content)
        assert body == {
            "type": "ephemeral_photo",
            "photo_id": photo.id,
            "access_key": photo.access_key,
            "thumbnail_url": photo.thumbnail_url,
            "expires_at": "2024-06-01T12:01:00Z",
            "message": "look",
        }
        assert photo_chat.parse_body(message).photo_id == photo.id

        recent = await chat_cache.get_conversation_messages("c1")
        assert [m.id for m in recent] == [result.message_id]
        assert await chat_cache.get_unread("u2", "c1") == 1

    @pytest.mark.asyncio
    async def test_wrong_owner_creates_no_message(self, upload, photo_chat, session_factory):
        photo = await upload(owner_id="u1")

        with pytest.raises(OwnerMismatchError):
            await photo_chat.send_ephemeral_photo_message("c1", "u2", photo.id, "hi")

        assert await count_messages(session_factory) == 0

    @pytest.mark.asyncio
    async def test_unknown_photo(self, photo_chat):
        with pytest.raises(NotFoundError):
            await photo_chat.send_ephemeral_photo_message("c1", "u1", "missing", "hi")


class TestGetEphemeralPhotoMessage:
    @pytest.mark.asyncio
    async def test_rejects_plain_text_message(self, photo_chat, message_service):
        message = await message_service.send_message(
            SendMessageRequest(conversation_id="c1", sender_id="u1", content="hello")
        )

        with pytest.raises(WrongTypeError):
            await photo_chat.get_ephemeral_photo_message(message.id)

    @pytest.mark.asyncio
    async def test_missing_message(self, photo_chat):
        with pytest.raises(NotFoundError):
            await photo_chat.get_ephemeral_photo_message("missing")

    @pytest.mark.asyncio
    async def test_reads_from_store_when_cache_is_cold(self, upload, photo_chat, chat_cache):
        photo = await upload()
        result = await photo_chat.send_ephemeral_photo_message("c1", "u1", photo.id)
        await chat_cache.delete_message(result.message_id)

        message = await photo_chat.get_ephemeral_photo_message(result.message_id)

        assert message.id == result.message_id


class TestViewedInChat:
    @pytest.mark.asyncio
    async def test_mark_viewed_tracks_default_duration(self, upload, photo_chat, photo_service, chat_cache):
        photo = await upload(max_views=2)
        sent = await photo_chat.send_ephemeral_photo_message("c1", "u1", photo.id)
        await photo_service.get_photo_status(photo.id)

        await photo_chat.mark_photo_as_viewed_in_chat(sent.message_id, photo.id, viewer_id="u2")

        stats = await photo_service.get_photo_view_stats(photo.id)
        assert stats.average_view_time == 30
        assert stats.unique_viewers == 1
        assert await chat_cache.get_cached_photo(photo.id) is None

    @pytest.mark.asyncio
    async def test_mark_viewed_unknown_message_records_nothing(self, upload, photo_chat, view_log):
        photo = await upload(max_views=2)

        with pytest.raises(NotFoundError):
            await photo_chat.mark_photo_as_viewed_in_chat("no-such-message", photo.id, viewer_id="u2")

        assert await view_log.recent_by_photo(photo.id) == []

    @pytest.mark.asyncio
    async def test_mark_viewed_text_message_records_nothing(self, upload, photo_chat, message_service, view_log):
        photo = await upload(max_views=2)
        message = await message_service.send_message(
            SendMessageRequest(conversation_id="c1", sender_id="u1", content="hello")
        )

        with pytest.raises(WrongTypeError):
            await photo_chat.mark_photo_as_viewed_in_chat(message.id, photo.id, viewer_id="u2")

        assert await view_log.recent_by_photo(photo.id) == []

    @pytest.mark.asyncio
    async def test_mark_viewed_other_photo_records_nothing(self, upload, photo_chat, view_log):
        sent_photo = await upload(max_views=2)
        other = await upload(max_views=2)
        sent = await photo_chat.send_ephemeral_photo_message("c1", "u1", sent_photo.id)

        with pytest.raises(NotFoundError):
            await photo_chat.mark_photo_as_viewed_in_chat(sent.message_id, other.id, viewer_id="u2")

        assert await view_log.recent_by_photo(other.id) == []

    @pytest.mark.asyncio
    async def test_notifications_resolve_owner(self, upload, photo_chat, channel):
        photo = await upload(owner_id="u1")

        await photo_chat.notify_photo_viewed(photo.id, viewer_id="u2")
        await photo_chat.notify_photo_expired(photo.id)
        await photo_chat.notify_photo_deleted(photo.id)

        calls = channel.broadcast_to_user.await_args_list
        assert [c.args[0] for c in calls] == ["u1", "u1", "u1"]
        assert [c.args[1]["type"] for c in calls] == [
            "ephemeral_photo_viewed",
            "ephemeral_photo_expired",
            "ephemeral_photo_deleted",
        ]
        assert calls[0].args[1]["viewer_id"] == "u2"
