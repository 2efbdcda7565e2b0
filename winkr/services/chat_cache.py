"""
@description 聊天缓存服务
@responsibility 在线状态、输入状态、未读数、会话最近消息、照片记录等缓存族的读写与失效

缓存只是加速层：写入失败记录日志后忽略，读取失败按未命中处理
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from loguru import logger
from redis.exceptions import RedisError

from winkr.cache.keys import ChatKey, PhotoKey, is_admin_key
from winkr.cache.kv_cache import RedisCache
from winkr.core.config import CacheTTLConfig
from winkr.schemas.chat import ChatMessage
from winkr.utils.helpers import utcnow

CACHE_ERRORS = (RedisError, OSError, ValueError, TypeError)


class ChatCache:
    """聊天缓存（基于 RedisCache 的分族封装）"""

    def __init__(
        self,
        cache: RedisCache,
        ttl: Optional[CacheTTLConfig] = None,
        photo_ttl_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._cache = cache
        ttl = ttl or CacheTTLConfig()
        self.short_ttl = timedelta(seconds=ttl.short_seconds)
        self.medium_ttl = timedelta(seconds=ttl.medium_seconds)
        self.long_ttl = timedelta(seconds=ttl.long_seconds)
        self.recent_messages_limit = ttl.recent_messages_limit
        self.photo_ttl = timedelta(seconds=photo_ttl_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # 底层读写（吞掉缓存错误）
    # ------------------------------------------------------------------

    async def _set(self, key: str, value: Any, ttl: timedelta) -> bool:
        try:
            await self._cache.set(key, value, ttl)
            return True
        except CACHE_ERRORS as e:
            logger.warning(f"写入缓存失败 key={key}: {e}")
            return False

    async def _get(self, key: str) -> Optional[Any]:
        try:
            value = await self._cache.get(key)
        except CACHE_ERRORS as e:
            logger.warning(f"读取缓存失败 key={key}: {e}")
            return None
        logger.debug(f"缓存{'命中' if value is not None else '未命中'}: {key}")
        return value

    async def _delete(self, *keys: str) -> None:
        for key in keys:
            try:
                await self._cache.delete(key)
            except CACHE_ERRORS as e:
                logger.warning(f"删除缓存失败 key={key}: {e}")

    # ------------------------------------------------------------------
    # 用户在线 / 输入状态 / 未读数
    # ------------------------------------------------------------------

    async def cache_user_online(self, user_id: str, online: bool = True) -> None:
        await self._set(ChatKey.user_online(user_id), online, self.medium_ttl)

    async def get_user_online(self, user_id: str) -> Optional[bool]:
        return await self._get(ChatKey.user_online(user_id))

    async def invalidate_user_online(self, user_id: str) -> None:
        await self._delete(ChatKey.user_online(user_id))

    async def cache_user_typing(self, user_id: str, conversation_id: str, typing: bool = True) -> None:
        await self._set(ChatKey.user_typing(user_id, conversation_id), typing, self.short_ttl)

    async def get_user_typing(self, user_id: str, conversation_id: str) -> Optional[bool]:
        return await self._get(ChatKey.user_typing(user_id, conversation_id))

    async def invalidate_user_typing(self, user_id: str, conversation_id: str) -> None:
        await self._delete(ChatKey.user_typing(user_id, conversation_id))

    async def cache_unread(self, user_id: str, conversation_id: str, count: int) -> None:
        await self._set(ChatKey.user_unread(user_id, conversation_id), count, self.long_ttl)

    async def get_unread(self, user_id: str, conversation_id: str) -> Optional[int]:
        return await self._get(ChatKey.user_unread(user_id, conversation_id))

    async def increment_unread(self, user_id: str, conversation_id: str) -> int:
        """
        未读数 +1（读-改-写，允许并发丢失更新，计数仅供参考）
        """
        count = await self.get_unread(user_id, conversation_id) or 0
        count += 1
        await self.cache_unread(user_id, conversation_id, count)
        return count

    async def reset_unread(self, user_id: str, conversation_id: str) -> None:
        await self._delete(ChatKey.user_unread(user_id, conversation_id))

    # ------------------------------------------------------------------
    # 会话
    # ------------------------------------------------------------------

    async def cache_conversation_messages(
        self, conversation_id: str, messages: list[ChatMessage]
    ) -> None:
        recent = messages[-self.recent_messages_limit :]
        await self._set(
            ChatKey.conversation_messages(conversation_id),
            [m.model_dump() for m in recent],
            self.medium_ttl,
        )

    async def get_conversation_messages(self, conversation_id: str) -> Optional[list[ChatMessage]]:
        raw = await self._get(ChatKey.conversation_messages(conversation_id))
        if raw is None:
            return None
        return [ChatMessage.model_validate(m) for m in raw]

    async def add_message(self, conversation_id: str, message: ChatMessage) -> None:
        """追加到会话最近消息窗口，超出上限时丢弃最旧的消息"""
        messages = await self.get_conversation_messages(conversation_id) or []
        messages.append(message)
        await self.cache_conversation_messages(conversation_id, messages)

    async def cache_participants(self, conversation_id: str, participants: set[str]) -> None:
        await self._set(
            ChatKey.conversation_participants(conversation_id),
            set(participants),
            self.long_ttl,
        )

    async def get_participants(self, conversation_id: str) -> Optional[set[str]]:
        raw = await self._get(ChatKey.conversation_participants(conversation_id))
        return set(raw) if raw is not None else None

    async def cache_last_message(self, conversation_id: str, message: ChatMessage) -> None:
        await self._set(
            ChatKey.conversation_last_message(conversation_id),
            message.model_dump(),
            self.medium_ttl,
        )

    async def get_last_message(self, conversation_id: str) -> Optional[ChatMessage]:
        raw = await self._get(ChatKey.conversation_last_message(conversation_id))
        return ChatMessage.model_validate(raw) if raw is not None else None

    async def cache_typing_users(self, conversation_id: str, typing_users: dict[str, datetime]) -> None:
        await self._set(
            ChatKey.conversation_typing_users(conversation_id),
            dict(typing_users),
            self.short_ttl,
        )

    async def get_typing_users(self, conversation_id: str) -> Optional[dict[str, datetime]]:
        return await self._get(ChatKey.conversation_typing_users(conversation_id))

    async def add_typing_user(self, conversation_id: str, user_id: str) -> None:
        typing_users = await self.get_typing_users(conversation_id) or {}
        typing_users[user_id] = self._clock()
        await self.cache_typing_users(conversation_id, typing_users)

    async def remove_typing_user(self, conversation_id: str, user_id: str) -> None:
        typing_users = await self.get_typing_users(conversation_id)
        if not typing_users or user_id not in typing_users:
            return
        del typing_users[user_id]
        await self.cache_typing_users(conversation_id, typing_users)

    async def invalidate_conversation(self, conversation_id: str) -> None:
        await self._delete(*ChatKey.conversation_keys(conversation_id))

    # ------------------------------------------------------------------
    # 在线用户集合
    # ------------------------------------------------------------------

    async def cache_online_users(self, user_ids: set[str]) -> None:
        await self._set(ChatKey.ONLINE_USERS, set(user_ids), self.short_ttl)

    async def get_online_users(self) -> Optional[set[str]]:
        raw = await self._get(ChatKey.ONLINE_USERS)
        return set(raw) if raw is not None else None

    async def add_online_user(self, user_id: str) -> None:
        users = await self.get_online_users() or set()
        users.add(user_id)
        await self.cache_online_users(users)

    async def remove_online_user(self, user_id: str) -> None:
        users = await self.get_online_users()
        if not users or user_id not in users:
            return
        users.discard(user_id)
        await self.cache_online_users(users)

    # ------------------------------------------------------------------
    # 用户级失效
    # ------------------------------------------------------------------

    async def invalidate_user(self, user_id: str) -> int:
        """
        删除所有嵌入该用户 ID 的聊天缓存 key（admin 命名空间不受影响）

        Returns:
            删除的 key 数量
        """
        keys: list[str] = []
        try:
            for pattern in ChatKey.user_patterns(user_id):
                keys.extend(await self._cache.keys(pattern))
        except CACHE_ERRORS as e:
            logger.warning(f"枚举用户缓存失败 user_id={user_id}: {e}")
            return 0

        targets = [k for k in dict.fromkeys(keys) if not is_admin_key(k)]
        await self._delete(*targets)
        logger.debug(f"已失效用户缓存 user_id={user_id}, keys={len(targets)}")
        return len(targets)

    # ------------------------------------------------------------------
    # 单条消息 / 聊天统计
    # ------------------------------------------------------------------

    async def cache_message(self, message: ChatMessage) -> None:
        await self._set(ChatKey.message(message.id), message.model_dump(), self.medium_ttl)

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        raw = await self._get(ChatKey.message(message_id))
        return ChatMessage.model_validate(raw) if raw is not None else None

    async def delete_message(self, message_id: str) -> None:
        await self._delete(ChatKey.message(message_id))

    async def cache_chat_stats(self, stats: dict) -> None:
        await self._set(ChatKey.CHAT_STATS, stats, self.medium_ttl)

    async def get_chat_stats(self) -> Optional[dict]:
        return await self._get(ChatKey.CHAT_STATS)

    # ------------------------------------------------------------------
    # 照片记录
    # ------------------------------------------------------------------

    async def cache_photo(self, photo: dict) -> None:
        """按 ID 与访问密钥两个 key 缓存照片记录"""
        await self._set(PhotoKey.photo(photo["id"]), photo, self.photo_ttl)
        await self._set(PhotoKey.access_key(photo["access_key"]), photo, self.photo_ttl)

    async def get_cached_photo(self, photo_id: str) -> Optional[dict]:
        return await self._get(PhotoKey.photo(photo_id))

    async def get_cached_photo_by_access_key(self, access_key: str) -> Optional[dict]:
        return await self._get(PhotoKey.access_key(access_key))

    async def invalidate_photo(self, photo_id: str, access_key: Optional[str] = None) -> None:
        keys = [PhotoKey.photo(photo_id)]
        if access_key:
            keys.append(PhotoKey.access_key(access_key))
        await self._delete(*keys)

    async def cache_stats(self) -> Optional[dict]:
        try:
            return await self._cache.info()
        except CACHE_ERRORS as e:
            logger.warning(f"读取缓存统计失败: {e}")
            return None
