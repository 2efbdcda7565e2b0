"""
@description 缓存 key 规范
@responsibility 统一生成聊天缓存、照片缓存与管理缓存的 key，避免魔法字符串

Key 结构（对运维可见，保持稳定）:
    user:online:{user_id}
    user:typing:{user_id}:{conversation_id}
    user:unread:{user_id}:{conversation_id}
    conversation:messages:{conversation_id}
    conversation:participants:{conversation_id}
    conversation:last_message:{conversation_id}
    conversation:typing_users:{conversation_id}
    message:{message_id}
    ephemeral_photo:{photo_id}
    ephemeral_photo_access:{access_key}
    system:online_users
    system:chat_stats
    admin:*                 管理后台缓存保留命名空间，聊天缓存不会写入
"""

import re

ADMIN_NAMESPACE = "admin"

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


class ChatKey:
    """聊天缓存 key"""

    ONLINE_USERS = "system:online_users"
    CHAT_STATS = "system:chat_stats"

    @staticmethod
    def user_online(user_id: str) -> str:
        return f"user:online:{user_id}"

    @staticmethod
    def user_typing(user_id: str, conversation_id: str) -> str:
        return f"user:typing:{user_id}:{conversation_id}"

    @staticmethod
    def user_unread(user_id: str, conversation_id: str) -> str:
        return f"user:unread:{user_id}:{conversation_id}"

    @staticmethod
    def conversation_messages(conversation_id: str) -> str:
        return f"conversation:messages:{conversation_id}"

    @staticmethod
    def conversation_participants(conversation_id: str) -> str:
        return f"conversation:participants:{conversation_id}"

    @staticmethod
    def conversation_last_message(conversation_id: str) -> str:
        return f"conversation:last_message:{conversation_id}"

    @staticmethod
    def conversation_typing_users(conversation_id: str) -> str:
        return f"conversation:typing_users:{conversation_id}"

    @classmethod
    def conversation_keys(cls, conversation_id: str) -> list[str]:
        """会话相关的全部 key"""
        return [
            cls.conversation_messages(conversation_id),
            cls.conversation_participants(conversation_id),
            cls.conversation_last_message(conversation_id),
            cls.conversation_typing_users(conversation_id),
        ]

    @staticmethod
    def message(message_id: str) -> str:
        return f"message:{message_id}"

    @staticmethod
    def user_patterns(user_id: str) -> list[str]:
        """
        匹配以完整段嵌入该用户 ID 的 key（调用方需排除 admin 命名空间）

        以 ":" 分段锚定，u1 不会匹配 u10；ID 中的 glob 元字符会被转义
        """
        escaped = _GLOB_SPECIAL.sub(r"\\\1", user_id)
        return [f"*:{escaped}", f"*:{escaped}:*"]


class PhotoKey:
    """照片记录缓存 key"""

    @staticmethod
    def photo(photo_id: str) -> str:
        return f"ephemeral_photo:{photo_id}"

    @staticmethod
    def access_key(access_key: str) -> str:
        return f"ephemeral_photo_access:{access_key}"


def is_admin_key(key: str) -> bool:
    return key.startswith(f"{ADMIN_NAMESPACE}:")
