"""
@description 照片事件推送
@responsibility 管理用户的 WebSocket 连接，向单个用户推送照片生命周期事件（至多一次，尽力而为）
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Callable, Optional

from fastapi import WebSocket
from loguru import logger
from starlette.websockets import WebSocketDisconnect

from winkr.utils.helpers import to_rfc3339, utcnow

PHOTO_VIEWED = "ephemeral_photo_viewed"
PHOTO_EXPIRED = "ephemeral_photo_expired"
PHOTO_DELETED = "ephemeral_photo_deleted"

_EVENT_TIME_FIELDS = {
    PHOTO_VIEWED: "viewed_at",
    PHOTO_EXPIRED: "expired_at",
    PHOTO_DELETED: "deleted_at",
}


class ConnectionManager:
    """按用户分组的 WebSocket 连接表"""

    def __init__(self):
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections[user_id].add(websocket)
        logger.info(f"WebSocket 已连接: user_id={user_id}")

    async def disconnect(self, user_id: str, websocket: WebSocket) -> bool:
        """
        移除连接

        Returns:
            该用户是否已没有任何在线连接
        """
        async with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is None:
                return True
            sockets.discard(websocket)
            if not sockets:
                del self._connections[user_id]
                logger.info(f"WebSocket 已断开: user_id={user_id}")
                return True
        return False

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    @property
    def connection_count(self) -> int:
        return sum(len(s) for s in self._connections.values())

    async def broadcast_to_user(self, user_id: str, payload: dict) -> int:
        """
        向用户的全部连接发送 JSON 消息，发送失败的连接会被移除

        Returns:
            成功投递的连接数
        """
        sockets = list(self._connections.get(user_id, ()))
        delivered = 0
        for websocket in sockets:
            try:
                await websocket.send_json(payload)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.debug(f"推送失败，移除连接 user_id={user_id}: {e}")
                await self.disconnect(user_id, websocket)
        return delivered


class PhotoEventNotifier:
    """照片生命周期事件通知（失败只记录日志）"""

    def __init__(self, channel: ConnectionManager, clock: Callable[[], datetime] = utcnow):
        self._channel = channel
        self._clock = clock

    def build_payload(
        self,
        event: str,
        photo_id: str,
        owner_id: str,
        viewer_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> dict:
        payload = {"type": event, "photo_id": photo_id, "owner_id": owner_id}
        if viewer_id:
            payload["viewer_id"] = viewer_id
        payload[_EVENT_TIME_FIELDS[event]] = to_rfc3339(at or self._clock())
        return payload

    async def _emit(self, event: str, photo_id: str, owner_id: str, **kwargs) -> int:
        payload = self.build_payload(event, photo_id, owner_id, **kwargs)
        try:
            delivered = await self._channel.broadcast_to_user(owner_id, payload)
        except Exception as e:
            logger.warning(f"推送事件失败 {event} photo_id={photo_id}: {e}")
            return 0
        logger.debug(f"事件已推送 {event} photo_id={photo_id}, 连接数={delivered}")
        return delivered

    async def photo_viewed(
        self, photo_id: str, owner_id: str, viewer_id: Optional[str] = None, at: Optional[datetime] = None
    ) -> int:
        return await self._emit(PHOTO_VIEWED, photo_id, owner_id, viewer_id=viewer_id, at=at)

    async def photo_expired(self, photo_id: str, owner_id: str, at: Optional[datetime] = None) -> int:
        return await self._emit(PHOTO_EXPIRED, photo_id, owner_id, at=at)

    async def photo_deleted(self, photo_id: str, owner_id: str, at: Optional[datetime] = None) -> int:
        return await self._emit(PHOTO_DELETED, photo_id, owner_id, at=at)
