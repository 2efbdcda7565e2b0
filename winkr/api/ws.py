"""
@description 推送通道接口
@responsibility 维护用户 WebSocket 连接与在线状态缓存
"""

from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

if TYPE_CHECKING:
    from winkr.services.chat_cache import ChatCache
    from winkr.services.notifier import ConnectionManager

router = APIRouter()

_connections: "ConnectionManager" = None
_chat_cache: "ChatCache" = None


def init_ws_router(connections: "ConnectionManager", chat_cache: "ChatCache"):
    global _connections, _chat_cache
    _connections = connections
    _chat_cache = chat_cache


@router.websocket("/ws/{user_id}")
async def user_channel(websocket: WebSocket, user_id: str):
    await _connections.connect(user_id, websocket)
    await _chat_cache.cache_user_online(user_id, True)
    await _chat_cache.add_online_user(user_id)

    try:
        while True:
            # 客户端消息仅作为心跳，刷新在线状态
            await websocket.receive_text()
            await _chat_cache.cache_user_online(user_id, True)
            await _chat_cache.add_online_user(user_id)
    except WebSocketDisconnect:
        logger.debug(f"客户端断开连接: user_id={user_id}")
    finally:
        if await _connections.disconnect(user_id, websocket):
            await _chat_cache.invalidate_user_online(user_id)
            await _chat_cache.remove_online_user(user_id)
