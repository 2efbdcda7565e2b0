"""
@description 事件推送测试
@responsibility 验证连接管理、单用户广播、失效连接剔除与事件负载格式
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from winkr.services.notifier import ConnectionManager, PhotoEventNotifier


def make_socket(fail: bool = False) -> MagicMock:
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock(side_effect=WebSocketDisconnect() if fail else None)
    return websocket


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_broadcast_only_to_target_user(self):
        manager = ConnectionManager()
        a1, a2, b1 = make_socket(), make_socket(), make_socket()
        await manager.connect("alice", a1)
        await manager.connect("alice", a2)
        await manager.connect("bob", b1)

        delivered = await manager.broadcast_to_user("alice", {"type": "ping"})

        assert delivered == 2
        a1.send_json.assert_awaited_once_with({"type": "ping"})
        b1.send_json.assert_not_awaited()
        assert manager.connection_count == 3

    @pytest.mark.asyncio
    async def test_failed_connection_is_dropped(self):
        manager = ConnectionManager()
        good, bad = make_socket(), make_socket(fail=True)
        await manager.connect("alice", good)
        await manager.connect("alice", bad)

        assert await manager.broadcast_to_user("alice", {"type": "ping"}) == 1
        assert manager.connection_count == 1

    @pytest.mark.asyncio
    async def test_disconnect_reports_last_connection(self):
        manager = ConnectionManager()
        s1, s2 = make_socket(), make_socket()
        await manager.connect("alice", s1)
        await manager.connect("alice", s2)

        assert not await manager.disconnect("alice", s1)
        assert await manager.disconnect("alice", s2)
        assert not manager.is_online("alice")
        assert await manager.broadcast_to_user("alice", {}) == 0


class TestPhotoEventNotifier:
    def test_payload_formats(self, notifier):
        at = datetime(2024, 6, 1, 12, 0, 0)

        viewed = notifier.build_payload("ephemeral_photo_viewed", "p1", "u1", viewer_id="u2", at=at)
        expired = notifier.build_payload("ephemeral_photo_expired", "p1", "u1", at=at)
        deleted = notifier.build_payload("ephemeral_photo_deleted", "p1", "u1", at=at)

        assert viewed == {
            "type": "ephemeral_photo_viewed",
            "photo_id": "p1",
            "owner_id": "u1",
            "viewer_id": "u2",
            "viewed_at": "2024-06-01T12:00:00Z",
        }
        assert expired["expired_at"] == "2024-06-01T12:00:00Z"
        assert "viewer_id" not in expired
        assert deleted["deleted_at"] == "2024-06-01T12:00:00Z"

    @pytest.mark.asyncio
    async def test_events_go_to_owner(self, notifier, channel):
        await notifier.photo_deleted("p1", "u1")

        user_id, payload = channel.broadcast_to_user.await_args.args
        assert user_id == "u1"
        assert payload["type"] == "ephemeral_photo_deleted"

    @pytest.mark.asyncio
    async def test_channel_errors_never_raise(self, clock):
        channel = MagicMock()
        channel.broadcast_to_user = AsyncMock(side_effect=RuntimeError("boom"))
        notifier = PhotoEventNotifier(channel, clock=clock)

        assert await notifier.photo_viewed("p1", "u1") == 0
