"""
@description 测试公共夹具
@responsibility 提供可控时钟、临时 SQLite 数据库、fakeredis 缓存与装配好的服务
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

from winkr.cache.kv_cache import RedisCache
from winkr.core.config import EphemeralPhotoConfig
from winkr.core.database import create_engine_for, create_session_factory, init_db, session_scope
from winkr.repositories.ephemeral_photo_store import EphemeralPhotoStore
from winkr.repositories.photo_view_log import PhotoViewLog
from winkr.repositories.user_repository import UserRepository
from winkr.services.chat_cache import ChatCache
from winkr.services.ephemeral_photo import EphemeralPhotoService
from winkr.services.notifier import PhotoEventNotifier


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'winkr-test.db'}")
    await init_db(engine)
    yield session_scope(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def store(session_factory, clock):
    return EphemeralPhotoStore(session_factory, clock=clock)


@pytest.fixture
def view_log(session_factory, clock):
    return PhotoViewLog(session_factory, clock=clock)


@pytest_asyncio.fixture
async def users(session_factory):
    repo = UserRepository(session_factory)
    await repo.create("u1", "alice")
    await repo.create("u2", "bob")
    return repo


@pytest_asyncio.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def kv_cache(redis_client):
    return RedisCache(redis_client)


@pytest.fixture
def chat_cache(kv_cache, clock):
    return ChatCache(kv_cache, clock=clock)


@pytest.fixture
def channel():
    manager = MagicMock()
    manager.broadcast_to_user = AsyncMock(return_value=1)
    return manager


@pytest.fixture
def notifier(channel, clock):
    return PhotoEventNotifier(channel, clock=clock)


@pytest.fixture
def photo_service(store, view_log, users, chat_cache, notifier, clock):
    return EphemeralPhotoService(
        store,
        view_log,
        users,
        cache=chat_cache,
        notifier=notifier,
        config=EphemeralPhotoConfig(),
        clock=clock,
    )


@pytest.fixture
def upload(photo_service):
    """按默认定位信息上传照片的便捷函数"""
    counter = {"n": 0}

    async def _upload(owner_id: str = "u1", **kwargs):
        counter["n"] += 1
        n = counter["n"]
        return await photo_service.upload(
            owner_id,
            f"https://cdn.example.com/photos/{n}.jpg",
            f"photos/{n}.jpg",
            f"https://cdn.example.com/thumbs/{n}.jpg",
            f"thumbs/{n}.jpg",
            **kwargs,
        )

    return _upload
