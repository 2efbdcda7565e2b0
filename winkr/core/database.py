"""
@description 异步数据库连接管理
@responsibility 提供 SQLAlchemy 异步引擎、会话管理和数据库初始化
"""

from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

DATABASE_URL = "sqlite+aiosqlite:///./db/winkr.db"

Base = declarative_base()

engine: AsyncEngine = None
async_session_local: sessionmaker = None


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """按连接串创建异步引擎，SQLite 文件库会自动创建所在目录"""
    parsed = make_url(url)
    connect_args = {}
    if parsed.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(url, echo=echo, connect_args=connect_args)


def create_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


def configure_database(url: str = DATABASE_URL, echo: bool = False) -> AsyncEngine:
    """
    (重新)配置全局引擎和会话工厂
    """
    global engine, async_session_local

    engine = create_engine_for(url, echo=echo)
    async_session_local = create_session_factory(engine)
    return engine


async def init_db(bind: AsyncEngine = None):
    """
    初始化数据库，创建所有表
    """
    # 导入所有模型，确保在 Base.metadata 中注册
    from winkr.models.ephemeral_photo import EphemeralPhoto, EphemeralPhotoView
    from winkr.models.message import Message
    from winkr.models.user import User

    target = bind or engine
    if target is None:
        target = configure_database()

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db():
    if engine is not None:
        await engine.dispose()


@asynccontextmanager
async def get_session():
    """
    异步会话上下文管理器
    """
    if async_session_local is None:
        configure_database()

    async with async_session_local() as session:
        try:
            yield session
        finally:
            await session.close()


def session_scope(factory: sessionmaker):
    """
    基于指定会话工厂生成与 get_session 行为一致的上下文管理器（测试与多库场景使用）
    """

    @asynccontextmanager
    async def _scope():
        async with factory() as session:
            try:
                yield session
            finally:
                await session.close()

    return _scope
