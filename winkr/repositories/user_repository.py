"""
@description 用户仓库
@responsibility 提供上传时所需的用户存在性校验
"""

from sqlalchemy import func, select

from winkr.core.database import get_session
from winkr.models.user import User
from winkr.repositories.ephemeral_photo_store import store_operation


class UserRepository:
    def __init__(self, session_factory=get_session):
        self._session = session_factory

    @store_operation("查询用户")
    async def exists_by_id(self, user_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(func.count(User.id)).where(User.id == user_id)
            )
            return (result.scalar() or 0) > 0

    @store_operation("创建用户")
    async def create(self, user_id: str, username: str = None) -> User:
        user = User(id=user_id, username=username)
        async with self._session() as session:
            session.add(user)
            await session.commit()
        return user
