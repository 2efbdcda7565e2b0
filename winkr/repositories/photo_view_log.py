"""
@description 照片查看记录仓库
@responsibility 追加写入查看事件，按照片统计与读取最近窗口，按保留期清理
"""

from datetime import datetime
from typing import Callable

from loguru import logger
from sqlalchemy import delete, func, select

from winkr.core.database import get_session
from winkr.models.ephemeral_photo import EphemeralPhotoView
from winkr.repositories.ephemeral_photo_store import store_operation
from winkr.utils.helpers import utcnow


class PhotoViewLog:
    """查看记录仓库（只追加，不修改）"""

    def __init__(self, session_factory=get_session, clock: Callable[[], datetime] = utcnow):
        self._session = session_factory
        self._clock = clock

    @store_operation("写入查看记录")
    async def create(self, view: EphemeralPhotoView) -> EphemeralPhotoView:
        if view.viewed_at is None:
            view.viewed_at = self._clock()
        if view.duration is None:
            view.duration = 0
        async with self._session() as session:
            session.add(view)
            await session.commit()
        return view

    @store_operation("统计查看记录")
    async def count_by_photo(self, photo_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count(EphemeralPhotoView.id)).where(
                    EphemeralPhotoView.photo_id == photo_id
                )
            )
            return result.scalar() or 0

    @store_operation("查询最近查看记录")
    async def recent_by_photo(self, photo_id: str, limit: int = 100) -> list[EphemeralPhotoView]:
        async with self._session() as session:
            result = await session.execute(
                select(EphemeralPhotoView)
                .where(EphemeralPhotoView.photo_id == photo_id)
                .order_by(EphemeralPhotoView.viewed_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    @store_operation("清理查看记录")
    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(EphemeralPhotoView).where(EphemeralPhotoView.viewed_at < cutoff)
            )
            await session.commit()
            deleted = result.rowcount or 0

        if deleted:
            logger.info(f"已清理过期查看记录: {deleted} 条 (早于 {cutoff})")
        return deleted
