"""
@description 阅后即焚照片持久化仓库
@responsibility 照片记录的创建、查询、单调状态变更、清理候选查询与统计

所有变更语句都以条件更新实现，同一照片 ID 上的变更在数据库层面串行化:
- 查看计数只在 未过期、未删除、未到期且 view_count < max_views 时 +1
- 计数达到上限时在同一事务内置 is_expired，任何读者都不会看到
  view_count > max_views 而 is_expired 为假
"""

import functools
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from loguru import logger
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from winkr.core.database import get_session
from winkr.core.errors import NotFoundError, StoreFailedError
from winkr.models.ephemeral_photo import EphemeralPhoto, EphemeralPhotoView
from winkr.schemas.api import PhotoStats
from winkr.utils.helpers import utcnow


class DuplicatePhotoError(StoreFailedError):
    """唯一索引冲突（照片 ID / 访问密钥 / 文件 key）"""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"照片记录唯一字段冲突: {field}")


def store_operation(action: str):
    """将 SQLAlchemy 异常统一包装为 StoreFailedError"""

    def decorator(func_):
        @functools.wraps(func_)
        async def wrapper(*args, **kwargs):
            try:
                return await func_(*args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"{action}失败: {e}")
                raise StoreFailedError(f"{action}失败") from e

        return wrapper

    return decorator


class EphemeralPhotoStore:
    """照片记录仓库"""

    def __init__(
        self,
        session_factory=get_session,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # 创建与查询
    # ------------------------------------------------------------------

    async def create(self, photo: EphemeralPhoto) -> EphemeralPhoto:
        now = self._clock()
        if photo.created_at is None:
            photo.created_at = now
        photo.updated_at = photo.created_at

        try:
            async with self._session() as session:
                session.add(photo)
                await session.commit()
        except IntegrityError as e:
            field = await self._conflicting_field(photo)
            logger.warning(f"创建照片记录冲突: field={field}")
            raise DuplicatePhotoError(field) from e
        except SQLAlchemyError as e:
            logger.error(f"创建照片记录失败: {e}")
            raise StoreFailedError("创建照片记录失败") from e

        logger.info(
            f"照片记录已创建: photo_id={photo.id}, user_id={photo.user_id}, "
            f"max_views={photo.max_views}, expires_at={photo.expires_at}"
        )
        return photo

    async def _conflicting_field(self, photo: EphemeralPhoto) -> str:
        async with self._session() as session:
            if await session.get(EphemeralPhoto, photo.id) is not None:
                return "id"
            result = await session.execute(
                select(EphemeralPhoto.id).where(
                    EphemeralPhoto.access_key == photo.access_key
                )
            )
            if result.scalar_one_or_none() is not None:
                return "access_key"
        return "file_key"

    @store_operation("查询照片记录")
    async def get_by_id(self, photo_id: str) -> EphemeralPhoto:
        async with self._session() as session:
            photo = await session.get(EphemeralPhoto, photo_id)
        if photo is None:
            raise NotFoundError(f"照片 '{photo_id}' 不存在")
        return photo

    @store_operation("按访问密钥查询照片记录")
    async def get_by_access_key(self, access_key: str) -> EphemeralPhoto:
        async with self._session() as session:
            result = await session.execute(
                select(EphemeralPhoto).where(EphemeralPhoto.access_key == access_key)
            )
            photo = result.scalar_one_or_none()
        if photo is None:
            raise NotFoundError("访问密钥对应的照片不存在")
        return photo

    @store_operation("校验照片归属")
    async def user_has_photo(self, user_id: str, photo_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(func.count(EphemeralPhoto.id)).where(
                    EphemeralPhoto.id == photo_id, EphemeralPhoto.user_id == user_id
                )
            )
            return (result.scalar() or 0) > 0

    @store_operation("查询查看次数")
    async def get_view_count(self, photo_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(EphemeralPhoto.view_count).where(EphemeralPhoto.id == photo_id)
            )
            view_count = result.scalar_one_or_none()
        if view_count is None:
            raise NotFoundError(f"照片 '{photo_id}' 不存在")
        return view_count

    # ------------------------------------------------------------------
    # 状态变更（单调、幂等）
    # ------------------------------------------------------------------

    @store_operation("增加查看次数")
    async def increment_view_count(self, photo_id: str) -> Optional[int]:
        """
        条件 +1 查看次数

        Returns:
            新的查看次数；照片已不可查看（过期、删除、到期或次数用尽）时返回 None
        """
        now = self._clock()
        async with self._session() as session:
            result = await session.execute(
                update(EphemeralPhoto)
                .where(
                    EphemeralPhoto.id == photo_id,
                    EphemeralPhoto.is_expired.is_(False),
                    EphemeralPhoto.deleted_at.is_(None),
                    EphemeralPhoto.expires_at > now,
                    EphemeralPhoto.view_count < EphemeralPhoto.max_views,
                )
                .values(view_count=EphemeralPhoto.view_count + 1, updated_at=now)
                .returning(EphemeralPhoto.view_count, EphemeralPhoto.max_views)
                .execution_options(synchronize_session=False)
            )
            row = result.first()
            if row is None:
                await session.rollback()
                return None

            view_count, max_views = row
            if view_count >= max_views:
                # 与计数同一事务内置过期，不存在“已达上限但未过期”的可见窗口
                await session.execute(
                    update(EphemeralPhoto)
                    .where(
                        EphemeralPhoto.id == photo_id,
                        EphemeralPhoto.is_expired.is_(False),
                    )
                    .values(is_expired=True, expired_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()

        logger.debug(f"查看次数已增加: photo_id={photo_id}, view_count={view_count}")
        return view_count

    @store_operation("标记照片已查看")
    async def mark_viewed(self, photo_id: str) -> bool:
        now = self._clock()
        async with self._session() as session:
            result = await session.execute(
                update(EphemeralPhoto)
                .where(
                    EphemeralPhoto.id == photo_id,
                    EphemeralPhoto.is_viewed.is_(False),
                    EphemeralPhoto.deleted_at.is_(None),
                )
                .values(is_viewed=True, viewed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    @store_operation("标记照片已过期")
    async def mark_expired(self, photo_id: str) -> bool:
        """置过期标记；已过期或已删除时为空操作，返回是否发生变更"""
        now = self._clock()
        async with self._session() as session:
            result = await session.execute(
                update(EphemeralPhoto)
                .where(
                    EphemeralPhoto.id == photo_id,
                    EphemeralPhoto.is_expired.is_(False),
                    EphemeralPhoto.deleted_at.is_(None),
                )
                .values(is_expired=True, expired_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            changed = result.rowcount > 0

        if changed:
            logger.info(f"照片已标记为过期: photo_id={photo_id}")
        return changed

    async def soft_delete(self, photo_id: str) -> bool:
        return await self.batch_soft_delete([photo_id]) > 0

    @store_operation("批量软删除照片")
    async def batch_soft_delete(self, photo_ids: Sequence[str]) -> int:
        """批量软删除；已软删除的记录不会被重复更新，返回实际删除数量"""
        if not photo_ids:
            return 0
        now = self._clock()
        async with self._session() as session:
            result = await session.execute(
                update(EphemeralPhoto)
                .where(
                    EphemeralPhoto.id.in_(list(photo_ids)),
                    EphemeralPhoto.deleted_at.is_(None),
                )
                .values(deleted_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            deleted = result.rowcount or 0

        logger.info(f"照片批量软删除完成: 请求 {len(photo_ids)}, 实际 {deleted}")
        return deleted

    # ------------------------------------------------------------------
    # 列表查询
    # ------------------------------------------------------------------

    def _active_clause(self, now: datetime):
        return and_(
            EphemeralPhoto.deleted_at.is_(None),
            EphemeralPhoto.is_expired.is_(False),
            EphemeralPhoto.expires_at > now,
            EphemeralPhoto.view_count < EphemeralPhoto.max_views,
        )

    def _expired_clause(self, now: datetime):
        return or_(EphemeralPhoto.is_expired.is_(True), EphemeralPhoto.expires_at <= now)

    async def _fetch(self, stmt) -> list[EphemeralPhoto]:
        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @store_operation("查询用户照片")
    async def list_user_photos(
        self, user_id: str, include_expired: bool = True
    ) -> list[EphemeralPhoto]:
        stmt = select(EphemeralPhoto).where(
            EphemeralPhoto.user_id == user_id, EphemeralPhoto.deleted_at.is_(None)
        )
        if not include_expired:
            stmt = stmt.where(self._active_clause(self._clock()))
        return await self._fetch(stmt.order_by(EphemeralPhoto.created_at.desc()))

    async def list_user_active(self, user_id: str) -> list[EphemeralPhoto]:
        return await self.list_user_photos(user_id, include_expired=False)

    @store_operation("查询有效照片")
    async def list_active(self, limit: int = 50, offset: int = 0) -> list[EphemeralPhoto]:
        stmt = (
            select(EphemeralPhoto)
            .where(self._active_clause(self._clock()))
            .order_by(EphemeralPhoto.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return await self._fetch(stmt)

    @store_operation("查询已过期照片")
    async def list_expired(self, limit: int = 50, offset: int = 0) -> list[EphemeralPhoto]:
        stmt = (
            select(EphemeralPhoto)
            .where(
                EphemeralPhoto.deleted_at.is_(None),
                self._expired_clause(self._clock()),
            )
            .order_by(EphemeralPhoto.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return await self._fetch(stmt)

    @store_operation("查询即将过期照片")
    async def list_expiring_soon(
        self, within: timedelta, limit: int = 50
    ) -> list[EphemeralPhoto]:
        now = self._clock()
        stmt = (
            select(EphemeralPhoto)
            .where(self._active_clause(now), EphemeralPhoto.expires_at <= now + within)
            .order_by(EphemeralPhoto.expires_at.asc())
            .limit(limit)
        )
        return await self._fetch(stmt)

    @store_operation("查询待清理照片")
    async def get_photos_for_cleanup(
        self, older_than: datetime, batch_size: int = 100, viewed_only: bool = False
    ) -> list[EphemeralPhoto]:
        """
        回收候选：未软删除、处于终态（已过期/已查看/已到期）且最后更新早于 older_than

        viewed_only 为真时只返回已被查看过的照片
        """
        now = self._clock()
        if viewed_only:
            terminal = EphemeralPhoto.is_viewed.is_(True)
        else:
            terminal = or_(
                EphemeralPhoto.is_expired.is_(True),
                EphemeralPhoto.is_viewed.is_(True),
                EphemeralPhoto.expires_at < now,
            )
        stmt = (
            select(EphemeralPhoto)
            .where(
                EphemeralPhoto.deleted_at.is_(None),
                terminal,
                EphemeralPhoto.updated_at < older_than,
            )
            .order_by(EphemeralPhoto.updated_at.asc())
            .limit(batch_size)
        )
        return await self._fetch(stmt)

    # ------------------------------------------------------------------
    # 统计
    # ------------------------------------------------------------------

    async def stats(self) -> PhotoStats:
        return await self._aggregate()

    async def user_stats(self, user_id: str) -> PhotoStats:
        return await self._aggregate(user_id)

    @store_operation("统计照片数据")
    async def _aggregate(self, user_id: Optional[str] = None) -> PhotoStats:
        now = self._clock()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = now - timedelta(days=7)
        month_start = now - timedelta(days=30)
        not_deleted = EphemeralPhoto.deleted_at.is_(None)

        def count_if(*conditions):
            return func.coalesce(func.sum(case((and_(*conditions), 1), else_=0)), 0)

        stmt = select(
            func.count(EphemeralPhoto.id),
            count_if(self._active_clause(now)),
            count_if(EphemeralPhoto.is_viewed.is_(True)),
            count_if(self._expired_clause(now)),
            count_if(EphemeralPhoto.deleted_at.is_not(None)),
            count_if(EphemeralPhoto.created_at >= today, not_deleted),
            count_if(EphemeralPhoto.created_at >= week_start, not_deleted),
            count_if(EphemeralPhoto.created_at >= month_start, not_deleted),
            func.coalesce(func.sum(EphemeralPhoto.view_count), 0),
        )
        duration_stmt = select(func.avg(EphemeralPhotoView.duration))
        if user_id is not None:
            stmt = stmt.where(EphemeralPhoto.user_id == user_id)
            duration_stmt = duration_stmt.where(EphemeralPhotoView.user_id == user_id)

        async with self._session() as session:
            row = (await session.execute(stmt)).one()
            average_duration = (await session.execute(duration_stmt)).scalar()

        return PhotoStats(
            total_photos=row[0] or 0,
            active_photos=row[1],
            viewed_photos=row[2],
            expired_photos=row[3],
            deleted_photos=row[4],
            photos_today=row[5],
            photos_this_week=row[6],
            photos_this_month=row[7],
            total_views=row[8],
            average_view_time=int(average_duration or 0),
        )
