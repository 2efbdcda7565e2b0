"""
@description 阅后即焚照片服务
@responsibility 在持久化仓库之上执行照片生命周期状态机：上传、查看准入、过期、删除、统计与回收

状态流转:
    ACTIVE --首次查看--> VIEWED(仍可继续查看) --次数用尽/到期--> EXPIRED
    ACTIVE --到期/所有者手动过期--> EXPIRED
    ACTIVE --所有者删除--> SOFT_DELETED
EXPIRED 与 SOFT_DELETED 为终态
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from loguru import logger

from winkr.core.config import EphemeralPhotoConfig
from winkr.core.context import RequestContext, ensure_context
from winkr.core.errors import (
    ExpiredError,
    GoneError,
    KeygenFailedError,
    OwnerMismatchError,
    UserNotFoundError,
    ViewsExhaustedError,
    WinkrError,
)
from winkr.models.ephemeral_photo import EphemeralPhoto, EphemeralPhotoView
from winkr.repositories.ephemeral_photo_store import DuplicatePhotoError, EphemeralPhotoStore
from winkr.repositories.photo_view_log import PhotoViewLog
from winkr.repositories.user_repository import UserRepository
from winkr.schemas.api import PhotoStats, PhotoStatusResponse, ViewStats
from winkr.services.access_key import generate_access_key
from winkr.services.chat_cache import ChatCache
from winkr.services.notifier import PhotoEventNotifier
from winkr.utils.helpers import utcnow
from winkr.utils.locks import KeyedLock


class EphemeralPhotoService:
    """照片生命周期服务"""

    def __init__(
        self,
        store: EphemeralPhotoStore,
        view_log: PhotoViewLog,
        users: UserRepository,
        cache: Optional[ChatCache] = None,
        notifier: Optional[PhotoEventNotifier] = None,
        config: Optional[EphemeralPhotoConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        key_generator: Callable[[], str] = generate_access_key,
    ):
        self._store = store
        self._view_log = view_log
        self._users = users
        self._cache = cache
        self._notifier = notifier
        self._config = config or EphemeralPhotoConfig()
        self._clock = clock
        self._generate_key = key_generator
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # 上传与查询
    # ------------------------------------------------------------------

    async def upload(
        self,
        owner_id: str,
        file_url: str,
        file_key: str,
        thumbnail_url: str,
        thumbnail_key: str,
        max_views: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> EphemeralPhoto:
        """
        上传照片，生成访问密钥并写入记录

        Args:
            max_views: 最大查看次数，缺省或 <= 0 时使用配置默认值
            ttl_seconds: 有效期秒数，缺省或 <= 0 时使用配置默认值

        Raises:
            UserNotFoundError: 所有者不存在
            KeygenFailedError: 随机源不可用或访问密钥连续冲突
            StoreFailedError: 写入失败
        """
        ctx = ensure_context(ctx)
        if not await ctx.run(self._users.exists_by_id(owner_id)):
            raise UserNotFoundError(f"用户 '{owner_id}' 不存在")

        if not max_views or max_views <= 0:
            max_views = self._config.default_max_views
        if not ttl_seconds or ttl_seconds <= 0:
            ttl_seconds = self._config.default_ttl_seconds

        for attempt in range(1, self._config.access_key_retries + 1):
            ctx.check()
            now = self._clock()
            photo = EphemeralPhoto(
                id=str(uuid.uuid4()),
                user_id=owner_id,
                file_url=file_url,
                file_key=file_key,
                thumbnail_url=thumbnail_url,
                thumbnail_key=thumbnail_key,
                access_key=self._generate_key(),
                is_viewed=False,
                is_expired=False,
                view_count=0,
                max_views=max_views,
                expires_at=now + timedelta(seconds=ttl_seconds),
                created_at=now,
                updated_at=now,
            )
            try:
                await ctx.run(self._store.create(photo))
            except DuplicatePhotoError as e:
                if e.field != "access_key":
                    raise
                logger.warning(f"访问密钥冲突，重新生成（第 {attempt} 次）")
                continue

            logger.info(
                f"照片已上传: photo_id={photo.id}, owner={owner_id}, "
                f"max_views={max_views}, ttl={ttl_seconds}s"
            )
            return photo

        raise KeygenFailedError("访问密钥连续冲突，已达到最大重试次数")

    async def get(self, photo_id: str, ctx: Optional[RequestContext] = None) -> EphemeralPhoto:
        return await ensure_context(ctx).run(self._store.get_by_id(photo_id))

    async def get_by_access_key(
        self, access_key: str, ctx: Optional[RequestContext] = None
    ) -> EphemeralPhoto:
        return await ensure_context(ctx).run(self._store.get_by_access_key(access_key))

    # ------------------------------------------------------------------
    # 查看准入
    # ------------------------------------------------------------------

    async def view(
        self,
        access_key: str,
        viewer_id: Optional[str] = None,
        ip_address: str = "",
        user_agent: str = "",
        ctx: Optional[RequestContext] = None,
    ) -> EphemeralPhoto:
        """
        查看照片（同一照片的查看在进程内串行，数据库层再以条件更新兜底）

        Raises:
            NotFoundError: 访问密钥不存在
            GoneError: 照片已被删除
            ExpiredError: 照片已到期或已过期
            ViewsExhaustedError: 查看次数已用完
        """
        ctx = ensure_context(ctx)
        photo = await ctx.run(self._store.get_by_access_key(access_key))

        async with self._locks.acquire(photo.id):
            # 持锁后重新读取，拿到前一个查看者提交后的状态
            photo = await ctx.run(self._store.get_by_id(photo.id))
            now = self._clock()
            self._check_viewable(photo, now)

            if photo.is_expired_by_time(now):
                await self._expire_best_effort(photo, now)
                logger.warning(f"照片已到期，拒绝查看: photo_id={photo.id}")
                raise ExpiredError()

            if photo.view_count >= photo.max_views:
                await self._expire_best_effort(photo, now)
                logger.warning(f"照片查看次数已用完，拒绝查看: photo_id={photo.id}")
                raise ViewsExhaustedError()

            ctx.check()
            await self._append_view(photo, viewer_id, ip_address, user_agent, now)

            if not photo.is_viewed:
                await ctx.run(self._store.mark_viewed(photo.id))

            view_count = await ctx.run(self._store.increment_view_count(photo.id))
            if view_count is None:
                # 其他进程抢先让照片进入终态
                latest = await self._store.get_by_id(photo.id)
                self._check_viewable(latest, now)
                raise ExpiredError() if latest.is_expired_by_time(now) else ViewsExhaustedError()

        # 计数已提交，后续步骤不再响应取消
        expired_now = view_count >= photo.max_views
        logger.info(
            f"照片被查看: photo_id={photo.id}, viewer={viewer_id or 'anonymous'}, "
            f"view_count={view_count}/{photo.max_views}"
        )
        await self._invalidate(photo)
        if self._notifier is not None:
            await self._notifier.photo_viewed(photo.id, photo.user_id, viewer_id=viewer_id, at=now)
            if expired_now:
                await self._notifier.photo_expired(photo.id, photo.user_id, at=now)

        try:
            return await self._store.get_by_id(photo.id)
        except WinkrError as e:
            logger.warning(f"刷新照片记录失败，返回查看前快照: {e}")
            photo.view_count = view_count
            photo.is_viewed = True
            photo.viewed_at = photo.viewed_at or now
            if expired_now:
                photo.is_expired = True
                photo.expired_at = now
            return photo

    @staticmethod
    def _check_viewable(photo: EphemeralPhoto, now: datetime) -> None:
        if photo.is_deleted:
            raise GoneError()
        if photo.is_expired:
            if photo.view_count >= photo.max_views:
                raise ViewsExhaustedError()
            raise ExpiredError()

    async def _expire_best_effort(self, photo: EphemeralPhoto, now: datetime) -> None:
        try:
            changed = await self._store.mark_expired(photo.id)
        except WinkrError as e:
            logger.warning(f"标记照片过期失败 photo_id={photo.id}: {e}")
            return
        if changed:
            await self._invalidate(photo)
            if self._notifier is not None:
                await self._notifier.photo_expired(photo.id, photo.user_id, at=now)

    async def _append_view(
        self,
        photo: EphemeralPhoto,
        viewer_id: Optional[str],
        ip_address: str,
        user_agent: str,
        now: datetime,
    ) -> None:
        view = EphemeralPhotoView(
            id=str(uuid.uuid4()),
            photo_id=photo.id,
            user_id=photo.user_id,
            viewer_id=viewer_id,
            ip_address=ip_address or "",
            user_agent=user_agent,
            duration=0,
            viewed_at=now,
        )
        try:
            await self._view_log.create(view)
        except WinkrError as e:
            logger.warning(f"写入查看记录失败（不影响查看）photo_id={photo.id}: {e}")

    async def _invalidate(self, photo: EphemeralPhoto) -> None:
        if self._cache is not None:
            await self._cache.invalidate_photo(photo.id, photo.access_key)

    # ------------------------------------------------------------------
    # 所有者操作
    # ------------------------------------------------------------------

    async def ensure_owner(
        self, owner_id: str, photo_id: str, ctx: Optional[RequestContext] = None
    ) -> EphemeralPhoto:
        """校验所有权并返回照片"""
        ctx = ensure_context(ctx)
        photo = await ctx.run(self._store.get_by_id(photo_id))
        if photo.user_id != owner_id:
            logger.warning(f"非所有者操作被拒绝: photo_id={photo_id}, user_id={owner_id}")
            raise OwnerMismatchError()
        return photo

    async def delete(self, owner_id: str, photo_id: str, ctx: Optional[RequestContext] = None) -> None:
        """软删除照片，重复删除不报错"""
        ctx = ensure_context(ctx)
        photo = await self.ensure_owner(owner_id, photo_id, ctx)
        async with self._locks.acquire(photo_id):
            deleted = await ctx.run(self._store.soft_delete(photo_id))
        if not deleted:
            return

        logger.info(f"照片已删除: photo_id={photo_id}, owner={owner_id}")
        await self._invalidate(photo)
        if self._notifier is not None:
            await self._notifier.photo_deleted(photo_id, owner_id, at=self._clock())

    async def expire(self, owner_id: str, photo_id: str, ctx: Optional[RequestContext] = None) -> None:
        """所有者手动让照片过期，重复调用不报错"""
        ctx = ensure_context(ctx)
        photo = await self.ensure_owner(owner_id, photo_id, ctx)
        async with self._locks.acquire(photo_id):
            changed = await ctx.run(self._store.mark_expired(photo_id))
        if not changed:
            return

        logger.info(f"照片已被所有者设为过期: photo_id={photo_id}")
        await self._invalidate(photo)
        if self._notifier is not None:
            await self._notifier.photo_expired(photo_id, owner_id, at=self._clock())

    # ------------------------------------------------------------------
    # 查看记录与统计
    # ------------------------------------------------------------------

    async def track_view(
        self,
        photo_id: str,
        owner_id: str,
        viewer_id: Optional[str] = None,
        ip_address: str = "",
        user_agent: str = "",
        duration: int = 0,
        ctx: Optional[RequestContext] = None,
    ) -> EphemeralPhotoView:
        """追加一条查看记录（通常在客户端上报最终查看时长时调用）"""
        view = EphemeralPhotoView(
            id=str(uuid.uuid4()),
            photo_id=photo_id,
            user_id=owner_id,
            viewer_id=viewer_id,
            ip_address=ip_address or "",
            user_agent=user_agent,
            duration=max(duration, 0),
            viewed_at=self._clock(),
        )
        return await ensure_context(ctx).run(self._view_log.create(view))

    async def get_photo_view_stats(
        self, photo_id: str, ctx: Optional[RequestContext] = None
    ) -> ViewStats:
        """
        查看统计

        总查看数取自照片记录；去重查看者、平均时长与分时段计数只基于最近
        view_stats_window 条查看记录
        """
        ctx = ensure_context(ctx)
        window = self._config.view_stats_window
        total_views = await ctx.run(self._store.get_view_count(photo_id))
        views = await ctx.run(self._view_log.recent_by_photo(photo_id, limit=window))

        now = self._clock()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = now - timedelta(days=7)
        month_start = now - timedelta(days=30)

        viewers = {v.viewer_id for v in views if v.viewer_id}
        average = sum(v.duration for v in views) / len(views) if views else 0.0

        return ViewStats(
            photo_id=photo_id,
            total_views=total_views,
            unique_viewers=len(viewers),
            average_view_time=average,
            views_today=sum(1 for v in views if v.viewed_at >= today),
            views_this_week=sum(1 for v in views if v.viewed_at >= week_start),
            views_this_month=sum(1 for v in views if v.viewed_at >= month_start),
            window=window,
        )

    async def get_photo_status(
        self, photo_id: str, ctx: Optional[RequestContext] = None
    ) -> PhotoStatusResponse:
        photo = await self._load(photo_id, ensure_context(ctx))
        now = self._clock()
        return PhotoStatusResponse(
            photo_id=photo.id,
            status=photo.view_status(now),
            remaining_seconds=photo.remaining_seconds(now),
            view_count=photo.view_count,
            max_views=photo.max_views,
        )

    async def _load(self, photo_id: str, ctx: RequestContext) -> EphemeralPhoto:
        """
        读穿透照片缓存

        回填与查看/删除/过期共用同一把照片锁：状态变更提交前读到的记录
        不会在该变更的缓存失效之后才写入缓存
        """
        if self._cache is not None:
            cached = await self._cache.get_cached_photo(photo_id)
            if cached is not None:
                return EphemeralPhoto(**cached)

        async with self._locks.acquire(photo_id):
            photo = await ctx.run(self._store.get_by_id(photo_id))
            if self._cache is not None:
                await self._cache.cache_photo(photo.to_dict())
        return photo

    # ------------------------------------------------------------------
    # 列表
    # ------------------------------------------------------------------

    async def list_user_photos(self, user_id: str, ctx: Optional[RequestContext] = None) -> list[EphemeralPhoto]:
        return await ensure_context(ctx).run(self._store.list_user_photos(user_id, include_expired=True))

    async def list_user_active_photos(
        self, user_id: str, ctx: Optional[RequestContext] = None
    ) -> list[EphemeralPhoto]:
        return await ensure_context(ctx).run(self._store.list_user_active(user_id))

    async def list_active(self, limit: int = 50, offset: int = 0, ctx: Optional[RequestContext] = None):
        return await ensure_context(ctx).run(self._store.list_active(limit, offset))

    async def list_expired(self, limit: int = 50, offset: int = 0, ctx: Optional[RequestContext] = None):
        return await ensure_context(ctx).run(self._store.list_expired(limit, offset))

    async def list_expiring_soon(
        self,
        within: Union[timedelta, int] = timedelta(minutes=5),
        limit: int = 50,
        ctx: Optional[RequestContext] = None,
    ) -> list[EphemeralPhoto]:
        if not isinstance(within, timedelta):
            within = timedelta(seconds=within)
        return await ensure_context(ctx).run(self._store.list_expiring_soon(within, limit))

    async def get_stats(self, ctx: Optional[RequestContext] = None) -> PhotoStats:
        return await ensure_context(ctx).run(self._store.stats())

    async def get_user_stats(self, user_id: str, ctx: Optional[RequestContext] = None) -> PhotoStats:
        return await ensure_context(ctx).run(self._store.user_stats(user_id))

    # ------------------------------------------------------------------
    # 回收
    # ------------------------------------------------------------------

    async def reclaim_batch(
        self, older_than: datetime, batch_size: int = 100, viewed_only: bool = False
    ) -> tuple[int, int]:
        """
        回收一批照片

        Returns:
            (候选数, 实际软删除数)
        """
        candidates = await self._store.get_photos_for_cleanup(
            older_than, batch_size=batch_size, viewed_only=viewed_only
        )
        if not candidates:
            return 0, 0

        deleted = await self._store.batch_soft_delete([p.id for p in candidates])
        for photo in candidates:
            await self._invalidate(photo)
        return len(candidates), deleted

    async def cleanup_expired_photos(self, older_than: datetime, batch_size: int = 100) -> int:
        _, deleted = await self.reclaim_batch(older_than, batch_size)
        return deleted

    async def cleanup_viewed_photos(self, older_than: datetime, batch_size: int = 100) -> int:
        _, deleted = await self.reclaim_batch(older_than, batch_size, viewed_only=True)
        return deleted

    async def prune_views(self, older_than: datetime) -> int:
        return await self._view_log.delete_older_than(older_than)
