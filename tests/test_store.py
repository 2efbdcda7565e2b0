"""
@description 照片持久化仓库测试
@responsibility 验证条件计数、单调状态变更、唯一约束、列表与回收候选查询
"""

from datetime import timedelta

import pytest

from winkr.core.errors import NotFoundError
from winkr.models.ephemeral_photo import EphemeralPhoto, EphemeralPhotoView
from winkr.repositories.ephemeral_photo_store import DuplicatePhotoError


def make_photo(clock, n: int = 1, max_views: int = 1, ttl: int = 60, **kwargs) -> EphemeralPhoto:
    now = clock()
    values = dict(
        id=f"photo-{n}",
        user_id="u1",
        file_url=f"https://cdn.example.com/{n}.jpg",
        file_key=f"photos/{n}.jpg",
        thumbnail_url=f"https://cdn.example.com/t/{n}.jpg",
        thumbnail_key=f"thumbs/{n}.jpg",
        access_key=f"{n:032x}",
        is_viewed=False,
        is_expired=False,
        view_count=0,
        max_views=max_views,
        expires_at=now + timedelta(seconds=ttl),
        created_at=now,
    )
    values.update(kwargs)
    return EphemeralPhoto(**values)


class TestCreateAndLookup:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store, clock):
        await store.create(make_photo(clock))

        by_id = await store.get_by_id("photo-1")
        by_key = await store.get_by_access_key(f"{1:032x}")

        assert by_id.id == by_key.id == "photo-1"
        assert await store.user_has_photo("u1", "photo-1")
        assert not await store.user_has_photo("u2", "photo-1")

    @pytest.mark.asyncio
    async def test_missing_records(self, store):
        with pytest.raises(NotFoundError):
            await store.get_by_id("nope")
        with pytest.raises(NotFoundError):
            await store.get_by_access_key("nope")
        with pytest.raises(NotFoundError):
            await store.get_view_count("nope")

    @pytest.mark.asyncio
    async def test_duplicate_access_key_rejected(self, store, clock):
        await store.create(make_photo(clock, 1))

        with pytest.raises(DuplicatePhotoError) as exc_info:
            await store.create(make_photo(clock, 2, access_key=f"{1:032x}"))

        assert exc_info.value.field == "access_key"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store, clock):
        await store.create(make_photo(clock, 1))

        with pytest.raises(DuplicatePhotoError) as exc_info:
            await store.create(make_photo(clock, 2, id="photo-1"))

        assert exc_info.value.field == "id"


class TestViewCount:
    @pytest.mark.asyncio
    async def test_increment_flips_expired_at_cap(self, store, clock):
        await store.create(make_photo(clock, max_views=2))

        assert await store.increment_view_count("photo-1") == 1
        assert not (await store.get_by_id("photo-1")).is_expired

        assert await store.increment_view_count("photo-1") == 2
        photo = await store.get_by_id("photo-1")
        assert photo.is_expired
        assert photo.expired_at == clock.now

        assert await store.increment_view_count("photo-1") is None
        assert await store.get_view_count("photo-1") == 2

    @pytest.mark.asyncio
    async def test_increment_rejected_after_deadline(self, store, clock):
        await store.create(make_photo(clock, max_views=5, ttl=1))
        clock.advance(1)

        assert await store.increment_view_count("photo-1") is None
        assert await store.get_view_count("photo-1") == 0

    @pytest.mark.asyncio
    async def test_increment_rejected_after_soft_delete(self, store, clock):
        await store.create(make_photo(clock, max_views=5))
        await store.soft_delete("photo-1")

        assert await store.increment_view_count("photo-1") is None


class TestMonotoneFlags:
    @pytest.mark.asyncio
    async def test_mark_viewed_and_expired_are_idempotent(self, store, clock):
        await store.create(make_photo(clock))

        assert await store.mark_viewed("photo-1")
        assert not await store.mark_viewed("photo-1")
        assert await store.mark_expired("photo-1")
        assert not await store.mark_expired("photo-1")

        photo = await store.get_by_id("photo-1")
        assert photo.is_viewed and photo.is_expired
        assert photo.viewed_at == clock.now

    @pytest.mark.asyncio
    async def test_batch_soft_delete_skips_deleted(self, store, clock):
        for n in (1, 2, 3):
            await store.create(make_photo(clock, n))

        assert await store.batch_soft_delete(["photo-1", "photo-2"]) == 2
        assert await store.batch_soft_delete(["photo-1", "photo-2", "photo-3"]) == 1
        assert await store.batch_soft_delete([]) == 0


class TestListings:
    @pytest.mark.asyncio
    async def test_active_expired_and_expiring_soon(self, store, clock):
        await store.create(make_photo(clock, 1, ttl=30))
        await store.create(make_photo(clock, 2, ttl=3600))
        await store.create(make_photo(clock, 3, ttl=3600))
        await store.mark_expired("photo-3")

        active = await store.list_active()
        assert {p.id for p in active} == {"photo-1", "photo-2"}

        expired = await store.list_expired()
        assert [p.id for p in expired] == ["photo-3"]

        soon = await store.list_expiring_soon(timedelta(minutes=1))
        assert [p.id for p in soon] == ["photo-1"]

        clock.advance(31)
        expired = await store.list_expired()
        assert {p.id for p in expired} == {"photo-1", "photo-3"}

    @pytest.mark.asyncio
    async def test_user_photos_exclude_deleted(self, store, clock):
        await store.create(make_photo(clock, 1))
        await store.create(make_photo(clock, 2))
        await store.soft_delete("photo-2")

        photos = await store.list_user_photos("u1")

        assert [p.id for p in photos] == ["photo-1"]


class TestCleanupCandidates:
    @pytest.mark.asyncio
    async def test_candidates_respect_cutoff_and_state(self, store, clock):
        await store.create(make_photo(clock, 1))
        await store.create(make_photo(clock, 2))
        await store.create(make_photo(clock, 3, ttl=3600 * 24))
        await store.mark_expired("photo-1")
        await store.mark_viewed("photo-2")

        clock.advance(7200)
        cutoff = clock.now - timedelta(hours=1)

        candidates = await store.get_photos_for_cleanup(cutoff, batch_size=10)
        assert {p.id for p in candidates} == {"photo-1", "photo-2"}

        viewed = await store.get_photos_for_cleanup(cutoff, batch_size=10, viewed_only=True)
        assert [p.id for p in viewed] == ["photo-2"]

        recent_cutoff = clock.now - timedelta(hours=3)
        assert await store.get_photos_for_cleanup(recent_cutoff) == []


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_include_average_view_time(self, store, view_log, clock):
        await store.create(make_photo(clock, 1, max_views=3))
        await store.increment_view_count("photo-1")
        for duration in (10, 20):
            await view_log.create(
                EphemeralPhotoView(
                    photo_id="photo-1", user_id="u1", ip_address="127.0.0.1", duration=duration
                )
            )

        stats = await store.user_stats("u1")

        assert stats.total_photos == 1
        assert stats.active_photos == 1
        assert stats.photos_today == 1
        assert stats.total_views == 1
        assert stats.average_view_time == 15
