"""
@description 后台回收任务测试
@responsibility 验证回收批次、保留期、幂等性、查看记录清理以及启动/停止
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from winkr.core.config import ReclamationConfig
from winkr.core.errors import StoreFailedError
from winkr.tasks.reclaimer import PhotoReclaimer


@pytest.fixture
def reclamation_config():
    return ReclamationConfig(
        interval_seconds=0.05,
        expired_retention_seconds=3600,
        viewed_retention_seconds=1800,
        view_retention_seconds=7 * 24 * 3600,
        batch_size=2,
        max_batches=10,
    )


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_reclaims_expired_and_viewed(self, upload, photo_service, store, clock, reclamation_config):
        expired = await upload(max_views=1, ttl_seconds=30)
        viewed = await upload(max_views=5, ttl_seconds=3 * 3600)
        fresh = await upload(max_views=1, ttl_seconds=6 * 3600)
        await photo_service.view(viewed.access_key)
        reclaimer = PhotoReclaimer(photo_service, reclamation_config, clock=clock)

        clock.advance(2400)
        result = await reclaimer.run_once()
        assert result.deleted == 1
        assert (await store.get_by_id(viewed.id)).deleted_at is not None
        assert (await store.get_by_id(expired.id)).deleted_at is None

        clock.advance(3600)
        result = await reclaimer.run_once()
        assert result.deleted == 1
        assert (await store.get_by_id(expired.id)).deleted_at is not None
        assert (await store.get_by_id(fresh.id)).deleted_at is None
        assert reclaimer.last_result is result

    @pytest.mark.asyncio
    async def test_batches_until_drained(self, upload, photo_service, store, clock, reclamation_config):
        for _ in range(5):
            await upload(ttl_seconds=1)
        reclaimer = PhotoReclaimer(photo_service, reclamation_config, clock=clock)

        clock.advance(7200)
        result = await reclaimer.run_once()

        assert result.processed == 5
        assert result.deleted == 5
        assert result.errors == 0

        again = await reclaimer.run_once()
        assert again.processed == 0
        assert again.deleted == 0

    @pytest.mark.asyncio
    async def test_prunes_old_view_records(self, upload, photo_service, clock, reclamation_config):
        photo = await upload(max_views=3, ttl_seconds=30 * 24 * 3600)
        await photo_service.view(photo.access_key)
        reclaimer = PhotoReclaimer(photo_service, reclamation_config, clock=clock)

        clock.advance(8 * 24 * 3600)
        result = await reclaimer.run_once()

        assert result.views_pruned == 1
        stats = await photo_service.get_photo_view_stats(photo.id)
        assert stats.total_views == 1
        assert stats.unique_viewers == 0

    @pytest.mark.asyncio
    async def test_store_errors_are_counted(self, reclamation_config, clock):
        photos = MagicMock()
        photos.reclaim_batch = AsyncMock(side_effect=StoreFailedError())
        photos.prune_views = AsyncMock(return_value=0)
        reclaimer = PhotoReclaimer(photos, reclamation_config, clock=clock)

        result = await reclaimer.run_once()

        assert result.errors == 2
        assert result.deleted == 0


class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_stop(self, reclamation_config):
        photos = MagicMock()
        photos.reclaim_batch = AsyncMock(return_value=(0, 0))
        photos.prune_views = AsyncMock(return_value=0)
        reclaimer = PhotoReclaimer(photos, reclamation_config)

        await reclaimer.start()
        assert reclaimer.running

        await asyncio.sleep(0.2)
        await reclaimer.stop()

        assert not reclaimer.running
        assert reclaimer._stop_event.is_set()
        assert photos.reclaim_batch.await_count >= 2
        assert reclaimer.last_result is not None

    @pytest.mark.asyncio
    async def test_stop_without_start(self, reclamation_config):
        reclaimer = PhotoReclaimer(MagicMock(), reclamation_config)

        await reclaimer.stop()

        assert not reclaimer.running
