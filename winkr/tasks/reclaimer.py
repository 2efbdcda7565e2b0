"""
@description 后台照片回收任务
@responsibility 定期软删除超过保留期的过期/已查看照片，并按保留策略清理查看记录
"""

import asyncio
import signal
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from winkr.core.config import ReclamationConfig
from winkr.core.errors import WinkrError
from winkr.services.ephemeral_photo import EphemeralPhotoService
from winkr.utils.helpers import utcnow


@dataclass
class ReclamationResult:
    processed: int = 0
    deleted: int = 0
    views_pruned: int = 0
    errors: int = 0
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return asdict(self)


class PhotoReclaimer:
    """后台回收任务管理器"""

    def __init__(
        self,
        photos: EphemeralPhotoService,
        config: ReclamationConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._photos = photos
        self._config = config
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.last_result: Optional[ReclamationResult] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """启动回收任务"""
        if self.running:
            logger.warning("回收任务已在运行中")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._reclaim_loop())
        self._setup_signal_handlers()
        logger.info(f"后台回收任务已启动，间隔 {self._config.interval_seconds} 秒")

    async def stop(self) -> None:
        """停止回收任务"""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("等待回收任务停止超时，强制取消")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("后台回收任务已停止")

    async def run_once(self) -> ReclamationResult:
        """执行一次完整回收：过期批次、已查看批次、查看记录清理"""
        started = time.monotonic()
        now = self._clock()
        result = ReclamationResult()

        cohorts = (
            ("过期", now - timedelta(seconds=self._config.expired_retention_seconds), False),
            ("已查看", now - timedelta(seconds=self._config.viewed_retention_seconds), True),
        )
        for label, cutoff, viewed_only in cohorts:
            await self._reclaim_cohort(label, cutoff, viewed_only, result)

        if self._config.view_retention_seconds > 0:
            try:
                result.views_pruned = await self._photos.prune_views(
                    now - timedelta(seconds=self._config.view_retention_seconds)
                )
            except WinkrError as e:
                result.errors += 1
                logger.error(f"清理查看记录失败: {e}")

        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.timestamp = self._clock()
        self.last_result = result
        logger.info(
            f"照片回收完成: 扫描 {result.processed}, 删除 {result.deleted}, "
            f"清理查看记录 {result.views_pruned}, 错误 {result.errors}, "
            f"耗时 {result.duration_ms}ms"
        )
        return result

    async def _reclaim_cohort(
        self, label: str, cutoff: datetime, viewed_only: bool, result: ReclamationResult
    ) -> None:
        batch_size = self._config.batch_size
        for batch in range(self._config.max_batches):
            try:
                processed, deleted = await self._photos.reclaim_batch(
                    cutoff, batch_size=batch_size, viewed_only=viewed_only
                )
            except WinkrError as e:
                result.errors += 1
                logger.error(f"{label}照片回收第 {batch + 1} 批失败: {e}")
                return

            result.processed += processed
            result.deleted += deleted
            if processed < batch_size:
                return

    def _setup_signal_handlers(self) -> None:
        """设置信号处理器"""
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._handle_shutdown, sig, None)
        except (NotImplementedError, RuntimeError):
            for sig in (signal.SIGTERM, signal.SIGINT):
                signal.signal(sig, self._handle_shutdown)

    def _handle_shutdown(self, signum, frame) -> None:
        """信号处理：优雅关闭"""
        sig_name = signal.Signals(signum).name if signum else "UNKNOWN"
        logger.info(f"收到 {sig_name} 信号，正在停止回收任务...")
        self._stop_event.set()

    async def _reclaim_loop(self) -> None:
        """回收主循环"""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"回收循环出错: {e}")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._config.interval_seconds
                )
            except asyncio.TimeoutError:
                pass
