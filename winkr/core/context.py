"""
@description 请求上下文（截止时间与取消信号）
@responsibility 为核心操作提供超时与取消检查，在发起下一次 I/O 前中止
"""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from winkr.core.errors import OperationCancelledError, OperationTimeoutError

T = TypeVar("T")


class RequestContext:
    """单次调用的截止时间与取消信号"""

    def __init__(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancel_event = cancel_event

    @classmethod
    def background(cls) -> "RequestContext":
        """没有截止时间、不可取消的上下文"""
        return cls()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def check(self) -> None:
        """检查取消与超时，任一触发即抛出对应错误"""
        if self.cancelled:
            raise OperationCancelledError()
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise OperationTimeoutError()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        在剩余时间内等待一次 I/O 调用

        调用前先检查取消与超时；超出剩余时间时转换为 OperationTimeoutError
        """
        try:
            self.check()
        except (OperationCancelledError, OperationTimeoutError):
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise
        remaining = self.remaining()
        if remaining is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError() from e


def ensure_context(ctx: Optional[RequestContext]) -> RequestContext:
    return ctx if ctx is not None else RequestContext.background()
