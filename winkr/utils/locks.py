"""
@description 按 key 划分的异步互斥锁
@responsibility 为同一照片 ID 的状态变更提供进程内临界区，不再使用的锁自动回收
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLock:
    """每个 key 一把 asyncio.Lock，引用计数归零时释放"""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
