"""
roomhub.core.locks
~~~~~~~~~~~~~~~~~~

按 key 分片的 asyncio 锁，用于"每个房间一把锁"的串行化。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import AsyncExitStack, asynccontextmanager


class KeyedLock:
    """每个 key 一把按需创建的 ``asyncio.Lock``。

    锁按持有者（含正在等待的协程）计数，最后一个持有者释放后即移除，
    锁表大小只与当前并发中的 key 数量有关。
    同时持有多个 key 时按排序后的顺序加锁。
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *keys: Hashable | None) -> AsyncIterator[None]:
        """同时持有若干 key 的锁（忽略 ``None``，自动去重）。"""
        ordered = sorted({k for k in keys if k is not None}, key=repr)
        # 计数在任何 await 之前完成，等待中的协程同样算作持有者
        for key in ordered:
            self._holders[key] = self._holders.get(key, 0) + 1
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
        try:
            async with AsyncExitStack() as stack:
                for key in ordered:
                    await stack.enter_async_context(self._locks[key])
                yield
        finally:
            for key in ordered:
                remaining = self._holders[key] - 1
                if remaining:
                    self._holders[key] = remaining
                else:
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
