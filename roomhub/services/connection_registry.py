"""
roomhub.services.connection_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接注册表：记录每条实时连接绑定的用户身份与所在房间。

一条连接同一时刻最多绑定一个房间。每次 bind / unbind / deregister
都在相关房间锁内同步更新 ``PresenceIndex``，读者不会看到
同一连接被计入两个房间，或仍被计入已离开的房间。

实例在应用启动时创建、挂载到 ``app.state``，关闭时随索引一起释放；
不存在进程级全局表。
"""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, replace

from roomhub.core.exceptions import DuplicateConnection, UnknownConnection
from roomhub.core.logging import get_logger
from roomhub.services.presence_index import PresenceIndex

logger = get_logger(__name__)


@dataclass(frozen=True)
class DisplayMeta:
    """连接建立时冗余保存的用户展示信息。"""

    name: str
    avatar: str | None = None


@dataclass(frozen=True)
class Connection:
    """一条实时连接。

    Attributes:
        connection_id: 连接唯一标识（每个 socket 一个）。
        user_id: 连接所属用户。
        display: 用户展示信息。
        room_id: 当前绑定的房间，未绑定为 ``None``。
        bind_seq: 最近一次绑定的全局序号，用于恢复先后顺序。
    """

    connection_id: str
    user_id: str
    display: DisplayMeta
    room_id: str | None = None
    bind_seq: int = 0


class ConnectionRegistry:
    """实时连接注册表。

    加锁顺序固定为：注册表锁 → 房间锁（多个房间按 key 排序），
    读路径只取房间锁，因此不会死锁。

    Attributes:
        index: 由本注册表独占写入的在线状态索引。
    """

    def __init__(self, index: PresenceIndex) -> None:
        self.index = index
        self._connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()
        self._bind_seq = itertools.count(1)

    async def register(
        self,
        connection_id: str,
        user_id: str,
        display: DisplayMeta,
    ) -> Connection:
        """登记一条新连接（初始未绑定房间）。

        Raises:
            DuplicateConnection: ``connection_id`` 已被登记。
        """
        async with self._lock:
            if connection_id in self._connections:
                raise DuplicateConnection(f"connection {connection_id} already registered")
            conn = Connection(connection_id=connection_id, user_id=user_id, display=display)
            self._connections[connection_id] = conn
        logger.debug("连接已登记 | conn=%s | user=%s", connection_id, user_id)
        return conn

    async def bind_to_room(self, connection_id: str, room_id: str) -> Connection:
        """把连接绑定到房间，先解除之前的绑定。

        重复绑定同一房间是空操作，不改变该连接在预览中的先后位置。

        Raises:
            UnknownConnection: 连接未登记。
        """
        async with self._lock:
            current = self._connections.get(connection_id)
            if current is None:
                raise UnknownConnection(f"connection {connection_id} is not registered")
            if current.room_id == room_id:
                return current

            async with self.index.locks.hold(current.room_id, room_id):
                if current.room_id is not None:
                    self.index.detach(current.room_id, connection_id)
                bound = replace(current, room_id=room_id, bind_seq=next(self._bind_seq))
                self.index.attach(bound)
                self._connections[connection_id] = bound

        logger.debug(
            "连接已绑定房间 | conn=%s | room=%s | prev=%s",
            connection_id, room_id, current.room_id,
        )
        return bound

    async def unbind(self, connection_id: str) -> None:
        """解除连接的房间绑定。

        未绑定或已注销的连接直接忽略：断线通知可能先于显式离开到达。
        """
        async with self._lock:
            current = self._connections.get(connection_id)
            if current is None or current.room_id is None:
                return
            async with self.index.locks.hold(current.room_id):
                self.index.detach(current.room_id, connection_id)
                self._connections[connection_id] = replace(current, room_id=None)
        logger.debug("连接已离开房间 | conn=%s | room=%s", connection_id, current.room_id)

    async def deregister(self, connection_id: str) -> bool:
        """注销连接（隐式解除绑定）。幂等。

        Returns:
            本次调用是否真正移除了连接。
        """
        async with self._lock:
            current = self._connections.pop(connection_id, None)
            if current is None:
                return False
            if current.room_id is not None:
                async with self.index.locks.hold(current.room_id):
                    self.index.detach(current.room_id, connection_id)
        logger.debug("连接已注销 | conn=%s | user=%s", connection_id, current.user_id)
        return True

    async def connections_in_room(self, room_id: str) -> tuple[Connection, ...]:
        """房间内连接的只读时点快照。"""
        return await self.index.connections_in_room(room_id)

    async def rebuild_index(self) -> None:
        """用当前连接表整体重建在线索引。

        运维辅助：索引与连接表疑似不一致时手动调用，正常请求路径不会用到。
        """
        async with self._lock:
            self.index.rebuild(self._connections.values())
        logger.info("在线索引已重建 | connections=%d", len(self._connections))

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def __len__(self) -> int:
        return len(self._connections)
