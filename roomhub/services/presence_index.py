"""
roomhub.services.presence_index
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

在线状态索引：房间 → 当前绑定在该房间的连接。

索引只由 ``ConnectionRegistry`` 在持有房间锁时同步写入，
随时可以从注册表的连接表重建（``rebuild``）。

``snapshot()`` 每次调用都在房间锁内重新计算人数与预览，
不在两次调用之间缓存任何派生值。
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from roomhub.core.config import settings
from roomhub.core.exceptions import PresenceUnavailable
from roomhub.core.locks import KeyedLock
from roomhub.schemas.rooms import ConnectedUser

if TYPE_CHECKING:
    from roomhub.services.connection_registry import Connection


@dataclass(frozen=True)
class PresenceSnapshot:
    """某个房间在某一时刻的在线状态。

    Attributes:
        count: 在线的不同用户数（不是连接数）。
        preview_users: 在线用户预览，按首次出现顺序去重，最多 ``preview_limit`` 人。
        member_ids: 全部在线用户 ID。
    """

    count: int
    preview_users: tuple[ConnectedUser, ...]
    member_ids: frozenset[str]

    @property
    def is_active(self) -> bool:
        return self.count > 0


EMPTY_SNAPSHOT = PresenceSnapshot(count=0, preview_users=(), member_ids=frozenset())


def summarize(connections: Iterable[Connection], preview_limit: int) -> PresenceSnapshot:
    """把一组连接折叠为按用户去重的快照（先出现者优先）。"""
    preview: list[ConnectedUser] = []
    seen: set[str] = set()
    for conn in connections:
        if conn.user_id in seen:
            continue
        seen.add(conn.user_id)
        if len(preview) < preview_limit:
            preview.append(
                ConnectedUser(
                    id=conn.user_id,
                    name=conn.display.name,
                    avatar=conn.display.avatar,
                ),
            )
    return PresenceSnapshot(
        count=len(seen),
        preview_users=tuple(preview),
        member_ids=frozenset(seen),
    )


class PresenceIndex:
    """房间 → 连接的内存索引。

    Attributes:
        preview_limit: 快照中预览用户的上限。
        locks: 每个房间一把锁，与 ``ConnectionRegistry`` 共享。
    """

    def __init__(self, preview_limit: int | None = None) -> None:
        self.preview_limit = (
            settings.PRESENCE_PREVIEW_LIMIT if preview_limit is None else preview_limit
        )
        self.locks = KeyedLock()
        # room_id -> {connection_id: Connection}，字典插入顺序即绑定顺序
        self._rooms: dict[str, dict[str, Connection]] = {}
        self._closed = False

    # ── 写路径（调用方必须持有对应房间锁）────────────────────────────

    def attach(self, connection: Connection) -> None:
        """把已绑定房间的连接加入索引；索引关闭后为空操作。"""
        if self._closed:
            return
        if connection.room_id is None:
            raise ValueError(f"connection {connection.connection_id} is not bound to a room")
        self._rooms.setdefault(connection.room_id, {})[connection.connection_id] = connection

    def detach(self, room_id: str, connection_id: str) -> None:
        """从索引中移除连接；不存在时忽略。"""
        bucket = self._rooms.get(room_id)
        if bucket is None:
            return
        bucket.pop(connection_id, None)
        if not bucket:
            del self._rooms[room_id]

    def rebuild(self, connections: Iterable[Connection]) -> None:
        """从注册表的连接全集重建索引，按绑定序号恢复先后顺序。"""
        if self._closed:
            return
        rooms: dict[str, dict[str, Connection]] = {}
        bound = (c for c in connections if c.room_id is not None)
        for conn in sorted(bound, key=lambda c: c.bind_seq):
            rooms.setdefault(conn.room_id, {})[conn.connection_id] = conn
        self._rooms = rooms

    # ── 读路径 ────────────────────────────────────────────────────────

    async def connections_in_room(self, room_id: str) -> tuple[Connection, ...]:
        """返回房间内连接的时点快照（按绑定顺序）。"""
        self._ensure_open()
        async with self.locks.hold(room_id):
            return tuple(self._rooms.get(room_id, {}).values())

    async def snapshot(self, room_id: str) -> PresenceSnapshot:
        """实时计算房间的在线快照。

        Raises:
            PresenceUnavailable: 索引已关闭（进程正在退出）。
        """
        connections = await self.connections_in_room(room_id)
        return summarize(connections, self.preview_limit)

    async def is_active(self, room_id: str) -> bool:
        return (await self.snapshot(room_id)).is_active

    def active_room_ids(self) -> list[str]:
        """当前至少有一个连接的房间，供 `/health` 汇报。"""
        return list(self._rooms)

    # ── 生命周期 ──────────────────────────────────────────────────────

    def close(self) -> None:
        """关闭索引，之后的读取抛出 ``PresenceUnavailable``。"""
        self._closed = True
        self._rooms = {}

    @property
    def closed(self) -> bool:
        """索引是否已关闭，供 `/health` 汇报。"""
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise PresenceUnavailable("presence index is closed")
