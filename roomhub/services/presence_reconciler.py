"""
roomhub.services.presence_reconciler
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

在线状态合并器：把持久化的 ``Room`` 与实时 ``PresenceSnapshot``
组装为 ``EnrichedRoom``。

在线数据源不可用或超时时，只降级受影响的房间（人数记 0），
其余房间照常返回。
"""
from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Protocol

from roomhub.core.config import settings
from roomhub.core.exceptions import PresenceUnavailable
from roomhub.core.logging import get_logger
from roomhub.schemas.rooms import EnrichedRoom, Room
from roomhub.services.presence_index import EMPTY_SNAPSHOT, PresenceSnapshot

logger = get_logger(__name__)


class PresenceSource(Protocol):
    """能按房间给出在线快照的数据源（``PresenceIndex`` 即其实现）。"""

    async def snapshot(self, room_id: str) -> PresenceSnapshot: ...


def build_enriched_room(room: Room, presence: PresenceSnapshot) -> EnrichedRoom:
    """纯函数：房间记录 + 在线快照 → ``EnrichedRoom``。"""
    last_activity = room.created_at
    if room.updated_at is not None and room.updated_at > last_activity:
        last_activity = room.updated_at

    return EnrichedRoom(
        id=room.id,
        name=room.name,
        description=room.description,
        language=room.language,
        is_private=room.is_private,
        created_by=room.created_by,
        members=set(room.members),
        created_at=room.created_at,
        updated_at=room.updated_at,
        active_user_count=presence.count,
        is_active=presence.is_active,
        last_activity=last_activity,
        connected_users=list(presence.preview_users),
    )


class PresenceReconciler:
    """把房间记录与在线索引合并的查询入口。

    Attributes:
        presence: 在线快照数据源。
        timeout: 单个房间快照的读取超时（秒）。
    """

    def __init__(self, presence: PresenceSource, timeout: float | None = None) -> None:
        self.presence = presence
        self.timeout = settings.PRESENCE_TIMEOUT_SECONDS if timeout is None else timeout

    async def activity_snapshot(self, room: Room) -> EnrichedRoom:
        """单个房间的在线快照；数据源故障时返回人数为 0 的结果。"""
        try:
            presence = await asyncio.wait_for(
                self.presence.snapshot(room.id), timeout=self.timeout,
            )
        except (PresenceUnavailable, asyncio.TimeoutError) as e:
            logger.warning("在线状态不可用，按离线降级 | room=%s | reason=%r", room.id, e)
            presence = EMPTY_SNAPSHOT
        return build_enriched_room(room, presence)

    async def activity_snapshot_batch(self, rooms: Sequence[Room]) -> list[EnrichedRoom]:
        """批量合并，保持输入顺序；各房间互相独立。"""
        return list(
            await asyncio.gather(*(self.activity_snapshot(room) for room in rooms)),
        )
