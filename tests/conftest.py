"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures：用内存仓库替代 MongoDB，
使单元测试可在无数据库环境下快速运行。
"""
from __future__ import annotations

import asyncio
import itertools
import os
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WS_RATE_LIMIT_INTERVAL", "0")

from roomhub.db.room_repository import RoomFilter  # noqa: E402
from roomhub.schemas.rooms import Room  # noqa: E402
from roomhub.services.connection_registry import ConnectionRegistry  # noqa: E402
from roomhub.services.presence_index import PresenceIndex  # noqa: E402
from roomhub.services.presence_reconciler import PresenceReconciler  # noqa: E402
from roomhub.services.room_directory import RoomDirectoryService  # noqa: E402

_BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class InMemoryRoomRepository:
    """``RoomRepository`` 的内存替身。

    每个操作都会让出一次事件循环，尽量暴露读-改-写之间的并发交错。
    时间戳由递增时钟生成，保证排序确定。
    """

    def __init__(self) -> None:
        self.rooms: dict[str, Room] = {}
        self.save_calls = 0
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    def _now(self) -> datetime:
        return _BASE_TIME + timedelta(seconds=next(self._ticks))

    async def find(self, room_filter: RoomFilter) -> list[Room]:
        await asyncio.sleep(0)
        result = []
        for room in self.rooms.values():
            if room_filter.is_private is not None and room.is_private != room_filter.is_private:
                continue
            if room_filter.created_by is not None and room.created_by != room_filter.created_by:
                continue
            if room_filter.text:
                needle = room_filter.text.lower()
                if needle not in room.name.lower() and needle not in room.description.lower():
                    continue
            result.append(room.model_copy(deep=True))
        return sorted(result, key=lambda r: r.created_at, reverse=True)

    async def find_by_id(self, room_id: str) -> Room | None:
        await asyncio.sleep(0)
        room = self.rooms.get(room_id)
        return room.model_copy(deep=True) if room else None

    async def create(self, fields: dict[str, Any]) -> Room:
        await asyncio.sleep(0)
        now = self._now()
        room = Room(
            id=f"room-{next(self._ids)}",
            created_at=now,
            updated_at=now,
            **{**fields, "members": set(fields.get("members", ()))},
        )
        self.rooms[room.id] = room.model_copy(deep=True)
        return room

    async def save(self, room: Room) -> Room:
        await asyncio.sleep(0)
        self.save_calls += 1
        saved = room.model_copy(update={"updated_at": self._now()}, deep=True)
        self.rooms[room.id] = saved
        return saved.model_copy(deep=True)


@pytest.fixture
def presence_index() -> PresenceIndex:
    return PresenceIndex(preview_limit=6)


@pytest.fixture
def registry(presence_index: PresenceIndex) -> ConnectionRegistry:
    return ConnectionRegistry(presence_index)


@pytest.fixture
def room_repo() -> InMemoryRoomRepository:
    return InMemoryRoomRepository()


@pytest.fixture
def directory(room_repo: InMemoryRoomRepository, presence_index: PresenceIndex) -> RoomDirectoryService:
    reconciler = PresenceReconciler(presence_index, timeout=1.0)
    return RoomDirectoryService(repo=room_repo, reconciler=reconciler)
