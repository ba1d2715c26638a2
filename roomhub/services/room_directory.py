"""
roomhub.services.room_directory
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间目录服务：对外暴露的房间生命周期与发现操作。

- ``create_room``        → 创建房间，房主自动成为成员
- ``join_room``          → 加入房间（已是成员时为空操作）
- ``leave_room``         → 退出房间（非成员时为空操作，房主不可退出）
- ``list_public_rooms``  → 公开房间列表（含在线状态）
- ``get_room``           → 房间详情（含在线状态）
- ``list_my_rooms``      → 我创建的房间（不含在线状态）
- ``search_rooms``       → 公开房间按名称 / 描述做字面子串搜索

同一房间的成员关系读-改-写在房间锁内完成，并发加入不会丢失成员。
"""
from __future__ import annotations

from roomhub.core.config import settings
from roomhub.core.exceptions import OwnerCannotLeave, RoomNotFound, ValidationError
from roomhub.core.locks import KeyedLock
from roomhub.core.logging import get_logger
from roomhub.db.room_repository import RoomFilter, RoomRepository
from roomhub.schemas.rooms import EnrichedRoom, Room, RoomCreateRequest
from roomhub.services.presence_reconciler import PresenceReconciler

logger = get_logger(__name__)


class RoomDirectoryService:
    """房间目录服务。

    Attributes:
        repo: 房间持久化仓库。
        reconciler: 在线状态合并器。
        default_language: 创建房间时未指定语言的默认值。
    """

    def __init__(
        self,
        repo: RoomRepository,
        reconciler: PresenceReconciler,
        default_language: str | None = None,
    ) -> None:
        self.repo = repo
        self.reconciler = reconciler
        self.default_language = default_language or settings.DEFAULT_ROOM_LANGUAGE
        self._membership_locks = KeyedLock()

    # ── 成员关系变更 ──────────────────────────────────────────────────

    async def create_room(self, fields: RoomCreateRequest, owner_id: str) -> Room:
        """创建房间，初始成员只有房主。

        Raises:
            ValidationError: 房间名为空。
        """
        name = fields.name.strip()
        if not name:
            raise ValidationError("room name must not be empty")

        room = await self.repo.create({
            "name": name,
            "description": fields.description or "",
            "language": fields.language or self.default_language,
            "is_private": fields.is_private,
            "created_by": owner_id,
            "members": {owner_id},
        })
        logger.info("房间已创建 | room=%s | owner=%s | private=%s", room.id, owner_id, room.is_private)
        return room

    async def join_room(self, room_id: str, user_id: str) -> Room:
        """加入房间，返回最新的房间记录。

        Raises:
            RoomNotFound: 房间不存在。
        """
        async with self._membership_locks.hold(room_id):
            room = await self._require(room_id)
            if user_id in room.members:
                return room
            room = await self.repo.save(
                room.model_copy(update={"members": room.members | {user_id}}),
            )
        logger.info("用户加入房间 | room=%s | user=%s | members=%d", room_id, user_id, len(room.members))
        return room

    async def leave_room(self, room_id: str, user_id: str) -> None:
        """退出房间。

        Raises:
            RoomNotFound: 房间不存在。
            OwnerCannotLeave: 房主尝试退出自己的房间。
        """
        async with self._membership_locks.hold(room_id):
            room = await self._require(room_id)
            if user_id == room.created_by:
                raise OwnerCannotLeave(room_id)
            if user_id not in room.members:
                return
            await self.repo.save(
                room.model_copy(update={"members": room.members - {user_id}}),
            )
        logger.info("用户退出房间 | room=%s | user=%s", room_id, user_id)

    # ── 查询 ──────────────────────────────────────────────────────────

    async def list_public_rooms(self) -> list[EnrichedRoom]:
        rooms = await self.repo.find(RoomFilter(is_private=False))
        return await self.reconciler.activity_snapshot_batch(rooms)

    async def get_room(self, room_id: str) -> EnrichedRoom:
        """房间详情。

        Raises:
            RoomNotFound: 房间不存在。
        """
        room = await self._require(room_id)
        return await self.reconciler.activity_snapshot(room)

    async def list_my_rooms(self, owner_id: str) -> list[Room]:
        return await self.repo.find(RoomFilter(created_by=owner_id))

    async def search_rooms(self, query: str | None) -> list[Room]:
        """公开房间搜索，空查询返回全部公开房间。"""
        text = (query or "").strip()
        return await self.repo.find(RoomFilter(is_private=False, text=text or None))

    async def _require(self, room_id: str) -> Room:
        room = await self.repo.find_by_id(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room
