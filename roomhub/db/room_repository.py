"""
roomhub.db.room_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~

房间持久化仓库：封装 MongoDB ``rooms`` 集合的增查改操作。

文档结构::

    {
      "_id": ObjectId,
      "name": str, "description": str, "language": str,
      "is_private": bool, "created_by": str,
      "members": [str, ...],
      "created_at": datetime, "updated_at": datetime
    }

驱动层异常统一转换为 ``PersistenceError``，本层不做重试。
"""
from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from roomhub.core.exceptions import PersistenceError
from roomhub.core.logging import get_logger
from roomhub.schemas.rooms import Room

logger = get_logger(__name__)

# 集合名称
_COLLECTION_NAME = "rooms"


@dataclass(frozen=True)
class RoomFilter:
    """房间查询条件，各字段之间为 AND，``None`` 表示不限。

    Attributes:
        is_private: 按私有标记过滤。
        created_by: 按房主过滤。
        text: 在 name / description 中做不区分大小写的字面子串匹配（OR）。
    """

    is_private: bool | None = None
    created_by: str | None = None
    text: str | None = None

    def to_query(self) -> dict[str, Any]:
        query: dict[str, Any] = {}
        if self.is_private is not None:
            query["is_private"] = self.is_private
        if self.created_by is not None:
            query["created_by"] = self.created_by
        if self.text:
            # 用户输入按字面量处理，不能作为正则片段进入查询
            pattern = {"$regex": re.escape(self.text), "$options": "i"}
            query["$or"] = [{"name": pattern}, {"description": pattern}]
        return query


def _to_room(doc: dict[str, Any]) -> Room:
    return Room(
        id=str(doc["_id"]),
        name=doc["name"],
        description=doc.get("description", ""),
        language=doc["language"],
        is_private=doc.get("is_private", False),
        created_by=doc["created_by"],
        members=set(doc.get("members", [])),
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at"),
    )


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as e:
        logger.error("rooms 集合操作失败 | op=%s | error=%s", operation, e, exc_info=True)
        raise PersistenceError(f"{operation} failed: {e}") from e


class RoomRepository:
    """房间持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        with _translate_errors("create_index"):
            await self._collection.create_index(
                [("is_private", 1), ("created_at", -1)],
                name="idx_private_time",
            )
            await self._collection.create_index("created_by", name="idx_owner")
        self._indexes_created = True
        logger.debug("rooms 索引已就绪")

    async def find(self, room_filter: RoomFilter) -> list[Room]:
        """按条件查询房间，按创建时间倒序。"""
        await self._ensure_indexes()
        with _translate_errors("find"):
            cursor = self._collection.find(room_filter.to_query()).sort("created_at", -1)
            docs = await cursor.to_list(length=None)
        return [_to_room(doc) for doc in docs]

    async def find_by_id(self, room_id: str) -> Room | None:
        """按 ID 查询；非法 ID 视为不存在。"""
        if not ObjectId.is_valid(room_id):
            return None
        with _translate_errors("find_by_id"):
            doc = await self._collection.find_one({"_id": ObjectId(room_id)})
        return _to_room(doc) if doc else None

    async def create(self, fields: dict[str, Any]) -> Room:
        """插入新房间并返回带 ID 的记录。

        Args:
            fields: 除 ``_id`` / 时间戳之外的全部文档字段，``members`` 可为集合。
        """
        await self._ensure_indexes()
        now = datetime.now(timezone.utc)
        doc = {
            **fields,
            "members": sorted(fields.get("members", ())),
            "created_at": now,
            "updated_at": now,
        }
        with _translate_errors("create"):
            result = await self._collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _to_room(doc)

    async def save(self, room: Room) -> Room:
        """写回房间的可变字段，刷新 ``updated_at``。"""
        now = datetime.now(timezone.utc)
        with _translate_errors("save"):
            await self._collection.update_one(
                {"_id": ObjectId(room.id)},
                {
                    "$set": {
                        "name": room.name,
                        "description": room.description,
                        "language": room.language,
                        "is_private": room.is_private,
                        "members": sorted(room.members),
                        "updated_at": now,
                    },
                },
            )
        return room.model_copy(update={"updated_at": now})
