"""
roomhub.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~

房间相关的 Pydantic 模型。

- ``Room``：持久化的房间记录（成员关系的唯一事实来源）
- ``EnrichedRoom``：``Room`` + 实时在线状态，由 ``PresenceReconciler`` 组装
- ``ConnectedUser``：在线用户预览条目
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_serializer


class RoomCreateRequest(BaseModel):
    """创建房间请求体。"""

    name: str = Field(..., max_length=100, description="房间名称")
    description: str = Field(default="", max_length=1000, description="房间描述")
    language: str | None = Field(default=None, max_length=50, description="编程语言标签")
    is_private: bool = Field(default=False, description="是否为私有房间")


class Room(BaseModel):
    """持久化的房间记录。

    不变式：``created_by`` 永远在 ``members`` 中。
    """

    id: str = Field(..., description="房间唯一标识")
    name: str = Field(..., description="房间名称")
    description: str = Field(default="", description="房间描述")
    language: str = Field(..., description="编程语言标签")
    is_private: bool = Field(default=False, description="是否为私有房间")
    created_by: str = Field(..., description="房主用户 ID")
    members: set[str] = Field(default_factory=set, description="成员用户 ID 集合")
    created_at: datetime = Field(..., description="创建时间")
    updated_at: datetime | None = Field(default=None, description="最后更新时间")

    @field_serializer("members")
    def _serialize_members(self, members: set[str]) -> list[str]:
        # 集合无序，输出时排序保证响应稳定
        return sorted(members)


class ConnectedUser(BaseModel):
    """在线用户预览条目。"""

    id: str = Field(..., description="用户 ID")
    name: str = Field(..., description="显示名称")
    avatar: str | None = Field(default=None, description="头像 URL")
    online: bool = Field(default=True, description="是否在线")


class EnrichedRoom(Room):
    """附带实时在线状态的房间。"""

    active_user_count: int = Field(..., description="当前在线的不同用户数")
    is_active: bool = Field(..., description="是否有人在线")
    last_activity: datetime = Field(..., description="max(updated_at, created_at)")
    connected_users: list[ConnectedUser] = Field(
        default_factory=list, description="在线用户预览（最多 6 人）",
    )


class JoinRoomData(BaseModel):
    """加入房间响应数据。"""

    message: str = Field(default="Joined room", description="结果说明")
    room: Room = Field(..., description="加入后的房间记录")


class LeaveRoomData(BaseModel):
    """退出房间响应数据。"""

    message: str = Field(default="Left room", description="结果说明")
