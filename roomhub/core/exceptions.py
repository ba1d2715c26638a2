"""
roomhub.core.exceptions
~~~~~~~~~~~~~~~~~~~~~~~

领域异常。传输层负责把它们映射为 HTTP 状态码：

  - ``RoomNotFound``       → 404
  - ``ValidationError``    → 422
  - ``PersistenceError``   → 500

``DuplicateConnection`` / ``UnknownConnection`` 属于调用方的编程错误，
``PresenceUnavailable`` 只在读路径内部出现，会被降级为空在线状态。
"""
from __future__ import annotations


class RoomHubError(Exception):
    """所有领域异常的基类。"""


class ValidationError(RoomHubError):
    """输入不合法（例如房间名为空）。"""


class OwnerCannotLeave(ValidationError):
    """房主不能退出自己创建的房间。"""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"room owner cannot leave room {room_id}")
        self.room_id = room_id


class RoomNotFound(RoomHubError):
    """引用的房间不存在。"""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"room {room_id} not found")
        self.room_id = room_id


class DuplicateConnection(RoomHubError):
    """同一 connection_id 被重复注册。"""


class UnknownConnection(RoomHubError):
    """操作了一个未注册的连接。"""


class PresenceUnavailable(RoomHubError):
    """实时在线数据源不可用。"""


class PersistenceError(RoomHubError):
    """持久化层（MongoDB）操作失败。"""
