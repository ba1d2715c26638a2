"""
roomhub.api.rooms
~~~~~~~~~~~~~~~~~

房间 REST 接口：创建、发现、加入 / 退出。

路由前缀 ``/api``。

端点:
  - ``POST /rooms``                  → 创建房间
  - ``GET  /rooms``                  → 公开房间列表（含在线状态）
  - ``GET  /rooms/mine``             → 我创建的房间
  - ``GET  /rooms/search?query=``    → 搜索公开房间
  - ``GET  /rooms/{room_id}``        → 房间详情（含在线状态）
  - ``POST /rooms/{room_id}/join``   → 加入房间
  - ``POST /rooms/{room_id}/leave``  → 退出房间
"""
from fastapi import APIRouter, Depends, Query, Request

from roomhub.api.deps import get_current_user_id, get_room_directory
from roomhub.core.rate_limit import limiter
from roomhub.schemas.api_response import ApiResponse
from roomhub.schemas.rooms import (
    EnrichedRoom,
    JoinRoomData,
    LeaveRoomData,
    Room,
    RoomCreateRequest,
)
from roomhub.services.room_directory import RoomDirectoryService

router: APIRouter = APIRouter()


# ── 房间生命周期 ──────────────────────────────────────────────────────

@router.post(
    "/rooms",
    summary="创建房间",
    status_code=201,
    response_model=ApiResponse[Room],
)
@limiter.limit("5/second")
async def create_room(
    request: Request,
    body: RoomCreateRequest,
    user_id: str = Depends(get_current_user_id),
    directory: RoomDirectoryService = Depends(get_room_directory),
):
    """创建房间，当前用户成为房主和第一个成员。"""
    room = await directory.create_room(body, owner_id=user_id)
    return ApiResponse.ok(data=room, code=201)


@router.post(
    "/rooms/{room_id}/join",
    summary="加入房间",
    response_model=ApiResponse[JoinRoomData],
)
@limiter.limit("10/second")
async def join_room(
    request: Request,
    room_id: str,
    user_id: str = Depends(get_current_user_id),
    directory: RoomDirectoryService = Depends(get_room_directory),
):
    room = await directory.join_room(room_id, user_id)
    return ApiResponse.ok(data=JoinRoomData(room=room))


@router.post(
    "/rooms/{room_id}/leave",
    summary="退出房间",
    response_model=ApiResponse[LeaveRoomData],
)
@limiter.limit("10/second")
async def leave_room(
    request: Request,
    room_id: str,
    user_id: str = Depends(get_current_user_id),
    directory: RoomDirectoryService = Depends(get_room_directory),
):
    await directory.leave_room(room_id, user_id)
    return ApiResponse.ok(data=LeaveRoomData())


# ── 房间发现 ──────────────────────────────────────────────────────────

@router.get("/rooms", summary="公开房间列表", response_model=ApiResponse[list[EnrichedRoom]])
@limiter.limit("10/second")
async def list_public_rooms(
    request: Request,
    directory: RoomDirectoryService = Depends(get_room_directory),
):
    """返回全部公开房间及其实时在线人数、在线用户预览。"""
    rooms = await directory.list_public_rooms()
    return ApiResponse.ok(data=rooms)


@router.get("/rooms/mine", summary="我创建的房间", response_model=ApiResponse[list[Room]])
@limiter.limit("10/second")
async def list_my_rooms(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    directory: RoomDirectoryService = Depends(get_room_directory),
):
    rooms = await directory.list_my_rooms(user_id)
    return ApiResponse.ok(data=rooms)


@router.get("/rooms/search", summary="搜索公开房间", response_model=ApiResponse[list[Room]])
@limiter.limit("10/second")
async def search_rooms(
    request: Request,
    query: str = Query("", max_length=200, description="名称或描述中的关键字（字面匹配）"),
    directory: RoomDirectoryService = Depends(get_room_directory),
):
    rooms = await directory.search_rooms(query)
    return ApiResponse.ok(data=rooms)


@router.get("/rooms/{room_id}", summary="房间详情", response_model=ApiResponse[EnrichedRoom])
@limiter.limit("10/second")
async def get_room(
    request: Request,
    room_id: str,
    directory: RoomDirectoryService = Depends(get_room_directory),
):
    """返回指定房间的详细信息（成员、在线人数等）。

    Args:
        room_id: 房间唯一标识。
    """
    room = await directory.get_room(room_id)
    return ApiResponse.ok(data=room)
