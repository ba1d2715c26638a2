from fastapi import Header, HTTPException, Request

from roomhub.services.room_directory import RoomDirectoryService


def get_room_directory(request: Request) -> RoomDirectoryService:
    return request.app.state.room_directory


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """身份由上游认证网关通过 ``X-User-Id`` 头传入。"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="missing X-User-Id header")
    return x_user_id
