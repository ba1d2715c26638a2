"""
roomhub.schemas
~~~~~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from roomhub.schemas.api_response import ApiResponse
from roomhub.schemas.rooms import (
    ConnectedUser,
    EnrichedRoom,
    JoinRoomData,
    LeaveRoomData,
    Room,
    RoomCreateRequest,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
