"""
roomcast.schemas
~~~~~~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from roomcast.schemas.api_response import ApiResponse
from roomcast.schemas.media_stream import MediaStreamEvent
from roomcast.schemas.relay import (
    CallRequest,
    CallResponseData,
    ChannelInfo,
    CreateRoomData,
    CreateRoomRequest,
    DirectEnvelope,
    HubStats,
    JoinRoomData,
    JoinRoomRequest,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
