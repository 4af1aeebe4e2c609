"""
roomcast.api.rooms
~~~~~~~~~~~~~~~~~~

房间 REST 接口 —— 创建 / 加入指引 / 列表 / 详情。

端点:
  - ``POST /create-room``      → 创建房间（服务端生成 room_id）
  - ``POST /join-room``        → 返回对应的 WebSocket 连接地址
  - ``GET  /rooms``            → 获取活跃房间列表
  - ``GET  /room/{room_id}``   → 获取房间详情（不存在时 404）
"""
from fastapi import APIRouter, Depends, Request

from roomcast.api.deps import get_relay_hub
from roomcast.core.errors import ChannelNotFound
from roomcast.core.rate_limit import limiter
from roomcast.schemas.api_response import ApiResponse
from roomcast.schemas.relay import (
    ChannelInfo,
    CreateRoomData,
    CreateRoomRequest,
    JoinRoomData,
    JoinRoomRequest,
)
from roomcast.services.relay_hub import RelayHub

router: APIRouter = APIRouter()


@router.post("/create-room", summary="创建房间", response_model=ApiResponse[CreateRoomData])
@limiter.limit("5/second")
async def create_room(
    request: Request,
    body: CreateRoomRequest,
    hub: RelayHub = Depends(get_relay_hub),
):
    """为 ``user_id`` 创建一个新房间，房间 ID 由服务端生成。"""
    room_id = hub.channels.new_channel_id()
    await hub.channels.create(room_id)
    return ApiResponse.ok(data=CreateRoomData(room_id=room_id))


@router.post("/join-room", summary="加入房间指引", response_model=ApiResponse[JoinRoomData])
@limiter.limit("10/second")
async def join_room(request: Request, body: JoinRoomRequest):
    """返回加入房间所需的 WebSocket 地址，真正的加入发生在 WebSocket 握手时。"""
    path = f"/ws/rooms?room_id={body.room_id}"
    return ApiResponse.ok(
        data=JoinRoomData(
            room_id=body.room_id,
            websocket_path=path,
            message=f"Now connect via WebSocket to {path}",
        ),
    )


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[ChannelInfo]])
@limiter.limit("20/second")
async def list_rooms(request: Request, hub: RelayHub = Depends(get_relay_hub)):
    """返回所有活跃房间及其在线连接数。"""
    rooms = await hub.channels.list_all()
    return ApiResponse.ok(data=rooms)


@router.get("/room/{room_id}", summary="获取房间详情", response_model=ApiResponse[ChannelInfo])
@limiter.limit("20/second")
async def room_info(request: Request, room_id: str, hub: RelayHub = Depends(get_relay_hub)):
    """返回指定房间的在线连接数。

    Args:
        room_id: 房间唯一标识。
    """
    info = await hub.channels.info(room_id)
    if info is None:
        raise ChannelNotFound()
    return ApiResponse.ok(data=info)
