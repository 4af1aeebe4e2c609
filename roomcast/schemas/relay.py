"""
roomcast.schemas.relay
~~~~~~~~~~~~~~~~~~~~~~

房间 / 定向投递 / 外呼相关的 Pydantic 请求、响应与消息模型。
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ChannelInfo(BaseModel):
    """房间摘要信息。"""

    room_id: str = Field(..., description="房间唯一标识")
    member_count: int = Field(..., ge=0, description="当前在线连接数")


class CreateRoomRequest(BaseModel):
    """创建房间请求体。"""

    user_id: str = Field(..., min_length=1, description="发起创建的用户 ID")


class CreateRoomData(BaseModel):
    """创建房间响应数据。"""

    room_id: str = Field(..., description="服务端生成的房间 ID")
    message: str = Field(default="Room created", description="提示信息")


class JoinRoomRequest(BaseModel):
    """加入房间请求体。"""

    room_id: str = Field(..., min_length=1, description="要加入的房间 ID")


class JoinRoomData(BaseModel):
    """加入房间响应数据：告诉客户端该连接哪个 WebSocket 地址。"""

    room_id: str = Field(..., description="房间 ID")
    websocket_path: str = Field(..., description="WebSocket 连接路径")
    message: str = Field(..., description="提示信息")


class DirectEnvelope(BaseModel):
    """一对一定向消息信封。

    .. code-block:: json

        {"to": "user-2", "message": "hi"}
    """

    model_config = ConfigDict(extra="ignore")

    to: str = Field(..., min_length=1, description="目标端点 ID")
    message: str = Field(..., description="消息正文")


class CallRequest(BaseModel):
    """外呼请求体。"""

    number: str = Field(..., min_length=1, description="被叫号码（E.164 格式）")


class CallResponseData(BaseModel):
    """外呼响应数据。"""

    sid: str = Field(..., description="Twilio Call SID")


class HubStats(BaseModel):
    """中转中心运行状态快照。"""

    rooms: int = Field(..., description="活跃房间数")
    room_members: int = Field(..., description="所有房间内的连接总数")
    direct_endpoints: int = Field(..., description="已注册的定向端点数")
