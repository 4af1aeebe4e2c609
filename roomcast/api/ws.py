"""
roomcast.api.ws
~~~~~~~~~~~~~~~

WebSocket 实时中转接口。

- ``/ws/rooms?room_id=<id>``  —— 房间模式：消息原样广播给同房间的其它连接。
- ``/ws/direct?user_id=<id>`` —— 定向模式：发送 ``{"to": ..., "message": ...}``，
  服务端以 ``📩 Message from <user_id>: <message>`` 转发给目标。

缺少标识时服务端发送拒绝消息后以 1008 关闭连接。
每个连接在独立的任务中处理，任何异常只会结束当前连接。
出站消息经每个连接自己的发送队列由写协程写出，慢连接不会拖住发送者。
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, status

from roomcast.core.config import settings
from roomcast.core.errors import JoinRejected
from roomcast.core.logging import get_logger, request_id_ctx_var
from roomcast.core.rate_limit import WebSocketRateLimiter
from roomcast.services.connection import Payload, WebSocketConnection
from roomcast.services.presence import Presence, PresenceMode
from roomcast.services.relay_hub import RelayHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()

_THROTTLED_NOTICE: str = "⚠️ You are sending messages too fast, please slow down"


@router.websocket("/ws/rooms")
async def websocket_room_endpoint(websocket: WebSocket, room_id: str | None = None) -> None:
    """房间模式端点：通过查询参数 ``room_id`` 加入房间（不存在则自动创建）。"""
    await _serve(websocket, PresenceMode.CHANNEL, room_id)


@router.websocket("/ws/direct")
async def websocket_direct_endpoint(websocket: WebSocket, user_id: str | None = None) -> None:
    """定向模式端点：通过查询参数 ``user_id`` 注册为可寻址端点。"""
    await _serve(websocket, PresenceMode.DIRECT, user_id)


async def _serve(websocket: WebSocket, mode: PresenceMode, identifier: str | None) -> None:
    connection = WebSocketConnection(websocket)
    token = request_id_ctx_var.set(f"ws-{connection.connection_id[:8]}")

    try:
        hub: RelayHub = websocket.app.state.relay_hub
        await websocket.accept()
        connection.start_writer(maxsize=settings.OUTBOUND_QUEUE_SIZE)

        try:
            await _run_presence(websocket, hub, connection, mode, identifier)
        finally:
            await connection.stop_writer()
    finally:
        request_id_ctx_var.reset(token)


async def _run_presence(
    websocket: WebSocket,
    hub: RelayHub,
    connection: WebSocketConnection,
    mode: PresenceMode,
    identifier: str | None,
) -> None:
    try:
        if mode is PresenceMode.CHANNEL:
            presence = await hub.presence.join_channel(connection, identifier)
        else:
            presence = await hub.presence.join_direct(connection, identifier)
    except JoinRejected as e:
        await connection.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.detail)
        return
    except Exception as e:
        logger.error(
            "WebSocket 加入失败: %s | mode=%s | id=%s",
            e, mode.value, identifier, exc_info=True,
        )
        await connection.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
    try:
        await _receive_loop(websocket, hub, presence, limiter)
    except Exception as e:
        logger.error(
            "WebSocket 处理异常: %s | mode=%s | id=%s",
            e, mode.value, presence.identifier, exc_info=True,
        )
    finally:
        await hub.presence.leave(presence)
        limiter.remove_client(connection.connection_id)
        logger.info("连接已断开 | mode=%s | id=%s", mode.value, presence.identifier)


async def _receive_loop(
    websocket: WebSocket,
    hub: RelayHub,
    presence: Presence,
    limiter: WebSocketRateLimiter,
) -> None:
    connection = presence.connection
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

        payload: Payload | None = message.get("text")
        if payload is None:
            payload = message.get("bytes")
        if payload is None:
            continue

        if not limiter.is_allowed(connection.connection_id):
            await connection.send(_THROTTLED_NOTICE)
            continue

        logger.debug("📨 收到消息 | id=%s | size=%d", presence.identifier, len(payload))
        await hub.presence.handle_message(presence, payload)
