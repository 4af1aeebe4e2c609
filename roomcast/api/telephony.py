"""
roomcast.api.telephony
~~~~~~~~~~~~~~~~~~~~~~

电话相关接口 —— Twilio 外呼 + Media Streams 数据包计数。

端点:
  - ``POST /call``     → 发起外呼，返回 Call SID
  - ``WS   /ws/media`` → 接收 Twilio Media Streams 事件并统计数据包
"""
from typing import Any

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from roomcast.api.deps import get_twilio_client, get_twilio_settings
from roomcast.core.logging import get_logger, request_id_ctx_var
from roomcast.core.rate_limit import limiter
from roomcast.integrations.twilio_client import TwilioConfig, originate_call
from roomcast.schemas.api_response import ApiResponse
from roomcast.schemas.relay import CallRequest, CallResponseData
from roomcast.services.media_stream import MediaStreamSession

logger = get_logger(__name__)

router: APIRouter = APIRouter()
ws_router: APIRouter = APIRouter()


@router.post("/call", summary="发起外呼", response_model=ApiResponse[CallResponseData])
@limiter.limit("1/second")
async def create_call(
    request: Request,
    body: CallRequest,
    config: TwilioConfig = Depends(get_twilio_settings),
    client: Any = Depends(get_twilio_client),
):
    """通过 Twilio 向 ``number`` 发起外呼。Twilio 未配置时返回 503。"""
    sid = await originate_call(client, body.number, config)
    return ApiResponse.ok(data=CallResponseData(sid=sid))


@ws_router.websocket("/ws/media")
async def websocket_media_endpoint(websocket: WebSocket) -> None:
    """Twilio Media Streams 端点：统计音频数据包，收到 ``stop`` 后关闭连接。"""
    token = request_id_ctx_var.set("ws-media")
    session = MediaStreamSession()
    await websocket.accept()
    logger.info("Twilio 媒体流已连接")

    try:
        while session.handle(await websocket.receive_text()):
            pass
        await websocket.close()
    except WebSocketDisconnect:
        logger.info("媒体流连接断开 | stream=%s", session.stream_sid)
    except Exception as e:
        logger.error("媒体流处理异常: %s | stream=%s", e, session.stream_sid, exc_info=True)
    finally:
        logger.info(
            "媒体流统计 | stream=%s | packets=%d | bytes=%d | invalid=%d",
            session.stream_sid, session.packets, session.payload_bytes, session.invalid_frames,
        )
        request_id_ctx_var.reset(token)
