"""
roomcast.services.media_stream
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Twilio Media Streams 会话 —— 统计一路通话音频流的数据包。

只做计数，不解码音频内容；``stop`` 事件之后会话结束，由调用方关闭连接。
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from pydantic import ValidationError

from roomcast.core.logging import get_logger
from roomcast.schemas.media_stream import MediaStreamEvent

logger = get_logger(__name__)


@dataclass
class MediaStreamSession:
    """单路媒体流的计数状态。"""

    stream_sid: str | None = None
    call_sid: str | None = None
    packets: int = 0
    payload_bytes: int = 0
    invalid_frames: int = 0
    stopped: bool = False

    def handle(self, raw: str | bytes) -> bool:
        """处理一条事件帧。

        Returns:
            会话是否仍在进行（收到 ``stop`` 后返回 ``False``）。
        """
        try:
            event = MediaStreamEvent.model_validate_json(raw)
        except ValidationError as e:
            self.invalid_frames += 1
            logger.warning("无法解析的媒体流事件: %s", e.errors(include_url=False)[:1])
            return not self.stopped

        if event.stream_sid:
            self.stream_sid = event.stream_sid

        if event.event == "start":
            if event.start is not None:
                self.call_sid = event.start.call_sid
            logger.info("▶️ 媒体流开始 | stream=%s | call=%s", self.stream_sid, self.call_sid)
        elif event.event == "media" and event.media is not None:
            self._count(event.media.payload)
        elif event.event == "stop":
            self.stopped = True
            logger.info(
                "⏹️ 媒体流结束 | stream=%s | packets=%d | bytes=%d",
                self.stream_sid, self.packets, self.payload_bytes,
            )

        return not self.stopped

    def _count(self, payload_b64: str) -> None:
        try:
            audio = base64.b64decode(payload_b64, validate=True)
        except (binascii.Error, ValueError):
            self.invalid_frames += 1
            logger.debug("媒体负载不是合法的 base64 | stream=%s", self.stream_sid)
            return
        self.packets += 1
        self.payload_bytes += len(audio)
