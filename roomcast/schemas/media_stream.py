"""
roomcast.schemas.media_stream
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Twilio Media Streams WebSocket 事件模型。

只解析计数所需的字段，其余字段忽略。
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MediaEventType = Literal["connected", "start", "media", "mark", "stop", "dtmf"]


class MediaStreamStart(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    call_sid: str | None = Field(default=None, alias="callSid")
    media_format: dict | None = Field(default=None, alias="mediaFormat")


class MediaStreamMedia(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payload: str = Field(..., description="base64 编码的音频负载")
    track: str | None = None
    chunk: str | None = None
    timestamp: str | None = None


class MediaStreamStop(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    call_sid: str | None = Field(default=None, alias="callSid")


class MediaStreamEvent(BaseModel):
    """单条 Media Streams 事件。"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    event: MediaEventType
    stream_sid: str | None = Field(default=None, alias="streamSid")
    start: MediaStreamStart | None = None
    media: MediaStreamMedia | None = None
    stop: MediaStreamStop | None = None
    reason: str | None = None
