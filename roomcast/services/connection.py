"""
roomcast.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接句柄 —— 对一条存活的双向消息流端点的抽象。

注册表只持有句柄的非拥有引用：连接的生命周期由传输层负责，
注册表在收到关闭通知时同步移除句柄，绝不假设句柄一直有效。

启动写协程（``start_writer``）后，``send`` 只把负载放入该连接自己的发送队列，
由写协程按序写出：一个有背压的慢连接只会拖慢自己的接收，
不会阻塞发送者后续消息到达其它成员。
"""
from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from roomcast.core.errors import DeliveryFailure
from roomcast.core.logging import get_logger

logger = get_logger(__name__)

Payload = str | bytes


@dataclass(frozen=True)
class _CloseRequest:
    code: int
    reason: str


class Connection(ABC):
    """连接句柄基类。

    Attributes:
        connection_id: 连接唯一标识，仅用于日志与限流。
    """

    def __init__(self, connection_id: str | None = None) -> None:
        self.connection_id: str = connection_id or uuid.uuid4().hex[:12]
        self._outbox: asyncio.Queue[Payload | _CloseRequest] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._closing: bool = False

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """传输层当前是否处于可发送状态。"""

    @abstractmethod
    async def _transmit(self, payload: Payload) -> None:
        """把负载写到传输层，失败时直接抛出传输层异常。"""

    @abstractmethod
    async def _shutdown(self, code: int, reason: str) -> None:
        """关闭传输层。"""

    # ── 写协程 ────────────────────────────────────────────────────────

    def start_writer(self, maxsize: int = 256) -> None:
        """为该连接创建发送队列与写协程；必须在事件循环中调用。"""
        if self._writer is not None:
            return
        self._outbox = asyncio.Queue(maxsize=maxsize)
        self._writer = asyncio.create_task(self._drain(), name=f"writer-{self.connection_id}")

    async def stop_writer(self, drain_timeout: float = 5.0) -> None:
        """停止写协程。

        已请求关闭时最多等待 ``drain_timeout`` 秒让剩余消息与关闭帧写完，
        超时或未请求关闭则直接取消。
        """
        writer = self._writer
        if writer is None:
            return
        if self._closing:
            await asyncio.wait({writer}, timeout=drain_timeout)
        if not writer.done():
            writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        finally:
            self._writer = None
            self._outbox = None

    async def _drain(self) -> None:
        assert self._outbox is not None
        outbox = self._outbox
        while True:
            item = await outbox.get()
            if isinstance(item, _CloseRequest):
                if self.is_open:
                    try:
                        await self._shutdown(item.code, item.reason)
                    except Exception as e:
                        logger.warning("关闭连接失败 | conn=%s | %s", self.connection_id, e)
                return
            try:
                await self._transmit(item)
            except Exception as e:
                logger.warning("消息写出失败 | conn=%s | %s", self.connection_id, e, exc_info=True)

    # ── 发送 / 关闭 ───────────────────────────────────────────────────

    async def send(self, payload: Payload) -> bool:
        """向该端点发送一条消息。

        Returns:
            端点未打开时返回 ``False`` 且不触碰传输层；已写出或已入队返回 ``True``。

        Raises:
            DeliveryFailure: 发送队列已满。
            未启动写协程时，传输层异常原样抛给调用方。
        """
        if not self.is_open or self._closing:
            return False
        if self._outbox is None:
            await self._transmit(payload)
            return True
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull as e:
            raise DeliveryFailure(f"Outbound queue full for {self.connection_id}") from e
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """关闭连接；已关闭时为空操作。有写协程时关闭帧排在已入队消息之后。"""
        if not self.is_open or self._closing:
            return
        if self._outbox is None:
            await self._shutdown(code, reason)
            return
        self._closing = True
        try:
            self._outbox.put_nowait(_CloseRequest(code, reason))
        except asyncio.QueueFull:
            # 队列已满时放弃积压消息，直接关闭
            if self._writer is not None:
                self._writer.cancel()
            await self._shutdown(code, reason)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.connection_id}>"


class WebSocketConnection(Connection):
    """基于 FastAPI ``WebSocket`` 的连接句柄。

    ``str`` 负载以文本帧发送，``bytes`` 负载以二进制帧发送。
    """

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        super().__init__(connection_id)
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def _transmit(self, payload: Payload) -> None:
        if isinstance(payload, bytes):
            await self.websocket.send_bytes(payload)
        else:
            await self.websocket.send_text(payload)

    async def _shutdown(self, code: int, reason: str) -> None:
        await self.websocket.close(code=code, reason=reason)
