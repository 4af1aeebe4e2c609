"""
roomcast.services.presence
~~~~~~~~~~~~~~~~~~~~~~~~~~

在线状态生命周期控制器 —— 编排加入 / 消息转发 / 离开的副作用。

每个连接的状态机::

    UNJOINED ──join──▶ JOINED ──close/error──▶ CLOSED（终态）

- 未提供标识（room_id / user_id）时发送拒绝消息并抛出 ``MissingIdentifier``，
  由调用方关闭连接，注册表不发生任何变更。
- ``leave`` 是幂等的：关闭与错误通知同时到达时只清理一次。
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from roomcast.core.errors import (
    DeliveryFailure,
    JoinRejected,
    MalformedMessage,
    MissingIdentifier,
    RecipientUnavailable,
    RelayError,
)
from roomcast.core.logging import get_logger
from roomcast.schemas.relay import DirectEnvelope
from roomcast.services.channel_registry import ChannelRegistry
from roomcast.services.connection import Connection, Payload
from roomcast.services.direct_registry import DeliveryOutcome, DirectRegistry

logger = get_logger(__name__)


class PresenceMode(str, Enum):
    CHANNEL = "channel"
    DIRECT = "direct"


class PresenceState(str, Enum):
    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"


@dataclass(eq=False)
class Presence:
    """单个连接在注册表中的在线记录。

    Attributes:
        connection: 对应的连接句柄。
        mode: 房间模式或定向模式。
        identifier: room_id 或 user_id。
        state: 当前生命周期状态。
    """

    connection: Connection
    mode: PresenceMode
    identifier: str
    state: PresenceState = PresenceState.UNJOINED


def parse_envelope(payload: Payload) -> DirectEnvelope:
    """把定向模式的原始负载解析为 ``DirectEnvelope``。

    Raises:
        MalformedMessage: 负载不是合法的 ``{"to": ..., "message": ...}`` JSON。
    """
    try:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return DirectEnvelope.model_validate_json(payload)
    except (ValidationError, UnicodeDecodeError) as e:
        raise MalformedMessage() from e


class PresenceController:
    """连接生命周期控制器，由 ``RelayHub`` 构造并持有。

    Attributes:
        channels: 房间注册表。
        directory: 定向注册表。
        close_superseded: 定向模式下同一 user_id 重连时是否关闭旧连接。
    """

    def __init__(
        self,
        channels: ChannelRegistry,
        directory: DirectRegistry,
        close_superseded: bool = False,
    ) -> None:
        self.channels = channels
        self.directory = directory
        self.close_superseded = close_superseded

    # ── 加入 ──────────────────────────────────────────────────────────

    async def join_channel(self, connection: Connection, channel_id: str | None) -> Presence:
        """房间模式：把新连接加入 ``channel_id`` 并发送确认消息。

        Raises:
            MissingIdentifier: 未提供 room_id。
            JoinRejected: 房间无法创建 / 加入。
        """
        if not channel_id or not channel_id.strip():
            await self._reject(connection, MissingIdentifier("Invalid room ID"))

        presence = Presence(connection=connection, mode=PresenceMode.CHANNEL, identifier=channel_id)
        if not await self.channels.join(channel_id, connection):
            await self._reject(connection, JoinRejected("Invalid room ID"))

        presence.state = PresenceState.JOINED
        await self._confirm(presence, f"✅ Joined room: {channel_id}")
        return presence

    async def join_direct(self, connection: Connection, endpoint_id: str | None) -> Presence:
        """定向模式：把新连接绑定到 ``endpoint_id`` 并发送问候消息。

        Raises:
            MissingIdentifier: 未提供 user_id。
        """
        if not endpoint_id or not endpoint_id.strip():
            await self._reject(connection, MissingIdentifier("Missing user_id"))

        presence = Presence(connection=connection, mode=PresenceMode.DIRECT, identifier=endpoint_id)
        previous = await self.directory.bind(endpoint_id, connection)
        presence.state = PresenceState.JOINED

        if previous is not None and self.close_superseded:
            await self._close_superseded(endpoint_id, previous)

        await self._confirm(presence, f"👋 Hello {endpoint_id}, you are connected")
        return presence

    # ── 消息 ──────────────────────────────────────────────────────────

    async def handle_message(self, presence: Presence, payload: Payload) -> None:
        """处理连接上收到的一条原始消息。

        房间模式下负载原样广播给房间内其它成员；定向模式下解析信封后点对点投递，
        失败只通知发送者，连接保持打开。
        """
        if presence.state is not PresenceState.JOINED:
            logger.debug("忽略非在线状态连接的消息 | conn=%s", presence.connection.connection_id)
            return

        if presence.mode is PresenceMode.CHANNEL:
            await self.channels.broadcast(presence.identifier, payload, exclude=presence.connection)
            return

        try:
            envelope = parse_envelope(payload)
        except MalformedMessage as e:
            logger.info("定向消息格式错误 | user=%s", presence.identifier)
            await self._notify(presence.connection, e)
            return

        outcome = await self.directory.deliver(presence.identifier, envelope.to, envelope.message)
        if outcome is DeliveryOutcome.RECIPIENT_UNAVAILABLE:
            await self._notify(presence.connection, RecipientUnavailable(f"User {envelope.to} is not online"))
        elif outcome is DeliveryOutcome.FAILED:
            await self._notify(presence.connection, DeliveryFailure(f"Failed to deliver message to {envelope.to}"))

    # ── 离开 ──────────────────────────────────────────────────────────

    async def leave(self, presence: Presence) -> bool:
        """连接关闭或出错时调用，只有第一次调用会真正清理注册表。

        Returns:
            本次调用是否执行了清理。
        """
        # 检查与置位之间没有 await，重复通知只会有一次通过
        if presence.state is PresenceState.CLOSED:
            return False
        was_joined = presence.state is PresenceState.JOINED
        presence.state = PresenceState.CLOSED

        if not was_joined:
            return False

        if presence.mode is PresenceMode.CHANNEL:
            await self.channels.leave(presence.identifier, presence.connection)
        else:
            await self.directory.unbind(presence.identifier, presence.connection)
        return True

    # ── 内部 ──────────────────────────────────────────────────────────

    async def _reject(self, connection: Connection, error: JoinRejected) -> None:
        logger.info("拒绝连接 | conn=%s | %s", connection.connection_id, error.detail)
        await self._notify(connection, error)
        raise error

    async def _confirm(self, presence: Presence, text: str) -> None:
        try:
            await presence.connection.send(text)
        except Exception:
            await self.leave(presence)
            raise

    async def _close_superseded(self, endpoint_id: str, previous: Connection) -> None:
        try:
            await previous.send(f"⚠️ {endpoint_id} connected from another session")
            await previous.close(code=1000, reason="superseded")
        except Exception as e:
            logger.warning(
                "关闭被顶替的连接失败 | user=%s | conn=%s | %s",
                endpoint_id, previous.connection_id, e,
            )

    @staticmethod
    async def _notify(connection: Connection, error: RelayError) -> None:
        await connection.send(f"❌ {error.detail}")
