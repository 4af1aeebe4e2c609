"""
roomcast.services.channel_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 维护 room_id → 成员连接集合 的映射。

生命周期规则:
  - 首次 ``join`` 未知房间时自动创建（客户端无需先显式创建）。
  - ``leave`` 使成员数归零时，在同一临界区内立即销毁房间。
  - 一个连接同一时刻最多属于一个房间，加入新房间会先离开旧房间。

并发模型:
  所有变更与读取都在同一把 ``asyncio.Lock`` 下进行；广播在锁内拍下成员快照，
  释放锁之后再并发发送，慢连接不会拖住注册表。
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from roomcast.core.logging import get_logger
from roomcast.schemas.relay import ChannelInfo
from roomcast.services.broadcaster import BroadcastResult, FanoutBroadcaster
from roomcast.services.connection import Connection, Payload

logger = get_logger(__name__)


@dataclass(eq=False)
class Channel:
    """一个房间实体。

    Attributes:
        channel_id: 房间唯一标识。
        members: 当前在线的连接（非拥有引用）。
        created_at: 创建时间（UTC）。
    """

    channel_id: str
    members: set[Connection] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def member_count(self) -> int:
        return len(self.members)

    def info(self) -> ChannelInfo:
        """返回房间摘要信息。"""
        return ChannelInfo(room_id=self.channel_id, member_count=self.member_count)


class ChannelRegistry:
    """房间注册表，进程内唯一，由 ``RelayHub`` 构造并持有。"""

    def __init__(self, broadcaster: FanoutBroadcaster | None = None) -> None:
        self.broadcaster: FanoutBroadcaster = broadcaster or FanoutBroadcaster()
        self._channels: dict[str, Channel] = {}
        self._membership: dict[Connection, str] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def new_channel_id() -> str:
        """生成一个新的房间 ID。"""
        return str(uuid.uuid4())

    # ── 变更 ──────────────────────────────────────────────────────────

    async def create(self, channel_id: str) -> None:
        """显式创建房间；已存在时为空操作。"""
        async with self._lock:
            self._ensure_channel(channel_id)

    async def join(self, channel_id: str, connection: Connection) -> bool:
        """把连接加入房间，房间不存在时自动创建。

        Returns:
            加入成功返回 ``True``；仅当 ``channel_id`` 为空导致房间无法创建时返回 ``False``。
        """
        async with self._lock:
            channel = self._ensure_channel(channel_id) if channel_id else None
            if channel is None:
                logger.warning("加入房间失败 | room=%r | conn=%s", channel_id, connection.connection_id)
                return False

            current = self._membership.get(connection)
            if current is not None and current != channel_id:
                logger.info(
                    "连接切换房间 | conn=%s | %s -> %s",
                    connection.connection_id, current, channel_id,
                )
                self._remove_member(current, connection)

            channel.members.add(connection)
            self._membership[connection] = channel_id
            logger.info(
                "👤 连接加入房间 | room=%s | conn=%s | 在线: %d",
                channel_id, connection.connection_id, channel.member_count,
            )
            return True

    async def leave(self, channel_id: str, connection: Connection) -> None:
        """把连接移出房间；连接不在房间内时为空操作。成员归零时立即销毁房间。"""
        async with self._lock:
            self._remove_member(channel_id, connection)

    # ── 广播 ──────────────────────────────────────────────────────────

    async def broadcast_detailed(
        self,
        channel_id: str,
        message: Payload,
        exclude: Connection | None = None,
    ) -> BroadcastResult:
        """向房间内除 ``exclude`` 外的所有成员广播，返回逐成员的投递结果。

        房间不存在时记录日志并返回空结果，不抛异常。
        """
        async with self._lock:
            channel = self._channels.get(channel_id)
            snapshot = tuple(channel.members) if channel is not None else None

        if snapshot is None:
            logger.warning("广播目标房间不存在 | room=%s", channel_id)
            return BroadcastResult()

        result = await self.broadcaster.fan_out(snapshot, message, exclude=exclude)
        logger.debug(
            "📢 广播完成 | room=%s | 成员: %d | 成功: %d | 跳过: %d | 失败: %d",
            channel_id, len(snapshot), result.delivered_count,
            len(result.skipped), len(result.failed),
        )
        return result

    async def broadcast(
        self,
        channel_id: str,
        message: Payload,
        exclude: Connection | None = None,
    ) -> int:
        """向房间广播并返回成功投递的成员数。"""
        result = await self.broadcast_detailed(channel_id, message, exclude=exclude)
        return result.delivered_count

    # ── 查询 ──────────────────────────────────────────────────────────

    async def info(self, channel_id: str) -> ChannelInfo | None:
        """返回房间摘要；房间不存在时返回 ``None``。"""
        async with self._lock:
            channel = self._channels.get(channel_id)
            return channel.info() if channel is not None else None

    async def list_all(self) -> list[ChannelInfo]:
        """列出所有房间的摘要信息，顺序无意义。"""
        async with self._lock:
            return [channel.info() for channel in self._channels.values()]

    async def channel_of(self, connection: Connection) -> str | None:
        """返回连接当前所在的房间 ID。"""
        async with self._lock:
            return self._membership.get(connection)

    # ── 内部（调用方必须已持有锁）────────────────────────────────────

    def _ensure_channel(self, channel_id: str) -> Channel:
        channel = self._channels.get(channel_id)
        if channel is None:
            channel = Channel(channel_id=channel_id)
            self._channels[channel_id] = channel
            logger.info("🏠 房间已创建 | room=%s", channel_id)
        return channel

    def _remove_member(self, channel_id: str, connection: Connection) -> None:
        channel = self._channels.get(channel_id)
        if channel is None or connection not in channel.members:
            return

        channel.members.discard(connection)
        if self._membership.get(connection) == channel_id:
            del self._membership[connection]
        logger.info(
            "👋 连接离开房间 | room=%s | conn=%s | 剩余: %d",
            channel_id, connection.connection_id, channel.member_count,
        )

        if not channel.members:
            del self._channels[channel_id]
            logger.info("🗑️ 房间已销毁 | room=%s", channel_id)
