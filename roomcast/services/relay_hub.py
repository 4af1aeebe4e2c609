"""
roomcast.services.relay_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~

中转中心 —— 进程内唯一，持有所有注册表与生命周期控制器。

在 FastAPI lifespan 中构造一次并挂载到 ``app.state.relay_hub``，
所有 HTTP / WebSocket 处理器都通过它访问共享状态，不存在模块级全局注册表。
"""
from __future__ import annotations

from roomcast.core.logging import get_logger
from roomcast.schemas.relay import HubStats
from roomcast.services.broadcaster import FanoutBroadcaster
from roomcast.services.channel_registry import ChannelRegistry
from roomcast.services.direct_registry import DirectRegistry
from roomcast.services.presence import PresenceController

logger = get_logger(__name__)


class RelayHub:
    """中转中心。

    - ``channels``  → 房间注册表（含扇出广播器）
    - ``directory`` → 定向注册表
    - ``presence``  → 连接生命周期控制器

    Attributes:
        channels: 房间注册表。
        directory: 定向注册表。
        presence: 生命周期控制器。
    """

    def __init__(self, close_superseded: bool = False) -> None:
        self.channels = ChannelRegistry(broadcaster=FanoutBroadcaster())
        self.directory = DirectRegistry()
        self.presence = PresenceController(
            channels=self.channels,
            directory=self.directory,
            close_superseded=close_superseded,
        )
        logger.debug("中转中心已初始化 | close_superseded=%s", close_superseded)

    async def stats(self) -> HubStats:
        """返回当前房间与端点数量的快照。"""
        rooms = await self.channels.list_all()
        endpoints = await self.directory.list_endpoints()
        return HubStats(
            rooms=len(rooms),
            room_members=sum(room.member_count for room in rooms),
            direct_endpoints=len(endpoints),
        )
