"""
roomcast.services.direct_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

定向注册表 —— 维护 endpoint_id → 当前连接 的一对一映射，用于点对点投递。

同一 endpoint_id 后绑定的连接覆盖先绑定的（last-writer-wins）：
被顶替的旧连接仍然存活于传输层，但已无法被寻址。
"""
from __future__ import annotations

import asyncio
from enum import Enum

from roomcast.core.logging import get_logger
from roomcast.services.connection import Connection

logger = get_logger(__name__)


class DeliveryOutcome(str, Enum):
    """一次定向投递的结果。"""

    DELIVERED = "delivered"
    RECIPIENT_UNAVAILABLE = "recipient_unavailable"
    FAILED = "failed"


def format_direct_message(from_id: str, body: str) -> str:
    """把定向消息包装为投递给接收方的文本。"""
    return f"📩 Message from {from_id}: {body}"


class DirectRegistry:
    """定向注册表，进程内唯一，由 ``RelayHub`` 构造并持有。"""

    def __init__(self) -> None:
        self._endpoints: dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def bind(self, endpoint_id: str, connection: Connection) -> Connection | None:
        """绑定端点到连接，无条件覆盖已有绑定。

        Returns:
            被顶替的旧连接（若有且不是同一连接），否则 ``None``。
        """
        async with self._lock:
            previous = self._endpoints.get(endpoint_id)
            self._endpoints[endpoint_id] = connection

        logger.info("✅ 端点已上线 | user=%s | conn=%s", endpoint_id, connection.connection_id)
        if previous is None or previous is connection:
            return None

        logger.warning(
            "端点被新连接顶替 | user=%s | old=%s | new=%s",
            endpoint_id, previous.connection_id, connection.connection_id,
        )
        return previous

    async def unbind(self, endpoint_id: str, connection: Connection | None = None) -> bool:
        """移除端点绑定。

        Args:
            endpoint_id: 端点 ID。
            connection: 若提供，则只有当前绑定仍指向该连接时才移除，
                避免被顶替的旧连接在断开时误删新连接的绑定。

        Returns:
            是否真的移除了绑定。
        """
        async with self._lock:
            current = self._endpoints.get(endpoint_id)
            if current is None or (connection is not None and current is not connection):
                return False
            del self._endpoints[endpoint_id]

        logger.info("❌ 端点已下线 | user=%s | conn=%s", endpoint_id, current.connection_id)
        return True

    async def resolve(self, endpoint_id: str) -> Connection | None:
        """返回端点当前绑定的连接。"""
        async with self._lock:
            return self._endpoints.get(endpoint_id)

    async def list_endpoints(self) -> list[str]:
        """列出当前所有已绑定的端点 ID。"""
        async with self._lock:
            return list(self._endpoints)

    async def deliver(self, from_id: str, to_id: str, body: str) -> DeliveryOutcome:
        """把 ``body`` 以 ``from_id`` 的名义投递给 ``to_id``，不重试。

        目标不存在或未打开时返回 ``RECIPIENT_UNAVAILABLE``，注册表不做任何修改；
        目标发送抛异常时记录日志并返回 ``FAILED``。
        """
        target = await self.resolve(to_id)
        if target is None or not target.is_open:
            logger.info("定向投递目标不在线 | from=%s | to=%s", from_id, to_id)
            return DeliveryOutcome.RECIPIENT_UNAVAILABLE

        try:
            sent = await target.send(format_direct_message(from_id, body))
        except Exception as e:
            logger.warning(
                "定向投递失败 | from=%s | to=%s | %s", from_id, to_id, e, exc_info=True,
            )
            return DeliveryOutcome.FAILED

        if not sent:
            return DeliveryOutcome.RECIPIENT_UNAVAILABLE
        logger.debug("定向投递成功 | from=%s | to=%s", from_id, to_id)
        return DeliveryOutcome.DELIVERED
