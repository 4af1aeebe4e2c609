"""
roomcast.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

扇出广播器 —— 把一条消息并发投递给一组连接。

两条不变量:
  - 发送者不会收到自己的回声（``exclude``）。
  - 单个成员的失败或慢速不会阻塞其它成员：所有发送并发执行，
    每个成员的异常被单独捕获并记录。
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field

from roomcast.core.logging import get_logger
from roomcast.services.connection import Connection, Payload

logger = get_logger(__name__)


@dataclass
class BroadcastResult:
    """一次广播中每个成员的投递结果（按连接 ID 记录）。"""

    delivered: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    excluded: bool = False

    @property
    def delivered_count(self) -> int:
        return len(self.delivered)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


class FanoutBroadcaster:
    """无状态的扇出广播器，由 ``ChannelRegistry`` 持有。"""

    async def fan_out(
        self,
        members: Iterable[Connection],
        message: Payload,
        exclude: Connection | None = None,
    ) -> BroadcastResult:
        """向 ``members`` 中除 ``exclude`` 外的所有打开的连接投递 ``message``。

        Args:
            members: 成员快照（调用方负责在锁内拍下快照）。
            message: 原样转发的文本或二进制负载。
            exclude: 需要跳过的连接，通常是发送者自身。

        Returns:
            各成员的投递结果。
        """
        result = BroadcastResult()
        targets: list[Connection] = []

        for member in members:
            if member is exclude:
                result.excluded = True
                logger.debug("跳过发送者 | conn=%s", member.connection_id)
            elif not member.is_open:
                result.skipped.append(member.connection_id)
                logger.debug("跳过已关闭的连接 | conn=%s", member.connection_id)
            else:
                targets.append(member)

        outcomes = await asyncio.gather(
            *(member.send(message) for member in targets),
            return_exceptions=True,
        )

        for member, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                result.failed.append(member.connection_id)
                logger.warning(
                    "消息投递失败 | conn=%s | %s",
                    member.connection_id, outcome,
                    exc_info=outcome,
                )
            elif outcome:
                result.delivered.append(member.connection_id)
            else:
                # 快照之后、发送之前连接已关闭
                result.skipped.append(member.connection_id)

        return result
