"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 提供内存中的假连接，使注册表与广播逻辑可以脱离真实
WebSocket 进行测试。
"""
from __future__ import annotations

import asyncio
import os
from collections.abc import Callable

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from roomcast.services.connection import Connection, Payload  # noqa: E402


class FakeConnection(Connection):
    """记录所有发送内容的假连接。

    Args:
        name: 连接 ID。
        is_open: 初始是否处于打开状态。
        fail: 发送时是否抛出传输层异常。
        gate: 若提供，发送会一直等到该事件被 set（模拟慢消费者）。
    """

    def __init__(
        self,
        name: str,
        *,
        is_open: bool = True,
        fail: bool = False,
        gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__(connection_id=name)
        self._open = is_open
        self.fail = fail
        self.gate = gate
        self.sent: list[Payload] = []
        self.closed_with: tuple[int, str] | None = None

    @property
    def is_open(self) -> bool:
        return self._open

    async def _transmit(self, payload: Payload) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionResetError(f"{self.connection_id} is broken")
        self.sent.append(payload)

    async def _shutdown(self, code: int, reason: str) -> None:
        self._open = False
        self.closed_with = (code, reason)

    def drop(self) -> None:
        """模拟传输层在服务端不知情时断开。"""
        self._open = False


@pytest.fixture()
def make_connection() -> Callable[..., FakeConnection]:
    """返回 ``FakeConnection`` 的构造函数。"""
    return FakeConnection
