"""
tests.test_connection
~~~~~~~~~~~~~~~~~~~~~

连接句柄单元测试。
"""
from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from roomcast.core.errors import DeliveryFailure
from roomcast.services.connection import WebSocketConnection


def mock_websocket(
    client_state: WebSocketState = WebSocketState.CONNECTED,
    application_state: WebSocketState = WebSocketState.CONNECTED,
) -> MagicMock:
    ws = MagicMock()
    ws.client_state = client_state
    ws.application_state = application_state
    ws.send_text = AsyncMock()
    ws.send_bytes = AsyncMock()
    ws.close = AsyncMock()
    return ws


class TestFakeConnection:
    """Connection 基类的公共行为。"""

    @pytest.mark.asyncio
    async def test_send_to_closed_connection_returns_false(self, make_connection) -> None:
        conn = make_connection("a", is_open=False)

        assert await conn.send("hi") is False
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_send_propagates_transport_error(self, make_connection) -> None:
        conn = make_connection("a", fail=True)

        with pytest.raises(ConnectionResetError):
            await conn.send("hi")

    @pytest.mark.asyncio
    async def test_close_is_noop_when_already_closed(self, make_connection) -> None:
        conn = make_connection("a")
        await conn.close(code=1008, reason="bye")
        await conn.close(code=1000)

        assert conn.closed_with == (1008, "bye")


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


class TestOutboundWriter:
    """启动写协程后，发送经连接自己的队列异步写出。"""

    @pytest.mark.asyncio
    async def test_send_returns_before_slow_transport_finishes(self, make_connection) -> None:
        gate = asyncio.Event()
        conn = make_connection("a", gate=gate)
        conn.start_writer()
        try:
            assert await asyncio.wait_for(conn.send("one"), timeout=1) is True
            assert await asyncio.wait_for(conn.send("two"), timeout=1) is True
            assert conn.sent == []

            gate.set()
            await _settle()
            assert conn.sent == ["one", "two"]
        finally:
            await conn.stop_writer()

    @pytest.mark.asyncio
    async def test_full_queue_raises_delivery_failure(self, make_connection) -> None:
        conn = make_connection("a", gate=asyncio.Event())
        conn.start_writer(maxsize=1)
        try:
            await conn.send("one")
            with pytest.raises(DeliveryFailure):
                await conn.send("two")
        finally:
            await conn.stop_writer()

    @pytest.mark.asyncio
    async def test_transport_error_is_logged_and_writer_keeps_going(self, make_connection, caplog) -> None:
        conn = make_connection("a", fail=True)
        conn.start_writer()
        try:
            with caplog.at_level(logging.WARNING, logger="roomcast.services.connection"):
                assert await conn.send("lost") is True
                await _settle()
            assert "消息写出失败" in caplog.text

            conn.fail = False
            await conn.send("kept")
            await _settle()
            assert conn.sent == ["kept"]
        finally:
            await conn.stop_writer()

    @pytest.mark.asyncio
    async def test_close_waits_for_queued_messages(self, make_connection) -> None:
        conn = make_connection("a")
        conn.start_writer()

        await conn.send("bye")
        await conn.close(code=1008, reason="Invalid room ID")
        assert await conn.send("after close") is False
        await conn.stop_writer()

        assert conn.sent == ["bye"]
        assert conn.closed_with == (1008, "Invalid room ID")


class TestWebSocketConnection:
    """WebSocketConnection 对 FastAPI WebSocket 的包装。"""

    @pytest.mark.asyncio
    async def test_text_and_bytes_use_matching_frames(self) -> None:
        ws = mock_websocket()
        conn = WebSocketConnection(ws)

        assert await conn.send("hello") is True
        assert await conn.send(b"\x00\x01") is True

        ws.send_text.assert_awaited_once_with("hello")
        ws.send_bytes.assert_awaited_once_with(b"\x00\x01")

    @pytest.mark.parametrize(
        ("client_state", "application_state"),
        [
            (WebSocketState.DISCONNECTED, WebSocketState.CONNECTED),
            (WebSocketState.CONNECTED, WebSocketState.DISCONNECTED),
            (WebSocketState.CONNECTING, WebSocketState.CONNECTING),
        ],
    )
    @pytest.mark.asyncio
    async def test_not_open_unless_both_sides_connected(self, client_state, application_state) -> None:
        ws = mock_websocket(client_state, application_state)
        conn = WebSocketConnection(ws)

        assert conn.is_open is False
        assert await conn.send("hello") is False
        ws.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_forwards_code_and_reason(self) -> None:
        ws = mock_websocket()
        conn = WebSocketConnection(ws)

        await conn.close(code=1008, reason="Invalid room ID")

        ws.close.assert_awaited_once_with(code=1008, reason="Invalid room ID")

    def test_connection_ids_are_unique(self) -> None:
        a = WebSocketConnection(mock_websocket())
        b = WebSocketConnection(mock_websocket())

        assert a.connection_id != b.connection_id
