"""
tests.test_api
~~~~~~~~~~~~~~

HTTP / WebSocket 接口集成测试（FastAPI TestClient）。

TestClient 必须以 ``with`` 方式使用：lifespan 中创建的 ``RelayHub``
与所有 WebSocket 会话共享同一个事件循环。
"""
from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient

from roomcast.api.deps import get_twilio_client, get_twilio_settings
from roomcast.core.rate_limit import limiter
from roomcast.integrations.twilio_client import TwilioConfig
from roomcast.main import app


@pytest.fixture()
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def wait_for_member_count(client: TestClient, room_id: str, expected: int) -> int:
    """断开连接在服务端异步处理，轮询直到成员数达到预期。"""
    count = -1
    for _ in range(100):
        resp = client.get(f"/api/room/{room_id}")
        count = resp.json()["data"]["member_count"] if resp.status_code == 200 else 0
        if count == expected:
            break
        time.sleep(0.01)
    return count


class FakeTwilioCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid


class FakeTwilioCalls:
    def __init__(self) -> None:
        self.requests: list[dict] = []

    def create(self, *, to: str, from_: str, url: str):
        self.requests.append({"to": to, "from_": from_, "url": url})
        return FakeTwilioCall("CA123")


class FakeTwilioClient:
    def __init__(self) -> None:
        self.calls = FakeTwilioCalls()


# ── REST ──────────────────────────────────────────────────────────────

class TestRoomEndpoints:

    def test_create_room_returns_listed_room(self, client: TestClient) -> None:
        resp = client.post("/api/create-room", json={"user_id": "user123"})

        assert resp.status_code == 200
        body = resp.json()
        room_id = body["data"]["room_id"]
        assert body["code"] == 200
        assert body["data"]["message"] == "Room created"

        rooms = client.get("/api/rooms").json()["data"]
        assert {"room_id": room_id, "member_count": 0} in rooms

    def test_create_room_requires_user_id(self, client: TestClient) -> None:
        resp = client.post("/api/create-room", json={})

        assert resp.status_code == 422

    def test_join_room_returns_websocket_path(self, client: TestClient) -> None:
        resp = client.post("/api/join-room", json={"room_id": "abc123"})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["websocket_path"] == "/ws/rooms?room_id=abc123"
        assert "abc123" in data["message"]

    def test_unknown_room_is_404(self, client: TestClient) -> None:
        resp = client.get("/api/room/ghost")

        assert resp.status_code == 404
        assert resp.json() == {"code": 404, "data": None, "msg": "Room not found"}

    def test_health_reports_hub_stats(self, client: TestClient) -> None:
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["hub"] == {"rooms": 0, "room_members": 0, "direct_endpoints": 0}
        assert "X-Request-ID" in resp.headers

    def test_http_rate_limit(self, client: TestClient) -> None:
        limiter.reset()
        limiter.enabled = True
        try:
            statuses = [
                client.post("/api/create-room", json={"user_id": "u"}).status_code
                for _ in range(8)
            ]
        finally:
            limiter.enabled = False
            limiter.reset()

        assert statuses[0] == 200
        assert 429 in statuses


# ── WebSocket：房间模式 ───────────────────────────────────────────────

class TestRoomWebSocket:

    def test_room_scenario(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/rooms?room_id=room-x") as w1:
            assert w1.receive_text() == "✅ Joined room: room-x"

            with client.websocket_connect("/ws/rooms?room_id=room-x") as w2:
                assert w2.receive_text() == "✅ Joined room: room-x"
                assert wait_for_member_count(client, "room-x", 2) == 2

                w1.send_text("hello")
                assert w2.receive_text() == "hello"

                # W1 的下一条消息是 W2 的回复，而不是自己的回声
                w2.send_text("hi back")
                assert w1.receive_text() == "hi back"

            assert wait_for_member_count(client, "room-x", 1) == 1

        assert wait_for_member_count(client, "room-x", 0) == 0
        rooms = client.get("/api/rooms").json()["data"]
        assert "room-x" not in [room["room_id"] for room in rooms]

    def test_binary_frames_are_relayed(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/rooms?room_id=bin") as w1:
            w1.receive_text()
            with client.websocket_connect("/ws/rooms?room_id=bin") as w2:
                w2.receive_text()
                w1.send_bytes(b"\x00\x01\x02")
                assert w2.receive_bytes() == b"\x00\x01\x02"

    @pytest.mark.parametrize("path", ["/ws/rooms", "/ws/rooms?room_id="])
    def test_missing_room_id_is_rejected(self, client: TestClient, path: str) -> None:
        with client.websocket_connect(path) as ws:
            assert ws.receive_text() == "❌ Invalid room ID"
            message = ws.receive()
            assert message["type"] == "websocket.close"
            assert message["code"] == 1008

        assert client.get("/api/rooms").json()["data"] == []
        assert client.get("/health").json()["hub"]["direct_endpoints"] == 0


# ── WebSocket：定向模式 ───────────────────────────────────────────────

class TestDirectWebSocket:

    def test_direct_messages(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/direct?user_id=alice") as alice, \
             client.websocket_connect("/ws/direct?user_id=bob") as bob:
            assert alice.receive_text() == "👋 Hello alice, you are connected"
            assert bob.receive_text() == "👋 Hello bob, you are connected"

            alice.send_text(json.dumps({"to": "bob", "message": "hi"}))
            assert bob.receive_text() == "📩 Message from alice: hi"

            alice.send_text("not json")
            assert alice.receive_text() == "❌ Invalid message format"

            alice.send_text(json.dumps({"to": "carol", "message": "hi"}))
            assert alice.receive_text() == "❌ User carol is not online"

    def test_missing_user_id_is_rejected(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/direct") as ws:
            assert ws.receive_text() == "❌ Missing user_id"
            message = ws.receive()
            assert message["type"] == "websocket.close"
            assert message["code"] == 1008

        assert client.get("/health").json()["hub"]["direct_endpoints"] == 0


# ── 电话 ──────────────────────────────────────────────────────────────

class TestTelephony:

    def test_call_uses_twilio_client(self, client: TestClient) -> None:
        fake = FakeTwilioClient()
        config = TwilioConfig(
            account_sid="AC1", auth_token="token", from_number="+15550000000",
            voice_url="http://demo.twilio.com/docs/voice.xml",
        )
        app.dependency_overrides[get_twilio_settings] = lambda: config
        app.dependency_overrides[get_twilio_client] = lambda: fake

        resp = client.post("/api/call", json={"number": "+15551234567"})

        assert resp.status_code == 200
        assert resp.json()["data"] == {"sid": "CA123"}
        assert fake.calls.requests == [{
            "to": "+15551234567",
            "from_": "+15550000000",
            "url": "http://demo.twilio.com/docs/voice.xml",
        }]

    def test_call_without_configuration_is_503(self, client: TestClient, monkeypatch) -> None:
        from roomcast.core import config as config_module

        monkeypatch.setattr(config_module.settings, "TWILIO_ACCOUNT_SID", None)

        resp = client.post("/api/call", json={"number": "+15551234567"})

        assert resp.status_code == 503
        assert resp.json()["code"] == 503

    def test_media_stream_closes_after_stop(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/media") as ws:
            ws.send_text(json.dumps({"event": "connected"}))
            ws.send_text(json.dumps({"event": "media", "streamSid": "MZ1", "media": {"payload": "AAAA"}}))
            ws.send_text(json.dumps({"event": "stop", "streamSid": "MZ1"}))
            message = ws.receive()
            assert message["type"] == "websocket.close"
