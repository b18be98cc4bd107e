"""
WebSocket connection manager tests
WebSocket连接管理器测试
"""

import json

import pytest

from party_game.api.v1.endpoints.websocket import handle_websocket_message
from party_game.websocket.connection_manager import ConnectionManager, connection_key, connection_manager


class FakeWebSocket:
    """Minimal stand-in for starlette's WebSocket"""

    def __init__(self, fail_on_send=False):
        self.accepted = False
        self.closed = None
        self.sent = []
        self.fail_on_send = fail_on_send

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.fail_on_send:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(text))

    async def close(self, code=1000, reason=None):
        self.closed = (code, reason)


class FakeSyncClient:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.fixture
async def manager():
    manager = ConnectionManager()
    yield manager
    await manager.close_all()


class TestConnectionManager:

    def test_connection_key(self):
        assert connection_key("u1", "g1", "host") == "host:g1:u1"

    async def test_connect_and_broadcast(self, manager):
        host_ws, player_ws = FakeWebSocket(), FakeWebSocket()
        await manager.connect("host:g1:u1", host_ws, "g1", user_id="u1", role="host")
        await manager.connect("player:g1:u2", player_ws, "g1", user_id="u2")

        assert host_ws.accepted and player_ws.accepted
        assert manager.get_connection_count() == 2
        assert manager.get_game_count() == 1

        sent = await manager.broadcast_to_game("g1", {"type": "notice"}, exclude="host:g1:u1")
        assert sent == 1
        assert player_ws.sent == [{"type": "notice"}]
        assert host_ws.sent == []

    async def test_disconnect_closes_sync_client(self, manager):
        ws, client = FakeWebSocket(), FakeSyncClient()
        await manager.connect("player:g1:u1", ws, "g1", user_id="u1")
        manager.attach_sync_client("player:g1:u1", client)

        await manager.disconnect("player:g1:u1", "bye")
        assert client.closed
        assert ws.closed == (1000, "bye")
        assert manager.get_game_count() == 0
        assert not manager.is_connected("player:g1:u1")

    async def test_reconnect_replaces_old_socket(self, manager):
        old, new = FakeWebSocket(), FakeWebSocket()
        await manager.connect("player:g1:u1", old, "g1")
        await manager.connect("player:g1:u1", new, "g1")

        assert old.closed is not None
        assert manager.get_game_connections("g1") == ["player:g1:u1"]
        assert manager.active_connections["player:g1:u1"] is new

    async def test_stale_handler_cleanup_keeps_reconnected_socket(self, manager):
        key = "player:g1:u1"
        old, new = FakeWebSocket(), FakeWebSocket()
        old_client, new_client = FakeSyncClient(), FakeSyncClient()
        await manager.connect(key, old, "g1")
        assert manager.attach_sync_client(key, old_client, websocket=old)

        await manager.connect(key, new, "g1")
        assert old_client.closed
        assert manager.attach_sync_client(key, new_client, websocket=new)

        # 旧连接的处理器随后退出
        assert await manager.disconnect(key, "Connection closed", websocket=old) is False
        assert new.closed is None
        assert not new_client.closed
        assert manager.is_connected(key)
        assert manager.get_game_connections("g1") == [key]

        assert await manager.disconnect(key, "Connection closed", websocket=new) is True
        assert new_client.closed
        assert not manager.is_connected(key)

    async def test_stale_handler_cannot_attach_client(self, manager):
        key = "player:g1:u1"
        old, new = FakeWebSocket(), FakeWebSocket()
        await manager.connect(key, old, "g1")
        await manager.connect(key, new, "g1")

        stale = FakeSyncClient()
        assert manager.attach_sync_client(key, stale, websocket=old) is False
        assert key not in manager.sync_clients

    async def test_offline_messages_are_queued_and_flushed(self, manager):
        assert await manager.send("player:g1:u1", {"type": "snapshot"}) is False
        ws = FakeWebSocket()
        await manager.connect("player:g1:u1", ws, "g1")
        assert [m["type"] for m in ws.sent] == ["snapshot"]

    async def test_failed_send_drops_connection(self, manager):
        ws = FakeWebSocket(fail_on_send=True)
        await manager.connect("player:g1:u1", ws, "g1")
        assert await manager.send("player:g1:u1", {"type": "snapshot"}) is False
        assert not manager.is_connected("player:g1:u1")

    async def test_connection_limit(self, manager):
        manager.max_connections = 1
        assert await manager.connect("player:g1:u1", FakeWebSocket(), "g1")
        assert not await manager.connect("player:g1:u2", FakeWebSocket(), "g1")


class RecordingSyncClient(FakeSyncClient):
    def __init__(self):
        super().__init__()
        self.game_id = "g1"
        self.resynced = 0
        self.identified = []

    async def resync(self):
        self.resynced += 1

    async def identify(self, participant_id):
        self.identified.append(participant_id)


class TestMessageHandling:
    """客户端消息处理"""

    @pytest.fixture
    async def connected(self):
        ws = FakeWebSocket()
        await connection_manager.connect("player:g1:u1", ws, "g1", user_id="u1")
        yield ws
        await connection_manager.disconnect("player:g1:u1")

    async def test_ping_and_resync(self, connected):
        client = RecordingSyncClient()
        await handle_websocket_message("player:g1:u1", client, None, "u1", {"type": "ping"})
        await handle_websocket_message("player:g1:u1", client, None, "u1", {"type": "resync"})

        assert connected.sent == [{"type": "pong"}]
        assert client.resynced == 1

    async def test_unknown_message_type(self, connected):
        await handle_websocket_message("player:g1:u1", RecordingSyncClient(), None, "u1", {"type": "dance"})
        assert connected.sent[0]["type"] == "error"

    async def test_identify_without_identity(self, connected):
        client = RecordingSyncClient()
        await handle_websocket_message("player:g1:u1", client, None, None, {"type": "identify"})
        assert client.identified == []
        assert connected.sent[0]["type"] == "error"
