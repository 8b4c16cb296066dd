"""
프레즌스 채널 어댑터 단위 테스트

이 모듈은 Socket.IO와 MQTT 채널의 연결, 송신 드롭, 수신 디스패치를 테스트합니다.
"""

import pytest
import asyncio
import json
from unittest.mock import AsyncMock, Mock, patch
import socketio
from aiomqtt import MqttError
from prometheus_client import REGISTRY

from sos_responder.adapters.mqtt_channel.channel import MqttPresenceChannel
from sos_responder.adapters.socketio_channel.channel import SocketIOPresenceChannel


def _dropped(transport: str) -> float:
    return REGISTRY.get_sample_value("sos_channel_emits_dropped_total", {"transport": transport}) or 0.0


def _sio_mock(connected: bool = True) -> Mock:
    sio = Mock()
    sio.connected = connected
    sio.connect = AsyncMock()
    sio.disconnect = AsyncMock()
    sio.emit = AsyncMock()
    return sio


class TestSocketIOChannel:
    """Socket.IO 채널 테스트"""

    async def test_connect_sends_bearer_token(self):
        channel = SocketIOPresenceChannel("http://server", token_provider=lambda: "tok")
        sio = _sio_mock(connected=False)

        with patch.object(channel, "_create_client", return_value=sio):
            await channel.connect()

        sio.connect.assert_awaited_once_with(
            "http://server",
            headers={"Authorization": "Bearer tok"},
            transports=["websocket"],
            socketio_path="socket.io",
        )

    async def test_connect_is_idempotent(self):
        channel = SocketIOPresenceChannel("http://server")
        sio = _sio_mock(connected=True)
        channel._sio = sio

        await channel.connect()

        sio.connect.assert_not_awaited()

    async def test_initial_failure_retries_in_background(self):
        """초기 연결 실패는 호출자에게 전파하지 않고 백그라운드 재시도"""
        channel = SocketIOPresenceChannel("http://server")
        sio = _sio_mock(connected=False)
        sio.connect.side_effect = socketio.exceptions.ConnectionError("refused")

        with patch.object(channel, "_create_client", return_value=sio):
            await channel.connect()

        assert channel._retry_task is not None
        assert not channel._retry_task.done()

        await channel.disconnect()
        assert channel._retry_task is None
        assert channel._sio is None

    async def test_background_retry_reuses_client(self):
        channel = SocketIOPresenceChannel("http://server")
        sio = _sio_mock(connected=False)
        sio.connect.side_effect = [socketio.exceptions.ConnectionError("refused"), None]

        with patch.object(channel, "_create_client", return_value=sio), \
                patch("sos_responder.adapters.socketio_channel.channel.exponential_backoff", new=AsyncMock()):
            await channel.connect()
            await channel._retry_task

        assert sio.connect.await_count == 2

    async def test_emit_when_disconnected_is_dropped(self):
        channel = SocketIOPresenceChannel("http://server")
        before = _dropped("socketio")

        await channel.emit("updateLocation", {"userId": "u"})

        assert _dropped("socketio") == before + 1

    async def test_emit_forwards_when_connected(self):
        channel = SocketIOPresenceChannel("http://server")
        channel._sio = _sio_mock(connected=True)

        await channel.emit("registerResponder", {"userId": "u", "coordinates": [1, 2]})

        channel._sio.emit.assert_awaited_once_with("registerResponder", {"userId": "u", "coordinates": [1, 2]})

    async def test_emit_failure_is_swallowed(self):
        channel = SocketIOPresenceChannel("http://server")
        channel._sio = _sio_mock(connected=True)
        channel._sio.emit.side_effect = socketio.exceptions.BadNamespaceError("/")

        await channel.emit("updateLocation", {})

    async def test_inbound_events_reach_subscribers(self):
        channel = SocketIOPresenceChannel("http://server")
        received = []
        token = channel.subscribe("newAlert", received.append)

        await channel._on_event("newAlert", {"_id": "a"})
        channel.unsubscribe(token)
        await channel._on_event("newAlert", {"_id": "b"})

        assert received == [{"_id": "a"}]

    async def test_disconnect_twice_is_safe(self):
        channel = SocketIOPresenceChannel("http://server")
        sio = _sio_mock()
        channel._sio = sio

        await channel.disconnect()
        await channel.disconnect()

        sio.disconnect.assert_awaited_once()


class TestMqttChannel:
    """MQTT 채널 테스트"""

    @pytest.fixture
    def channel(self):
        return MqttPresenceChannel("localhost", 1883, topic_prefix="sos/")

    def test_topics(self, channel):
        assert channel.events_topic == "sos/events/#"
        assert channel.presence_topic("responderOffline") == "sos/presence/responderOffline"

    @pytest.mark.parametrize("topic,expected", [
        ("sos/events/newAlert", "newAlert"),
        ("sos/events/alerts:updated", "alerts:updated"),
        ("sos/events/", None),
        ("other/events/newAlert", None),
    ])
    def test_event_name(self, channel, topic, expected):
        assert channel.event_name(topic) == expected

    async def test_handle_dispatches_json(self, channel):
        received = []
        channel.subscribe("newAlert", received.append)

        await channel._handle("sos/events/newAlert", json.dumps({"_id": "a"}).encode())

        assert received == [{"_id": "a"}]

    async def test_handle_ignores_bad_payload(self, channel):
        received = []
        channel.subscribe("newAlert", received.append)

        await channel._handle("sos/events/newAlert", b"{not json")

        assert received == []

    async def test_emit_when_disconnected_is_dropped(self, channel):
        before = _dropped("mqtt")

        await channel.emit("updateLocation", {"userId": "u"})

        assert _dropped("mqtt") == before + 1

    async def test_emit_publishes_json(self, channel):
        client = Mock()
        client.publish = AsyncMock()
        channel.client = client
        channel._ready.set()

        await channel.emit("updateLocation", {"userId": "u", "coordinates": [127.0, 37.5]})

        client.publish.assert_awaited_once()
        topic = client.publish.await_args.args[0]
        payload = json.loads(client.publish.await_args.kwargs["payload"])
        assert topic == "sos/presence/updateLocation"
        assert payload == {"userId": "u", "coordinates": [127.0, 37.5]}

    async def test_publish_error_is_dropped(self, channel):
        client = Mock()
        client.publish = AsyncMock(side_effect=MqttError("gone"))
        channel.client = client
        channel._ready.set()
        before = _dropped("mqtt")

        await channel.emit("updateLocation", {})

        assert _dropped("mqtt") == before + 1

    async def test_disconnect_stops_loop(self, channel):
        channel._running = True
        channel._task = asyncio.create_task(asyncio.sleep(10))

        await channel.disconnect()
        await channel.disconnect()

        assert channel._task is None
        assert not channel.connected
