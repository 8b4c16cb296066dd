"""
MQTT presence channel adapter for SOS Responder.

Inbound events arrive on ``<prefix>/events/<event>`` and outbound presence
messages are published on ``<prefix>/presence/<event>``. The broker
publishes ``responderOffline`` as the Last Will if the client vanishes.
"""

import asyncio
import json
import ssl
from typing import Hashable, Optional
from aiomqtt import Client, MqttError, Will
from sos_responder.adapters.handlers import HandlerRegistry
from sos_responder.observability import metrics
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.channel import EventHandler

log = get_logger("sos.mqtt")

class MqttPresenceChannel:
    """MQTT 프레즌스 채널 어댑터"""

    transport = "mqtt"

    def __init__(
        self,
        host: str,
        port: int,
        *,
        topic_prefix: str = "sos",
        username: str | None = None,
        password: str | None = None,
        tls: bool = False,
        client_id: str | None = None,
        keepalive: int = 30,
        qos: int = 1,
        reconnect_delay_sec: float = 5.0,
        connect_timeout_sec: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.topic_prefix = topic_prefix.rstrip("/")
        self.username = username
        self.password = password
        self.tls = tls
        self.client_id = client_id
        self.keepalive = keepalive
        self.qos = qos
        self.reconnect_delay = reconnect_delay_sec
        self.connect_timeout = connect_timeout_sec

        self.client: Client | None = None
        self._registry = HandlerRegistry()
        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._running = False

    @property
    def connected(self) -> bool:
        return self.client is not None and self._ready.is_set()

    @property
    def events_topic(self) -> str:
        return f"{self.topic_prefix}/events/#"

    def presence_topic(self, event: str) -> str:
        return f"{self.topic_prefix}/presence/{event}"

    def event_name(self, topic: str) -> Optional[str]:
        """수신 토픽에서 이벤트 이름을 추출합니다."""
        prefix = f"{self.topic_prefix}/events/"
        if not topic.startswith(prefix):
            return None
        return topic[len(prefix):] or None

    def _build_client(self) -> Client:
        # TLS 컨텍스트 준비 (필요 시)
        tls_context = ssl.create_default_context() if self.tls else None

        # 비정상 종료 시 브로커가 오프라인 이벤트를 대신 발행
        will = Will(
            topic=self.presence_topic("responderOffline"),
            payload=b"{}",
            qos=self.qos,
            retain=False,
        )

        return Client(
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            identifier=self.client_id,
            keepalive=self.keepalive,
            tls_context=tls_context,
            will=will,
        )

    async def connect(self) -> None:
        """수신 루프를 시작하고 첫 연결을 잠시 기다립니다 (멱등)."""
        if self._task and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            log.warning("MQTT 첫 연결 대기 시간 초과, 백그라운드 재시도", host=self.host, port=self.port)

    async def _run(self) -> None:
        while self._running:
            try:
                async with self._build_client() as client:
                    self.client = client
                    await client.subscribe(self.events_topic, qos=self.qos)
                    self._ready.set()
                    log.info(f"MQTT 브로커 연결됨: {self.host}:{self.port}")

                    async for message in client.messages:
                        await self._handle(message.topic.value, message.payload)

            except MqttError as e:
                log.error(f"MQTT 오류: {e}")
                metrics.reconnects.labels(transport=self.transport).inc()
            finally:
                self.client = None
                self._ready.clear()

            if self._running:
                await asyncio.sleep(self.reconnect_delay)  # 재연결 대기

    async def _handle(self, topic: str, raw: bytes) -> None:
        event = self.event_name(topic)
        if event is None:
            return
        try:
            payload = json.loads(raw.decode("utf-8")) if raw else None
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            log.error("MQTT 페이로드 파싱 오류", topic=topic, error=str(e))
            return
        await self._registry.dispatch(event, payload)

    async def disconnect(self) -> None:
        """수신 루프를 중지합니다. 여러 번 호출해도 안전합니다."""
        self._running = False
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            log.info("MQTT 연결 종료됨")
        self.client = None
        self._ready.clear()

    async def emit(self, event: str, payload: dict) -> None:
        """프레즌스 메시지를 발행합니다. 연결되지 않았으면 버립니다."""
        client = self.client
        if client is None or not self._ready.is_set():
            metrics.channel_emits_dropped.labels(transport=self.transport).inc()
            log.debug("연결되지 않아 메시지 드롭됨", event=event)
            return
        try:
            await client.publish(
                self.presence_topic(event),
                payload=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
                qos=self.qos,
            )
        except MqttError as e:
            metrics.channel_emits_dropped.labels(transport=self.transport).inc()
            log.warning("MQTT 발행 실패, 드롭됨", event=event, error=str(e))

    def subscribe(self, event: str, handler: EventHandler) -> Hashable:
        return self._registry.add(event, handler)

    def unsubscribe(self, token: Hashable) -> None:
        self._registry.remove(token)
