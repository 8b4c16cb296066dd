"""
Socket.IO presence channel adapter for SOS Responder.

This module implements the presence channel over the dispatch server's
Socket.IO endpoint. Reconnection after a drop is handled by the
Socket.IO client itself; a failed initial connection is retried here
in the background so callers never see transport errors.
"""

import asyncio
from typing import Callable, Hashable, Optional
import socketio
from sos_responder.adapters.handlers import HandlerRegistry
from sos_responder.common.retry import exponential_backoff
from sos_responder.observability import metrics
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.channel import EventHandler

log = get_logger("sos.socketio")

class SocketIOPresenceChannel:
    """Socket.IO 프레즌스 채널 어댑터"""

    transport = "socketio"

    def __init__(self,
                 url: str,
                 *,
                 socketio_path: str = "socket.io",
                 token_provider: Optional[Callable[[], Optional[str]]] = None,
                 backoff_initial: float = 1.0,
                 backoff_max: float = 30.0):
        """
        초기화합니다.

        Args:
            url: 서버 URL
            socketio_path: Socket.IO 엔드포인트 경로
            token_provider: 세션 토큰 제공 함수 (Authorization 헤더)
            backoff_initial: 초기 재연결 대기 (초)
            backoff_max: 최대 재연결 대기 (초)
        """
        self.url = url
        self.socketio_path = socketio_path
        self.token_provider = token_provider
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max

        self._registry = HandlerRegistry()
        self._sio: Optional[socketio.AsyncClient] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return bool(self._sio is not None and self._sio.connected)

    def _create_client(self) -> socketio.AsyncClient:
        sio = socketio.AsyncClient(
            reconnection=True,
            reconnection_delay=self.backoff_initial,
            reconnection_delay_max=self.backoff_max,
            logger=False,
            engineio_logger=False,
        )
        sio.on("connect", self._on_connect)
        sio.on("disconnect", self._on_disconnect)
        # catch-all: 모든 서버 이벤트를 레지스트리로 전달
        sio.on("*", self._on_event)
        return sio

    async def _on_connect(self) -> None:
        log.info(f"Socket.IO 연결됨: {self.url}")

    async def _on_disconnect(self, *args) -> None:
        # 재연결은 클라이언트가 처리하므로 구독자에게 알리지 않음
        log.warning("Socket.IO 연결 끊김", reason=str(args[0]) if args else None)

    async def _on_event(self, event: str, *args) -> None:
        payload = args[0] if args else None
        await self._registry.dispatch(event, payload)

    async def _open(self, sio: socketio.AsyncClient) -> None:
        headers = {}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        await sio.connect(
            self.url,
            headers=headers,
            transports=["websocket"],
            socketio_path=self.socketio_path,
        )

    async def connect(self) -> None:
        """연결을 수립하거나 재개합니다 (멱등)."""
        async with self._lock:
            if self.connected:
                return
            if self._retry_task and not self._retry_task.done():
                return
            if self._sio is None:
                self._sio = self._create_client()
            try:
                await self._open(self._sio)
            except socketio.exceptions.ConnectionError as e:
                log.warning("Socket.IO 초기 연결 실패, 백그라운드 재시도", error=str(e))
                self._retry_task = asyncio.create_task(self._retry_loop())

    async def _retry_loop(self) -> None:
        attempt = 0
        while self._sio is not None and not self.connected:
            attempt += 1
            metrics.reconnects.labels(transport=self.transport).inc()
            await exponential_backoff(attempt, self.backoff_initial, self.backoff_max)
            sio = self._sio
            if sio is None:
                return
            try:
                await self._open(sio)
                log.info("Socket.IO 재연결 성공", attempt=attempt)
                return
            except socketio.exceptions.ConnectionError as e:
                log.warning("Socket.IO 재연결 실패", attempt=attempt, error=str(e))

    async def disconnect(self) -> None:
        """연결을 종료합니다. 여러 번 호출해도 안전합니다."""
        task, self._retry_task = self._retry_task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        sio, self._sio = self._sio, None
        if sio is not None:
            try:
                await sio.disconnect()
            except Exception as e:
                log.warning("Socket.IO 종료 중 오류", error=str(e))
            log.info("Socket.IO 연결 종료됨")

    async def emit(self, event: str, payload: dict) -> None:
        """메시지를 전송합니다. 연결되지 않았으면 버립니다."""
        if not self.connected:
            metrics.channel_emits_dropped.labels(transport=self.transport).inc()
            log.debug("연결되지 않아 메시지 드롭됨", event=event)
            return
        try:
            await self._sio.emit(event, payload)
        except Exception as e:
            metrics.channel_emits_dropped.labels(transport=self.transport).inc()
            log.warning("메시지 전송 실패, 드롭됨", event=event, error=str(e))

    def subscribe(self, event: str, handler: EventHandler) -> Hashable:
        return self._registry.add(event, handler)

    def unsubscribe(self, token: Hashable) -> None:
        self._registry.remove(token)
