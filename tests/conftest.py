"""
테스트 설정 및 픽스처

이 모듈은 pytest 설정과 공통 픽스처, 포트 가짜 구현을 제공합니다.
"""

import pytest
import asyncio
import inspect
import itertools
import tempfile
import os
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock
from sos_responder.adapters.handlers import HandlerRegistry
from sos_responder.core.errors import LocationUnavailable
from sos_responder.core.models import Position
from sos_responder.settings import Settings


class FakeChannel:
    """메모리 프레즌스 채널"""

    transport = "fake"

    def __init__(self, connected: bool = True):
        self._connected = connected
        self.emitted: List[Tuple[str, dict]] = []
        self.registry = HandlerRegistry()
        self.connect_calls = 0
        self.disconnect_calls = 0

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self.connect_calls += 1
        self._connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    async def emit(self, event: str, payload: dict) -> None:
        if not self._connected:
            return
        self.emitted.append((event, payload))

    def subscribe(self, event, handler):
        return self.registry.add(event, handler)

    def unsubscribe(self, token) -> None:
        self.registry.remove(token)

    async def push(self, event: str, payload: Any) -> int:
        """서버 푸시를 흉내냅니다."""
        return await self.registry.dispatch(event, payload)

    def events(self) -> List[str]:
        return [event for event, _ in self.emitted]


class FakeTracker:
    """메모리 위치 추적기 (감시 시작/중지 기록)"""

    def __init__(self, position: Optional[Position] = None, error: Optional[Exception] = None):
        self.position = position
        self.error = error
        self.fix_gate: Optional[asyncio.Event] = None
        self.started: List[int] = []
        self.stopped: List[int] = []
        self._callbacks: Dict[int, Any] = {}
        self._handles = itertools.count(1)

    async def get_current_position(self) -> Position:
        if self.fix_gate is not None:
            await self.fix_gate.wait()
        if self.error is not None:
            raise self.error
        if self.position is None:
            raise LocationUnavailable("no fix")
        return self.position

    async def start_watching(self, on_sample):
        handle = next(self._handles)
        self.started.append(handle)
        self._callbacks[handle] = on_sample
        return handle

    async def stop_watching(self, handle) -> None:
        if handle in self._callbacks:
            del self._callbacks[handle]
            self.stopped.append(handle)

    async def sample(self, lat: float, lng: float) -> None:
        """모든 활성 감시에 샘플을 보냅니다."""
        for callback in list(self._callbacks.values()):
            result = callback(lat, lng)
            if inspect.isawaitable(result):
                await result

    @property
    def active(self) -> int:
        return len(self._callbacks)


class FakeIdentity:
    def __init__(self, user_id: Optional[str] = "responder-1", token: Optional[str] = "tok"):
        self.user_id = user_id
        self._token = token

    def current_user_id(self) -> Optional[str]:
        return self.user_id

    def token(self) -> Optional[str]:
        return self._token


class RecordingNotifier:
    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    async def notify(self, message: str, level: str = "info") -> None:
        self.messages.append((message, level))

    def texts(self) -> List[str]:
        return [message for message, _ in self.messages]


def make_raw(alert_id: str, status: str = "pending", lat: float = 10.0, lng: float = 20.0, **extra) -> dict:
    """서버 경보 문서 형태의 원시 페이로드"""
    raw = {
        "_id": alert_id,
        "status": status,
        "location": {"type": "Point", "coordinates": [lng, lat]},
        "description": extra.pop("description", f"alert {alert_id}"),
        "type": extra.pop("type", "medical"),
    }
    raw.update(extra)
    return raw


@pytest.fixture
def temp_db_path():
    """임시 데이터베이스 파일 경로"""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        temp_path = f.name
    yield temp_path
    # 테스트 후 파일 정리
    if os.path.exists(temp_path):
        os.unlink(temp_path)


@pytest.fixture
def sample_settings():
    """테스트용 설정"""
    settings = Settings()
    settings.observability.service_name = "test-service"
    settings.observability.build_version = "1.0.0"
    settings.observability.log_level = "INFO"
    settings.observability.http_port = 8080
    return settings


@pytest.fixture
def fake_channel():
    return FakeChannel()


@pytest.fixture
def fake_tracker():
    return FakeTracker(position=Position(lat=37.5, lng=127.0))


@pytest.fixture
def fake_identity():
    return FakeIdentity()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def mock_api():
    """테스트용 경보 API"""
    api = AsyncMock()
    api.list.return_value = []
    return api


@pytest.fixture
def mock_ha_client():
    """테스트용 Home Assistant 클라이언트"""
    return AsyncMock()


# pytest 설정
def pytest_configure(config):
    """pytest 설정"""
    config.addinivalue_line(
        "markers", "asyncio: 비동기 테스트 마커"
    )
    config.addinivalue_line(
        "markers", "property: hypothesis 속성 테스트 마커"
    )


def pytest_collection_modifyitems(config, items):
    """테스트 아이템 수정"""
    for item in items:
        function = getattr(item, "function", None)

        # 비동기 테스트에 asyncio 마커 추가
        if inspect.iscoroutinefunction(function):
            item.add_marker(pytest.mark.asyncio)

        # hypothesis 테스트에 property 마커 추가
        if getattr(function, "is_hypothesis_test", False):
            item.add_marker(pytest.mark.property)
