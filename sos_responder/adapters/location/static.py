"""
Static location adapter for SOS Responder.

Used for fixed posts (a station or a dispatch desk) and in development.
The position can be pushed at runtime with ``update()``; every active
watch receives the new sample.
"""

import inspect
import itertools
from typing import Dict, Hashable, Optional
from sos_responder.common.geo import validate_coordinates
from sos_responder.core.errors import LocationUnavailable
from sos_responder.core.models import Position
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.location import SampleCallback

log = get_logger("sos.location")

class StaticLocationTracker:
    """고정 위치 추적기"""

    def __init__(self, lat: Optional[float] = None, lng: Optional[float] = None):
        self._position: Optional[Position] = None
        if lat is not None and lng is not None:
            self._position = Position(lat=lat, lng=lng)
        self._watches: Dict[int, SampleCallback] = {}
        self._handles = itertools.count(1)

    @property
    def position(self) -> Optional[Position]:
        return self._position

    async def get_current_position(self) -> Position:
        if self._position is None:
            raise LocationUnavailable("고정 위치가 설정되지 않았습니다")
        return self._position

    async def start_watching(self, on_sample: SampleCallback) -> Hashable:
        handle = next(self._handles)
        self._watches[handle] = on_sample
        # 현재 위치가 있으면 첫 샘플로 즉시 전달
        if self._position is not None:
            await self._deliver(on_sample, self._position)
        return handle

    async def stop_watching(self, handle: Hashable) -> None:
        self._watches.pop(handle, None)

    async def update(self, lat: float, lng: float) -> None:
        """
        위치를 갱신하고 활성 감시자에게 전달합니다.

        Raises:
            LocationUnavailable: 좌표가 유효하지 않은 경우
        """
        if not validate_coordinates(lat, lng):
            raise LocationUnavailable(f"유효하지 않은 좌표: {lat}, {lng}")
        self._position = Position(lat=lat, lng=lng)
        for callback in list(self._watches.values()):
            await self._deliver(callback, self._position)

    @staticmethod
    async def _deliver(callback: SampleCallback, position: Position) -> None:
        try:
            result = callback(position.lat, position.lng)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log.error("위치 샘플 콜백 오류", error=str(e))

    @property
    def active_watches(self) -> int:
        return len(self._watches)
