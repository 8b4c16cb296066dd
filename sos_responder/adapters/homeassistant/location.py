"""
Home Assistant device tracker location adapter for SOS Responder.

The responder's phone reports its position to Home Assistant through the
companion app; this adapter reads that ``device_tracker`` entity for
one-shot fixes and polls it for continuous sampling.
"""

import asyncio
import inspect
import itertools
from typing import Dict, Hashable, Optional, Tuple
from sos_responder.adapters.homeassistant.client import HAClient
from sos_responder.common.geo import validate_coordinates
from sos_responder.core.errors import LocationUnavailable
from sos_responder.core.models import Position
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.location import SampleCallback

log = get_logger("sos.location")

class HALocationTracker:
    """device_tracker 엔티티 기반 위치 추적기"""

    def __init__(self, ha: HAClient, entity_id: str, *, poll_interval_sec: float = 5.0):
        """
        초기화합니다.

        Args:
            ha: 진입된 Home Assistant 클라이언트
            entity_id: 대응자 기기의 device_tracker 엔티티
            poll_interval_sec: 연속 샘플링 폴링 간격 (초)
        """
        self.ha = ha
        self.entity_id = entity_id
        self.poll_interval = poll_interval_sec
        self._watches: Dict[int, asyncio.Task] = {}
        self._handles = itertools.count(1)

    async def _read(self) -> Tuple[Position, Optional[str]]:
        state = await self.ha.get_state(self.entity_id)
        if not state:
            raise LocationUnavailable(f"{self.entity_id} 상태를 가져올 수 없습니다")

        attrs = state.get("attributes") or {}
        try:
            lat = float(attrs["latitude"])
            lng = float(attrs["longitude"])
        except (KeyError, TypeError, ValueError):
            raise LocationUnavailable(f"{self.entity_id}에 좌표가 없습니다")
        if not validate_coordinates(lat, lng):
            raise LocationUnavailable(f"{self.entity_id} 좌표가 유효하지 않습니다")

        return Position(lat=lat, lng=lng), state.get("last_updated")

    async def get_current_position(self) -> Position:
        """현재 위치를 한 번 가져옵니다."""
        position, _ = await self._read()
        return position

    async def start_watching(self, on_sample: SampleCallback) -> Hashable:
        """폴링 태스크를 시작하고 핸들을 반환합니다."""
        handle = next(self._handles)
        self._watches[handle] = asyncio.create_task(self._poll(handle, on_sample))
        log.info("위치 감시 시작", entity_id=self.entity_id, handle=handle)
        return handle

    async def _poll(self, handle: int, on_sample: SampleCallback) -> None:
        last: Optional[Tuple[float, float, Optional[str]]] = None
        while True:
            try:
                position, updated = await self._read()
            except LocationUnavailable as e:
                log.debug("위치 샘플 없음", handle=handle, error=e.message)
            else:
                key = (position.lat, position.lng, updated)
                # 새 측위(좌표 또는 갱신 시각이 바뀐 경우)만 전달
                if key != last:
                    last = key
                    try:
                        result = on_sample(position.lat, position.lng)
                        if inspect.isawaitable(result):
                            await result
                    except Exception as e:
                        log.error("위치 샘플 콜백 오류", handle=handle, error=str(e))
            await asyncio.sleep(self.poll_interval)

    async def stop_watching(self, handle: Hashable) -> None:
        """폴링을 중지합니다. 알 수 없는 핸들은 무시합니다."""
        task = self._watches.pop(handle, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("위치 감시 중지", entity_id=self.entity_id, handle=handle)

    @property
    def active_watches(self) -> int:
        return len(self._watches)
