"""
Location tracker port interface.

This module defines the protocol for continuous and one-shot
position sampling.
"""

from typing import Any, Awaitable, Callable, Hashable, Protocol, Union
from sos_responder.core.models import Position

SampleCallback = Callable[[float, float], Union[None, Awaitable[None]]]

class LocationTrackerPort(Protocol):
    """위치 추적 포트 인터페이스"""

    async def get_current_position(self) -> Position:
        """
        단발성 위치를 가져옵니다.

        Raises:
            LocationUnavailable: 권한 거부, 타임아웃, 신호 없음
        """
        ...

    async def start_watching(self, on_sample: SampleCallback) -> Hashable:
        """
        연속 위치 샘플링을 시작합니다.

        Args:
            on_sample: 새 위치마다 (위도, 경도)로 호출되는 콜백

        Returns:
            감시 핸들
        """
        ...

    async def stop_watching(self, handle: Hashable) -> None:
        """
        샘플링을 중지합니다.

        이미 중지되었거나 알 수 없는 핸들에도 안전해야 합니다.
        """
        ...
