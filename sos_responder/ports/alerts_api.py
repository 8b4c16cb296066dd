"""
Alert API port interface.

This module defines the protocol for the dispatch server's alert
REST endpoints.
"""

from typing import List, Optional, Protocol, Tuple
from sos_responder.core.models import Alert

class AlertApiPort(Protocol):
    """경보 API 포트 인터페이스"""

    async def list(self, status: Optional[str] = "pending", *, mine: bool = False) -> List[dict]:
        """
        경보 목록을 원시 문서로 조회합니다.

        Args:
            status: pending | accepted | active | all
            mine: 내 경보만 조회할지 여부
        """
        ...

    async def create(self,
                     *,
                     description: str,
                     category: str,
                     lat: float,
                     lng: float,
                     injured_count: Optional[int] = None,
                     photo_path: Optional[str] = None) -> Tuple[Alert, int]:
        """
        경보를 생성합니다.

        Returns:
            (생성된 경보, 주변 대응자 수)
        """
        ...

    async def accept(self, alert_id: str) -> Alert:
        """
        경보를 수락합니다.

        Raises:
            Conflict: 다른 대응자가 먼저 수락한 경우
            AlertApiError: 그 외 실패
        """
        ...
