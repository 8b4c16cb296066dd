"""
Alert reporter for SOS Responder.

The alert-giver flow: take a one-shot position fix (unless the caller
already has coordinates), create the alert through the alert API and
report how many responders were nearby.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
from sos_responder.core.errors import AlertApiError, LocationUnavailable, NotAuthenticated
from sos_responder.core.models import Alert, Position
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.alerts_api import AlertApiPort
from sos_responder.ports.location import LocationTrackerPort
from sos_responder.ports.notify import NotifierPort

log = get_logger("sos.reporter")

MSG_LOCATION_FAILED = "Failed to fetch location. Check permissions or use a secure connection."
MSG_SEND_FAILED = "Failed to send alert"

@dataclass(frozen=True)
class ReportResult:
    """경보 생성 결과"""
    alert: Alert
    nearby_responders: int

class AlertReporter:
    """경보 신고기"""

    def __init__(self,
                 api: AlertApiPort,
                 tracker: LocationTrackerPort,
                 notifier: NotifierPort,
                 *,
                 fix_timeout_sec: float = 8.0):
        self.api = api
        self.tracker = tracker
        self.notifier = notifier
        self.fix_timeout = fix_timeout_sec

    async def _locate(self) -> Position:
        try:
            return await asyncio.wait_for(self.tracker.get_current_position(), timeout=self.fix_timeout)
        except asyncio.TimeoutError:
            raise LocationUnavailable(f"측위 타임아웃 ({self.fix_timeout}초)")

    async def report(self,
                     description: str,
                     category: str,
                     *,
                     injured_count: Optional[int] = None,
                     photo_path: Optional[str] = None,
                     lat: Optional[float] = None,
                     lng: Optional[float] = None) -> ReportResult:
        """
        경보를 신고합니다.

        Args:
            description: 상황 설명
            category: 사고 유형
            injured_count: 부상자 수 (모르면 None)
            photo_path: 첨부 사진 파일 경로
            lat: 위도 (없으면 현재 위치 사용)
            lng: 경도 (없으면 현재 위치 사용)

        Returns:
            생성된 경보와 주변 대응자 수

        Raises:
            LocationUnavailable: 위치를 가져올 수 없는 경우
            AlertApiError: 생성 요청 실패
            NotAuthenticated: 인증 만료
        """
        if lat is None or lng is None:
            try:
                position = await self._locate()
            except LocationUnavailable as e:
                log.warning("신고 위치 측위 실패", error=e.message)
                await self.notifier.notify(MSG_LOCATION_FAILED, "danger")
                raise
        else:
            position = Position(lat=lat, lng=lng)

        try:
            alert, nearby = await self.api.create(
                description=description,
                category=category,
                lat=position.lat,
                lng=position.lng,
                injured_count=injured_count,
                photo_path=photo_path,
            )
        except AlertApiError as e:
            log.error("경보 신고 실패", error=e.message, status=e.status)
            await self.notifier.notify(e.detail or MSG_SEND_FAILED, "danger")
            raise
        except NotAuthenticated as e:
            await self.notifier.notify(e.message, "danger")
            raise

        log.info("경보 신고됨", alert_id=alert.id, nearby=nearby)
        await self.notifier.notify(f"Alert sent successfully. Nearby responders: {nearby}", "success")
        return ReportResult(alert=alert, nearby_responders=nearby)
