"""
Alert REST API client for SOS Responder.

This module provides an aiohttp client for the dispatch server's
list / create / accept alert endpoints.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import aiohttp
from sos_responder.common.retry import retry_with_backoff
from sos_responder.core.errors import AlertApiError, Conflict, NotAuthenticated
from sos_responder.core.models import Alert
from sos_responder.core.normalize import to_alert
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.identity import IdentityPort

log = get_logger("sos.api")

# 인증 만료
AUTH_STATUSES = (401, 403)

class AlertsApiClient:
    """경보 API 클라이언트"""

    def __init__(self,
                 base_url: str,
                 *,
                 identity: Optional[IdentityPort] = None,
                 timeout: int = 10,
                 max_retries: int = 3):
        """
        초기화합니다.

        Args:
            base_url: 서버 기본 URL
            identity: 세션 토큰 제공자
            timeout: 요청 타임아웃 (초)
            max_retries: 조회 요청 최대 재시도 횟수
        """
        self.base_url = base_url.rstrip('/')
        self.identity = identity
        self.timeout = timeout
        self.max_retries = max_retries
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """비동기 컨텍스트 매니저 진입"""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """비동기 컨텍스트 매니저 종료"""
        if self.session:
            await self.session.close()
            self.session = None

    def _headers(self) -> Dict[str, str]:
        token = self.identity.token() if self.identity else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except ValueError:
            return await response.text()

    @staticmethod
    def _error_message(body: Any) -> Optional[str]:
        if isinstance(body, dict):
            return body.get("message") or body.get("error")
        return None

    async def _request(self, method: str, endpoint: str, *, retry: bool = False, **kwargs) -> Any:
        """
        API 요청을 수행합니다.

        Args:
            method: HTTP 메서드
            endpoint: API 엔드포인트
            retry: 연결 오류 시 재시도 여부 (멱등 요청만)
            **kwargs: 추가 요청 매개변수

        Returns:
            응답 데이터

        Raises:
            NotAuthenticated: 401, 403 응답
            AlertApiError: 그 외 HTTP 오류 또는 네트워크 오류
        """
        if not self.session:
            raise RuntimeError("세션이 초기화되지 않았습니다. async with를 사용하세요.")

        url = f"{self.base_url}{endpoint}"

        async def _do():
            async with self.session.request(method, url, headers=self._headers(), **kwargs) as response:
                body = await self._read_body(response)
                if response.status in AUTH_STATUSES:
                    raise NotAuthenticated(self._error_message(body) or "Please sign in again.")
                if response.status >= 400:
                    message = self._error_message(body) or f"HTTP {response.status}"
                    raise AlertApiError(message, status=response.status, detail=self._error_message(body))
                return body

        try:
            if retry:
                return await retry_with_backoff(
                    _do,
                    max_retries=self.max_retries,
                    retry_on=(aiohttp.ClientConnectionError, asyncio.TimeoutError),
                )
            return await _do()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AlertApiError(f"{method} {endpoint} 실패: {e}") from e

    async def list(self, status: Optional[str] = "pending", *, mine: bool = False) -> List[dict]:
        """
        경보 목록을 조회합니다.

        Args:
            status: pending | accepted | active | all
            mine: 내 경보만 조회할지 여부

        Returns:
            원시 경보 문서 목록
        """
        params: Dict[str, str] = {}
        if status:
            params["status"] = status
        if mine:
            params["mine"] = "true"

        data = await self._request("GET", "/api/alerts", retry=True, params=params)
        if not isinstance(data, list):
            raise AlertApiError("경보 목록 응답 형식이 올바르지 않습니다")
        log.info(f"경보 목록 가져옴 count:{len(data)} status:{status}")
        return data

    async def create(self,
                     *,
                     description: str,
                     category: str,
                     lat: float,
                     lng: float,
                     injured_count: Optional[int] = None,
                     photo_path: Optional[str] = None) -> Tuple[Alert, int]:
        """
        경보를 생성합니다 (multipart).

        Returns:
            (생성된 경보, 주변 대응자 수)
        """
        form = aiohttp.FormData()
        form.add_field("description", description)
        form.add_field("type", category)
        if injured_count is not None:
            form.add_field("numInjured", str(injured_count))
        # GeoJSON 좌표는 (경도, 위도) 순서
        form.add_field("location", json.dumps({"type": "Point", "coordinates": [lng, lat]}))
        if photo_path:
            path = Path(photo_path)
            form.add_field("photo", path.read_bytes(), filename=path.name, content_type="image/jpeg")

        data = await self._request("POST", "/api/alerts", data=form)
        try:
            alert = to_alert(data.get("alert") if isinstance(data, dict) else None)
        except ValueError as e:
            raise AlertApiError(f"경보 생성 응답 형식 오류: {e}") from e
        nearby = int(data.get("nearbyRespondersCount") or 0)
        log.info(f"경보 생성됨 alert_id:{alert.id} nearby:{nearby}")
        return alert, nearby

    async def accept(self, alert_id: str) -> Alert:
        """
        경보를 수락합니다.

        Raises:
            Conflict: 다른 대응자가 먼저 수락한 경우
            AlertApiError: 그 외 실패
        """
        try:
            data = await self._request("PATCH", f"/api/alerts/{alert_id}/accept", json={})
        except AlertApiError as e:
            # 4xx는 다른 대응자가 먼저 수락했거나 경보가 사라진 경우
            if e.status is not None and 400 <= e.status < 500:
                log.info(f"경보 수락 충돌 alert_id:{alert_id} status:{e.status}")
                raise Conflict(e.detail, alert_id=alert_id) from e
            e.alert_id = alert_id
            raise

        try:
            return to_alert(data)
        except ValueError as e:
            raise AlertApiError(f"경보 수락 응답 형식 오류: {e}", alert_id=alert_id) from e
