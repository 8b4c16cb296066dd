"""
Home Assistant API client for SOS Responder.

This module provides a client for the Home Assistant REST API, used to
read the responder's device tracker and to push mobile notifications.
"""

import aiohttp
from typing import Dict, Optional
from sos_responder.observability.logging_setup import get_logger
from sos_responder.common.retry import retry_with_backoff

log = get_logger("sos.ha")

class HAClient:
    """Home Assistant API 클라이언트"""

    def __init__(self,
                 base_url: str,
                 token: str,
                 timeout: int = 5):
        """
        초기화합니다.

        Args:
            base_url: Home Assistant API 기본 URL
            token: Home Assistant 장기 토큰
            timeout: 요청 타임아웃 (초)
        """
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

        log.info("Home Assistant 클라이언트 초기화됨")

    async def __aenter__(self):
        """비동기 컨텍스트 매니저 진입"""
        self.session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json"
            },
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """비동기 컨텍스트 매니저 종료"""
        if self.session:
            await self.session.close()
            self.session = None

    async def _make_request(self, method: str, endpoint: str, *, max_retries: int = 3, **kwargs) -> Dict:
        """
        API 요청을 수행합니다.

        Args:
            method: HTTP 메서드
            endpoint: API 엔드포인트
            max_retries: 최대 재시도 횟수
            **kwargs: 추가 요청 매개변수

        Returns:
            응답 데이터
        """
        if not self.session:
            raise RuntimeError("세션이 초기화되지 않았습니다. async with를 사용하세요.")

        url = f"{self.base_url}{endpoint}"

        async def _request():
            async with self.session.request(method, url, **kwargs) as response:
                response.raise_for_status()
                return await response.json()

        return await retry_with_backoff(_request, max_retries=max_retries)

    async def get_state(self, entity_id: str) -> Optional[Dict]:
        """
        엔티티 상태를 가져옵니다.

        Args:
            entity_id: 엔티티 ID (예: "device_tracker.responder_phone")

        Returns:
            상태 딕셔너리 또는 None (조회 실패)
        """
        try:
            # 위치 폴링은 자주 일어나므로 재시도 없이 한 번만 시도
            return await self._make_request("GET", f"/api/states/{entity_id}", max_retries=0)
        except Exception as e:
            log.warning(f"엔티티 상태 가져오기 실패 entity_id:{entity_id} error:{str(e)}")
            return None

    async def notify(self, service: str, title: str, message: str, *, tag: Optional[str] = None):
        """모바일 앱에 푸시 알림을 발송합니다."""
        payload = {"title": title, "message": message}
        if tag:
            # 같은 tag의 알림은 기기에서 덮어씀
            payload["data"] = {"tag": tag}
        try:
            result = await self._make_request(
                "POST", f"/api/services/notify/{service}", json=payload, max_retries=1
            )
            log.info(f"푸시 알림 발송 성공 service:{service} title:{title}")
            return result
        except Exception as e:
            log.error(f"푸시 알림 발송 실패 service:{service} error:{str(e)}")
            raise
