"""
Error taxonomy for SOS Responder.

Every error in this module is recoverable: the orchestrators catch them
at the controller boundary and turn them into user-facing notifications.
"""

from typing import Optional

class SOSError(Exception):
    """SOS Responder 예외의 기본 클래스"""

    def __init__(self, message: str = "", *, alert_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.alert_id = alert_id

class LocationUnavailable(SOSError):
    """위치 권한 거부, 타임아웃 또는 신호 없음"""

    def __init__(self, message: str = "Location unavailable"):
        super().__init__(message)

class AlreadyAccepting(SOSError):
    """이미 수락 요청이 진행 중인 경보"""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} is already being accepted", alert_id=alert_id)

class NotFound(SOSError):
    """대기 집합에 없는 경보"""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} is not pending", alert_id=alert_id)

class Conflict(SOSError):
    """다른 대응자가 먼저 경보를 수락함"""

    def __init__(self, message: Optional[str] = None, *, alert_id: Optional[str] = None):
        super().__init__(message or "Could not accept this alert. It may already be taken.", alert_id=alert_id)

class AlertApiError(SOSError):
    """Alert API 호출 실패 (네트워크, 5xx 등)"""

    def __init__(self,
                 message: str,
                 *,
                 status: Optional[int] = None,
                 alert_id: Optional[str] = None,
                 detail: Optional[str] = None):
        super().__init__(message, alert_id=alert_id)
        self.status = status
        # 서버가 응답 본문에 담아 보낸 메시지
        self.detail = detail

class NotAuthenticated(SOSError):
    """대응자 신원을 확인할 수 없음"""

    def __init__(self, message: str = "Please sign in again."):
        super().__init__(message)
