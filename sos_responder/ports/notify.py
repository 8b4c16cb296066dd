"""
User notification port interface.

This module defines the protocol for non-blocking, user-facing
notifications (the toasts of the mobile client).
"""

from typing import Literal, Protocol

NotifyLevel = Literal["success", "warning", "danger", "info", "muted"]

class NotifierPort(Protocol):
    """사용자 알림 포트 인터페이스"""

    async def notify(self, message: str, level: NotifyLevel = "info") -> None:
        """
        사용자에게 알림을 표시합니다. 실패해도 예외를 던지지 않습니다.

        Args:
            message: 알림 문구
            level: 알림 수준
        """
        ...
