"""
User notification adapters for SOS Responder.

``LogNotifier`` writes notifications to the log and keeps the most recent
ones for the HTTP status endpoint. ``HANotifier`` pushes them to the
responder's phone through a Home Assistant ``notify`` service and falls
back to the log if the push fails.
"""

from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List
from sos_responder.adapters.homeassistant.client import HAClient
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.notify import NotifyLevel

log = get_logger("sos.notify")

_LOG_LEVELS = {
    "success": "SUCCESS",
    "warning": "WARNING",
    "danger": "ERROR",
    "info": "INFO",
    "muted": "DEBUG",
}

class LogNotifier:
    """로그 알림기"""

    def __init__(self, history: int = 50):
        self._recent: Deque[Dict] = deque(maxlen=history)

    async def notify(self, message: str, level: NotifyLevel = "info") -> None:
        log.log(_LOG_LEVELS.get(level, "INFO"), message)
        self._recent.append({
            "message": message,
            "level": level,
            "at": datetime.now(timezone.utc).isoformat(),
        })

    def recent(self) -> List[Dict]:
        """최근 알림 목록 (오래된 순)"""
        return list(self._recent)

class HANotifier(LogNotifier):
    """Home Assistant 모바일 푸시 알림기"""

    def __init__(self, ha: HAClient, service: str, *, title: str = "SOS Responder", history: int = 50):
        super().__init__(history=history)
        self.ha = ha
        self.service = service
        self.title = title

    async def notify(self, message: str, level: NotifyLevel = "info") -> None:
        await super().notify(message, level)
        if level == "muted":
            return
        try:
            await self.ha.notify(self.service, self.title, message, tag=f"sos-{level}")
        except Exception as e:
            log.warning("푸시 알림 실패, 로그로 대체", service=self.service, error=str(e))
