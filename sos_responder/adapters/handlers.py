"""
Event handler registry shared by the presence channel adapters.

Handlers are invoked one at a time in registration order; a failing
handler is logged and never stops the others or the receive loop.
"""

import inspect
import itertools
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List
from sos_responder.ports.channel import EventHandler
from sos_responder.observability.logging_setup import get_logger

log = get_logger("sos.channel")

@dataclass(frozen=True)
class Subscription:
    """구독 해제 토큰"""
    event: str
    id: int

class HandlerRegistry:
    """이벤트 이름별 핸들러 목록"""

    def __init__(self):
        self._handlers: Dict[str, Dict[Subscription, EventHandler]] = {}
        self._ids = itertools.count(1)

    def add(self, event: str, handler: EventHandler) -> Subscription:
        token = Subscription(event=event, id=next(self._ids))
        self._handlers.setdefault(event, {})[token] = handler
        return token

    def remove(self, token: Hashable) -> bool:
        """토큰의 핸들러를 제거합니다. 알 수 없는 토큰이면 False."""
        if not isinstance(token, Subscription):
            return False
        handlers = self._handlers.get(token.event)
        if not handlers or token not in handlers:
            return False
        del handlers[token]
        if not handlers:
            del self._handlers[token.event]
        return True

    def events(self) -> List[str]:
        return list(self._handlers)

    def count(self, event: str) -> int:
        return len(self._handlers.get(event, {}))

    async def dispatch(self, event: str, payload: Any) -> int:
        """
        이벤트를 등록된 핸들러에 순서대로 전달합니다.

        Returns:
            호출된 핸들러 수
        """
        handlers = list(self._handlers.get(event, {}).values())
        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.error("이벤트 핸들러 오류", event=event, error=str(e))
        return len(handlers)
