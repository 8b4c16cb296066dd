"""
Presence channel port interface.

This module defines the protocol for the persistent real-time connection
carrying server push events and outbound presence/location updates.
"""

from typing import Any, Awaitable, Callable, Hashable, Protocol, Union

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]

class PresenceChannelPort(Protocol):
    """실시간 프레즌스 채널 포트 인터페이스"""

    @property
    def connected(self) -> bool:
        """현재 연결 여부"""
        ...

    async def connect(self) -> None:
        """
        단일 논리 연결을 수립하거나 재개합니다.

        이미 연결된 경우 아무 것도 하지 않습니다.
        """
        ...

    async def disconnect(self) -> None:
        """
        연결을 종료합니다.

        연결된 적이 없거나 여러 번 호출되어도 안전해야 합니다.
        """
        ...

    async def emit(self, event: str, payload: dict) -> None:
        """
        메시지를 전송합니다. 연결되지 않았으면 조용히 버립니다 (예외 없음).

        Args:
            event: 이벤트 이름
            payload: 전송할 데이터
        """
        ...

    def subscribe(self, event: str, handler: EventHandler) -> Hashable:
        """
        이벤트 핸들러를 등록합니다. 이벤트당 여러 핸들러를 허용합니다.

        Returns:
            등록 해제 토큰
        """
        ...

    def unsubscribe(self, token: Hashable) -> None:
        """토큰에 해당하는 핸들러만 제거합니다."""
        ...
