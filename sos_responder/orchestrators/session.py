"""
Session/presence controller for SOS Responder.

This module drives the responder's online/offline lifecycle:
offline -> activating -> online -> offline. Going online acquires a
position fix, registers presence on the channel and starts the location
watch; going offline undoes all of it in reverse. A generation counter
lets ``go_offline`` cancel an activation that is still waiting on I/O.
"""

import asyncio
from enum import Enum
from typing import Hashable, Optional
from pydantic import ValidationError
from sos_responder.core.errors import LocationUnavailable, NotAuthenticated
from sos_responder.core.models import Position, ResponderPresence
from sos_responder.observability import metrics
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.channel import PresenceChannelPort
from sos_responder.ports.identity import IdentityPort
from sos_responder.ports.location import LocationTrackerPort

log = get_logger("sos.session")

class PresenceState(str, Enum):
    """대응자 접속 상태"""
    OFFLINE = "offline"
    ACTIVATING = "activating"
    ONLINE = "online"

class PresenceController:
    """온라인/오프라인 생명주기 컨트롤러"""

    def __init__(self,
                 channel: PresenceChannelPort,
                 tracker: LocationTrackerPort,
                 identity: IdentityPort,
                 *,
                 fix_timeout_sec: float = 8.0):
        """
        초기화합니다.

        Args:
            channel: 프레즌스 채널
            tracker: 위치 추적기
            identity: 대응자 신원 제공자
            fix_timeout_sec: 단발 측위 타임아웃 (초)
        """
        self.channel = channel
        self.tracker = tracker
        self.identity = identity
        self.fix_timeout = fix_timeout_sec

        self.state = PresenceState.OFFLINE
        self.presence = ResponderPresence()
        self._generation = 0

    @property
    def online(self) -> bool:
        return self.state is PresenceState.ONLINE

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.go_offline()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def go_online(self) -> Optional[Position]:
        """
        온라인으로 전환합니다.

        Returns:
            초기 위치, 이미 온라인이거나 도중에 취소되면 None

        Raises:
            NotAuthenticated: 대응자 신원이 없는 경우
            LocationUnavailable: 측위 실패 또는 타임아웃
        """
        if self.state is not PresenceState.OFFLINE:
            return None

        user_id = self.identity.current_user_id()
        if not user_id:
            raise NotAuthenticated()

        self._generation += 1
        generation = self._generation
        self.state = PresenceState.ACTIVATING
        log.info("온라인 전환 시작", user_id=user_id)

        try:
            return await self._activate(generation, user_id)
        except BaseException:
            # 어떤 실패든 activating에 머물지 않도록 복귀
            self._abort_activation(generation)
            raise

    async def _activate(self, generation: int, user_id: str) -> Optional[Position]:
        try:
            position = await asyncio.wait_for(self.tracker.get_current_position(), timeout=self.fix_timeout)
        except asyncio.TimeoutError:
            raise LocationUnavailable(f"측위 타임아웃 ({self.fix_timeout}초)")

        # 측위 대기 중 오프라인 요청이 들어온 경우 서버에 알리지 않음
        if not self._is_current(generation):
            log.info("온라인 전환 취소됨 (측위 후)")
            return None

        self.presence = ResponderPresence(last_known_position=position)
        await self.channel.emit("registerResponder", {
            "userId": user_id,
            "coordinates": position.to_coordinates(),
        })
        if not self._is_current(generation):
            log.info("온라인 전환 취소됨 (등록 후)")
            return None

        handle = await self.tracker.start_watching(self._sampler(generation, user_id))
        if not self._is_current(generation):
            # 시작한 감시는 직접 해제
            await self.tracker.stop_watching(handle)
            log.info("온라인 전환 취소됨 (감시 시작 후)")
            return None

        try:
            self.presence = ResponderPresence(
                online=True,
                last_known_position=self.presence.last_known_position or position,
                watch_handle=handle,
            )
        except BaseException:
            # 상태에 기록되지 못한 핸들은 여기서 해제
            await self.tracker.stop_watching(handle)
            raise
        self.state = PresenceState.ONLINE
        metrics.presence_online.set(1)
        log.info("온라인 전환 완료", user_id=user_id, lat=position.lat, lng=position.lng)
        return position

    def _abort_activation(self, generation: int) -> None:
        if self._is_current(generation):
            self.state = PresenceState.OFFLINE
            self.presence = ResponderPresence()
        log.warning("온라인 전환 중단됨")

    def _sampler(self, generation: int, user_id: str):
        async def on_sample(lat: float, lng: float) -> None:
            # 오프라인 이후 도착한 샘플은 버림
            if not self._is_current(generation):
                return
            try:
                position = Position(lat=lat, lng=lng)
            except ValidationError:
                log.warning("잘못된 위치 샘플 무시", lat=lat, lng=lng)
                return
            self.presence = self.presence.model_copy(update={"last_known_position": position})
            metrics.location_samples.inc()
            await self.channel.emit("updateLocation", {
                "userId": user_id,
                "coordinates": position.to_coordinates(),
            })
        return on_sample

    async def go_offline(self) -> bool:
        """
        오프라인으로 전환합니다. 어떤 상태에서도 안전합니다.

        Returns:
            상태가 바뀌었는지 여부
        """
        if self.state is PresenceState.OFFLINE:
            return False

        previous = self.state
        handle: Optional[Hashable] = self.presence.watch_handle

        # 진행 중인 활성화와 이후 샘플을 무효화
        self._generation += 1
        self.state = PresenceState.OFFLINE
        self.presence = ResponderPresence()
        metrics.presence_online.set(0)

        try:
            await self.channel.emit("responderOffline", {})
        finally:
            if handle is not None:
                await self.tracker.stop_watching(handle)

        log.info("오프라인 전환 완료", previous=previous.value)
        return True

    def snapshot(self) -> dict:
        """상태 조회용 요약"""
        position = self.presence.last_known_position
        return {
            "state": self.state.value,
            "online": self.online,
            "user_id": self.identity.current_user_id(),
            "position": position.model_dump() if position else None,
        }
