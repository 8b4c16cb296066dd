"""
Responder orchestrator for SOS Responder.

This module wires the presence channel's push events into the alert
reconciler, loads the working set through the alert API, runs the
accept flow (lock -> HTTP accept -> resolve) and turns every outcome
into a user-facing notification.
"""

import asyncio
from typing import Awaitable, Callable, Hashable, List, Optional, Set
from sos_responder.core.errors import (
    AlertApiError,
    AlreadyAccepting,
    Conflict,
    LocationUnavailable,
    NotAuthenticated,
    NotFound,
)
from sos_responder.core.models import MapBounds, Marker
from sos_responder.core.projector import fit_bounds, project
from sos_responder.core.reconciler import AcceptOutcome, AcceptResult, AlertReconciler, Change, ChangeKind
from sos_responder.observability import metrics
from sos_responder.observability.logging_setup import get_logger
from sos_responder.orchestrators.session import PresenceController
from sos_responder.ports.alerts_api import AlertApiPort
from sos_responder.ports.channel import PresenceChannelPort
from sos_responder.ports.notify import NotifierPort

log = get_logger("sos.responder")

# 서버 푸시 이벤트 이름과 알림 여부
PUSH_EVENTS = (
    ("newAlert", True),
    ("alerts:new", False),
    ("alerts:updated", False),
)

MSG_NOT_ONLINE = "Go online before responding to alerts."
MSG_ACCEPTED = "Alert accepted. Let the reporter know you are coming!"
MSG_ACCEPT_FAILED = "Could not accept this alert. It may already be taken."
MSG_ONLINE = "You are now online and visible to nearby alerts."
MSG_LOCATION_REQUIRED = "Location permission is required to go online."
MSG_ONLINE_FAILED = "Could not go online. Please try again."
MSG_OFFLINE = "You are offline. Toggle back on when ready."
MSG_NEW_ALERT = "New alert nearby!"
MSG_SIGN_IN = "Please sign in again."
MSG_LOAD_FAILED = "Could not load alerts. Pull to refresh."

class ResponderOrchestrator:
    """대응자 오케스트레이터"""

    def __init__(self,
                 channel: PresenceChannelPort,
                 api: AlertApiPort,
                 session: PresenceController,
                 reconciler: AlertReconciler,
                 notifier: NotifierPort,
                 *,
                 on_auth_lost: Optional[Callable[[], Awaitable[None]]] = None,
                 auto_online: bool = True):
        """
        초기화합니다.

        Args:
            channel: 프레즌스 채널
            api: 경보 API
            session: 온라인/오프라인 컨트롤러
            reconciler: 경보 상태 머신
            notifier: 사용자 알림기
            on_auth_lost: 인증 만료 시 세션을 지우는 콜백
            auto_online: 시작 시 온라인 전환 여부
        """
        self.channel = channel
        self.api = api
        self.session = session
        self.reconciler = reconciler
        self.notifier = notifier
        self.on_auth_lost = on_auth_lost
        self.auto_online = auto_online

        self._tokens: List[Hashable] = []
        self._unsubscribe_changes: Optional[Callable[[], None]] = None
        self._pending_notifications: Set[asyncio.Task] = set()
        self._started = False

        log.info("대응자 오케스트레이터 초기화됨")

    # === 생명주기 ===

    async def start(self) -> None:
        """
        오케스트레이터를 시작합니다.

        구독 -> 연결 -> 초기 로드 -> (선택) 온라인 전환 순서로 진행합니다.
        """
        if self._started:
            return
        self._started = True

        for event, notify in PUSH_EVENTS:
            self._tokens.append(self.channel.subscribe(event, self._push_handler(event, notify)))
        self._unsubscribe_changes = self.reconciler.subscribe(self._on_change)

        await self.channel.connect()

        try:
            await self.refresh()
        except NotAuthenticated:
            # 세션이 이미 정리됨, 로그인 안내만 남김
            log.warning("초기 경보 로드 중 인증 만료, 온라인 전환 생략")
            return
        except AlertApiError as e:
            log.error("초기 경보 로드 실패", error=e.message)
            await self.notifier.notify(MSG_LOAD_FAILED, "warning")

        if self.auto_online:
            await self.go_online()

        log.info("대응자 오케스트레이터 시작됨", alerts=len(self.reconciler), online=self.session.online)

    async def stop(self) -> None:
        """구독 해제 -> 오프라인 -> 연결 종료. 여러 번 호출해도 안전합니다."""
        if not self._started:
            return
        self._started = False

        for token in self._tokens:
            self.channel.unsubscribe(token)
        self._tokens.clear()
        if self._unsubscribe_changes:
            self._unsubscribe_changes()
            self._unsubscribe_changes = None

        try:
            await self.session.go_offline()
        finally:
            await self.channel.disconnect()
            for task in list(self._pending_notifications):
                task.cancel()

        log.info("대응자 오케스트레이터 중지됨")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # === 푸시 이벤트 ===

    def _push_handler(self, event: str, notify: bool):
        def handle(payload) -> None:
            metrics.events_received.labels(source=event).inc()
            self.reconciler.ingest(payload, notify=notify)
        return handle

    def _on_change(self, change: Change) -> None:
        if change.kind is ChangeKind.ADDED and change.notify:
            self._notify_later(MSG_NEW_ALERT, "info")

    def _notify_later(self, message: str, level: str) -> None:
        # 리스너는 동기 함수이므로 알림은 별도 태스크로 보냄
        task = asyncio.create_task(self.notifier.notify(message, level))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    # === 명령 ===

    async def refresh(self) -> int:
        """
        대기 중 경보 목록을 다시 불러와 작업 집합을 교체합니다 (알림 없음).

        Returns:
            작업 집합 크기

        Raises:
            AlertApiError: 목록 조회 실패
            NotAuthenticated: 인증 만료
        """
        try:
            raw = await self.api.list("pending")
        except NotAuthenticated:
            await self._auth_lost()
            raise
        self.reconciler.bulk_replace(raw)
        return len(self.reconciler)

    async def go_online(self) -> bool:
        """온라인으로 전환하고 결과를 알립니다."""
        try:
            position = await self.session.go_online()
        except LocationUnavailable as e:
            log.warning("온라인 전환 실패", error=e.message)
            await self.notifier.notify(MSG_LOCATION_REQUIRED, "danger")
            return False
        except NotAuthenticated:
            await self._auth_lost()
            return False
        except Exception as e:
            log.error("온라인 전환 오류", error=str(e))
            await self.notifier.notify(MSG_ONLINE_FAILED, "danger")
            return False

        if position is not None:
            await self.notifier.notify(MSG_ONLINE, "success")
        return self.session.online

    async def go_offline(self, *, announce: bool = True) -> bool:
        """오프라인으로 전환합니다."""
        changed = await self.session.go_offline()
        if changed and announce:
            await self.notifier.notify(MSG_OFFLINE, "muted")
        return changed

    async def accept_alert(self, alert_id: str) -> Optional[AcceptResult]:
        """
        경보를 수락합니다.

        Returns:
            수락 결과, 요청을 보내지 않은 경우 None
        """
        if not self.session.online:
            await self.notifier.notify(MSG_NOT_ONLINE, "warning")
            return None

        try:
            self.reconciler.begin_accept(alert_id)
        except (AlreadyAccepting, NotFound) as e:
            metrics.accept_attempts.labels(outcome="rejected").inc()
            log.info("수락 요청 생략", alert_id=alert_id, reason=e.message)
            await self.notifier.notify(e.message, "warning")
            return None

        try:
            alert = await self.api.accept(alert_id)
        except Conflict as e:
            result = self.reconciler.resolve_accept(alert_id, AcceptOutcome.failed(e.message))
            await self.notifier.notify(e.message, "danger")
            return result
        except AlertApiError as e:
            log.error("경보 수락 요청 실패", alert_id=alert_id, error=e.message, status=e.status)
            result = self.reconciler.resolve_accept(alert_id, AcceptOutcome.failed(e.message))
            await self.notifier.notify(e.detail or MSG_ACCEPT_FAILED, "danger")
            return result
        except NotAuthenticated as e:
            result = self.reconciler.resolve_accept(alert_id, AcceptOutcome.failed(e.message))
            await self._auth_lost()
            return result
        except asyncio.CancelledError:
            # 잠금을 풀지 않으면 경보가 영원히 accepting에 머묾
            self.reconciler.resolve_accept(alert_id, AcceptOutcome.failed("cancelled"))
            raise
        except Exception as e:
            log.error("경보 수락 중 예기치 않은 오류", alert_id=alert_id, error=str(e))
            result = self.reconciler.resolve_accept(alert_id, AcceptOutcome.failed(str(e)))
            await self.notifier.notify(MSG_ACCEPT_FAILED, "danger")
            return result

        result = self.reconciler.resolve_accept(alert_id, AcceptOutcome.succeeded(alert))
        log.info("경보 수락됨", alert_id=alert_id)
        await self.notifier.notify(MSG_ACCEPTED, "success")
        return result

    async def logout(self) -> None:
        """오프라인 알림 후 세션과 작업 집합을 지웁니다."""
        await self.go_offline(announce=False)
        self.reconciler.clear()
        if self.on_auth_lost:
            await self.on_auth_lost()

    async def _auth_lost(self) -> None:
        log.warning("인증 만료, 다시 로그인 필요")
        await self.logout()
        await self.notifier.notify(MSG_SIGN_IN, "danger")

    # === 조회 ===

    def markers(self) -> List[Marker]:
        """현재 작업 집합의 지도 마커"""
        return project(self.reconciler.snapshot(), self.session.presence.last_known_position)

    def bounds(self) -> Optional[MapBounds]:
        return fit_bounds(self.markers())
