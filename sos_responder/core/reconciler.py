"""
Alert reconciler for SOS Responder.

This module implements the state machine that keeps the responder's
pending working set consistent with an unordered, possibly duplicated
stream of server push events and with local accept attempts.

States per alert id: absent, pending, accepting, removed. The server is
the single source of truth: a non-pending declaration always removes the
alert, even while a local accept is in flight, and a tombstone keeps a
late pending declaration from bringing it back.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from types import MappingProxyType
from .errors import AlreadyAccepting, NotFound
from .models import Alert, AlertEvent, EntryState
from .normalize import to_event
from sos_responder.observability import metrics
from sos_responder.observability.logging_setup import get_logger

log = get_logger("sos.reconciler")

class ChangeKind(str, Enum):
    """상태 변경 종류"""
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"
    ACCEPTING = "accepting"
    RESTORED = "restored"
    REPLACED = "replaced"

@dataclass(frozen=True)
class Change:
    """리스너에게 전달되는 상태 변경 알림"""
    kind: ChangeKind
    alert_id: Optional[str] = None
    notify: bool = False

@dataclass(frozen=True)
class Entry:
    """작업 집합 항목 (경보 + 로컬 상태)"""
    alert: Alert
    state: EntryState

@dataclass(frozen=True)
class AcceptOutcome:
    """서버 수락 요청의 결과"""
    success: bool
    alert: Optional[Alert] = None
    reason: Optional[str] = None

    @classmethod
    def succeeded(cls, alert: Optional[Alert] = None) -> "AcceptOutcome":
        return cls(success=True, alert=alert)

    @classmethod
    def failed(cls, reason: str) -> "AcceptOutcome":
        return cls(success=False, reason=reason)

@dataclass(frozen=True)
class AcceptResult:
    """resolve_accept 결과"""
    alert_id: str
    accepted: bool
    reason: Optional[str] = None
    applied: bool = True

Listener = Callable[[Change], Any]

class AlertReconciler:
    """경보 작업 집합 상태 머신 (단일 작성자)"""

    def __init__(self,
                 *,
                 tombstone_ttl_sec: float = 3600.0,
                 tombstone_limit: int = 10000,
                 clock: Callable[[], float] = time.monotonic):
        """
        초기화합니다.

        Args:
            tombstone_ttl_sec: 제거된 id를 기억하는 시간 (초)
            tombstone_limit: 기억할 최대 제거 id 수
            clock: 단조 시계 (테스트 주입용)
        """
        self._entries: Dict[str, Entry] = {}
        self._tombstones: "OrderedDict[str, float]" = OrderedDict()
        self._listeners: List[Listener] = []
        self.tombstone_ttl = tombstone_ttl_sec
        self.tombstone_limit = tombstone_limit
        self._clock = clock

    # === 조회 ===

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, alert_id: object) -> bool:
        return alert_id in self._entries

    def state_of(self, alert_id: str) -> str:
        """id의 상태를 반환합니다: absent | pending | accepting"""
        entry = self._entries.get(alert_id)
        return entry.state.value if entry else "absent"

    def get(self, alert_id: str) -> Optional[Alert]:
        entry = self._entries.get(alert_id)
        return entry.alert if entry else None

    def snapshot(self) -> Mapping[str, Entry]:
        """현재 작업 집합의 읽기 전용 스냅샷을 반환합니다."""
        return MappingProxyType(dict(self._entries))

    def is_tombstoned(self, alert_id: str) -> bool:
        self._expire_tombstones()
        return alert_id in self._tombstones

    # === 리스너 ===

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        상태 변경 리스너를 등록합니다.

        Returns:
            등록 해제 함수
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, change: Change) -> None:
        metrics.working_set_size.set(len(self._entries))
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                # 리스너 오류가 동기화 루프를 멈추면 안 됨
                log.error("리스너 처리 오류", kind=change.kind.value, alert_id=change.alert_id, error=str(e))

    # === 전이 ===

    def ingest(self, raw: Any, *, notify: bool = False) -> Optional[Change]:
        """
        서버가 선언한 경보 상태를 작업 집합에 반영합니다.

        Args:
            raw: 원시 페이로드 또는 AlertEvent
            notify: 직접 푸시(newAlert) 소스인 경우 True

        Returns:
            적용된 변경 또는 변경이 없으면 None
        """
        try:
            event = raw if isinstance(raw, AlertEvent) else to_event(raw)
        except ValueError as e:
            metrics.events_invalid.inc()
            log.warning("잘못된 경보 이벤트 무시됨", error=str(e))
            return None

        if event.status != "pending":
            return self._remove(event.id, reason=event.status)

        if self.is_tombstoned(event.id):
            metrics.events_stale.inc()
            log.debug("제거된 경보의 pending 이벤트 무시됨", alert_id=event.id)
            return None

        entry = self._entries.get(event.id)
        if entry is None:
            alert = event.to_alert()
            if alert is None:
                metrics.events_invalid.inc()
                log.warning("위치 없는 신규 경보 무시됨", alert_id=event.id)
                return None
            self._entries[event.id] = Entry(alert=alert, state=EntryState.PENDING)
            change = Change(ChangeKind.ADDED, event.id, notify=notify)
            if notify:
                metrics.alerts_new.inc()
            log.info("경보 추가됨", alert_id=event.id, notify=notify)
            self._publish(change)
            return change

        # 선언된 필드만 덮어씀 (필드 단위 last-writer-wins)
        updated = entry.alert.model_copy(update=event.declared_fields())
        if updated == entry.alert:
            return None
        self._entries[event.id] = Entry(alert=updated, state=entry.state)
        change = Change(ChangeKind.UPDATED, event.id)
        self._publish(change)
        return change

    def begin_accept(self, alert_id: str) -> Alert:
        """
        로컬 낙관적 잠금을 겁니다 (pending -> accepting).

        Raises:
            AlreadyAccepting: 이미 수락 중인 경우
            NotFound: 대기 집합에 없는 경우
        """
        entry = self._entries.get(alert_id)
        if entry is None:
            raise NotFound(alert_id)
        if entry.state is EntryState.ACCEPTING:
            raise AlreadyAccepting(alert_id)

        self._entries[alert_id] = Entry(alert=entry.alert, state=EntryState.ACCEPTING)
        log.info("수락 잠금 설정됨", alert_id=alert_id)
        self._publish(Change(ChangeKind.ACCEPTING, alert_id))
        return entry.alert

    def resolve_accept(self, alert_id: str, outcome: AcceptOutcome) -> AcceptResult:
        """
        수락 요청 결과를 반영합니다.

        성공이면 accepted 상태 ingest와 동일하게 제거하고, 실패면 accepting -> pending으로
        되돌립니다. 이미 푸시로 제거된 경보는 되살리지 않습니다.
        """
        entry = self._entries.get(alert_id)

        if outcome.success:
            applied = entry is not None
            self._remove(alert_id, reason="accepted")
            metrics.accept_attempts.labels(outcome="success").inc()
            return AcceptResult(alert_id, accepted=True, applied=applied)

        metrics.accept_attempts.labels(outcome="failure").inc()
        if entry is None or entry.state is not EntryState.ACCEPTING:
            log.info("이미 정리된 수락 실패 결과 무시됨", alert_id=alert_id, reason=outcome.reason)
            return AcceptResult(alert_id, accepted=False, reason=outcome.reason, applied=False)

        self._entries[alert_id] = Entry(alert=entry.alert, state=EntryState.PENDING)
        log.info("수락 실패, pending으로 복원됨", alert_id=alert_id, reason=outcome.reason)
        self._publish(Change(ChangeKind.RESTORED, alert_id))
        return AcceptResult(alert_id, accepted=False, reason=outcome.reason)

    def bulk_replace(self, raw_list: Iterable[Any]) -> Change:
        """
        작업 집합 전체를 교체합니다 (초기 로드/새로고침, 알림 없음).

        진행 중인 수락(accepting)은 목록에 pending으로 남아 있으면 유지됩니다.
        """
        fresh: Dict[str, Entry] = {}
        for raw in raw_list:
            try:
                event = raw if isinstance(raw, AlertEvent) else to_event(raw)
            except ValueError as e:
                metrics.events_invalid.inc()
                log.warning("잘못된 경보 항목 무시됨", error=str(e))
                continue

            if event.status != "pending":
                self._tombstone(event.id)
                fresh.pop(event.id, None)
                continue
            if self.is_tombstoned(event.id):
                metrics.events_stale.inc()
                continue

            alert = event.to_alert()
            if alert is None:
                metrics.events_invalid.inc()
                log.warning("위치 없는 경보 항목 무시됨", alert_id=event.id)
                continue

            previous = self._entries.get(event.id)
            state = EntryState.PENDING
            if previous is not None and previous.state is EntryState.ACCEPTING:
                state = EntryState.ACCEPTING
            fresh[event.id] = Entry(alert=alert, state=state)

        removed = [alert_id for alert_id in self._entries if alert_id not in fresh]
        self._entries = fresh
        if removed:
            metrics.alerts_removed.inc(len(removed))
        log.info("작업 집합 교체됨", count=len(fresh), removed=len(removed))
        change = Change(ChangeKind.REPLACED)
        self._publish(change)
        return change

    def clear(self) -> None:
        """작업 집합과 툼스톤을 모두 비웁니다 (로그아웃 시)."""
        self._entries.clear()
        self._tombstones.clear()
        self._publish(Change(ChangeKind.REPLACED))

    # === 내부 ===

    def _remove(self, alert_id: str, *, reason: str) -> Optional[Change]:
        self._tombstone(alert_id)
        entry = self._entries.pop(alert_id, None)
        if entry is None:
            return None
        metrics.alerts_removed.inc()
        log.info("경보 제거됨", alert_id=alert_id, reason=reason, was=entry.state.value)
        change = Change(ChangeKind.REMOVED, alert_id)
        self._publish(change)
        return change

    def _tombstone(self, alert_id: str) -> None:
        self._tombstones[alert_id] = self._clock()
        self._tombstones.move_to_end(alert_id)
        while len(self._tombstones) > self.tombstone_limit:
            self._tombstones.popitem(last=False)

    def _expire_tombstones(self) -> None:
        cutoff = self._clock() - self.tombstone_ttl
        while self._tombstones:
            alert_id, removed_at = next(iter(self._tombstones.items()))
            if removed_at >= cutoff:
                break
            self._tombstones.popitem(last=False)
