"""
AlertReconciler 단위 테스트

이 모듈은 경보 작업 집합 상태 머신의 전이, 경합 처리,
툼스톤, 리스너 알림을 테스트합니다.
"""

import pytest
from hypothesis import given, settings, strategies as st

from conftest import make_raw
from sos_responder.core.errors import AlreadyAccepting, NotFound
from sos_responder.core.models import EntryState
from sos_responder.core.reconciler import AcceptOutcome, AlertReconciler, Change, ChangeKind


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def reconciler():
    return AlertReconciler()


@pytest.fixture
def changes(reconciler):
    received = []
    reconciler.subscribe(received.append)
    return received


class TestIngest:
    """ingest 전이 테스트"""

    def test_new_pending_alert_is_added(self, reconciler, changes):
        """새 pending 경보 추가"""
        change = reconciler.ingest(make_raw("A"))

        assert change == Change(ChangeKind.ADDED, "A", notify=False)
        assert reconciler.state_of("A") == "pending"
        assert reconciler.get("A").location.lat == 10.0
        assert reconciler.get("A").location.lng == 20.0
        assert changes == [change]

    def test_notify_flag_is_carried_on_added(self, reconciler, changes):
        """newAlert 소스의 신규 경보는 알림 신호를 가짐"""
        reconciler.ingest(make_raw("A"), notify=True)

        assert changes[0].notify is True

    def test_duplicate_pending_event_is_ignored(self, reconciler, changes):
        """동일 이벤트 재수신은 한 번 적용과 같음"""
        reconciler.ingest(make_raw("A"), notify=True)
        second = reconciler.ingest(make_raw("A"), notify=True)

        assert second is None
        assert len(reconciler) == 1
        assert [c.kind for c in changes] == [ChangeKind.ADDED]

    def test_status_change_twice_is_idempotent(self, reconciler, changes):
        """상태 변경 이벤트 두 번 = 한 번"""
        reconciler.ingest(make_raw("A"))
        first = reconciler.ingest({"_id": "A", "status": "accepted"})
        second = reconciler.ingest({"_id": "A", "status": "accepted"})

        assert first.kind is ChangeKind.REMOVED
        assert second is None
        assert "A" not in reconciler
        assert [c.kind for c in changes] == [ChangeKind.ADDED, ChangeKind.REMOVED]

    def test_non_pending_for_unknown_id_is_noop(self, reconciler, changes):
        """모르는 id의 비-pending 이벤트는 변경 없음"""
        assert reconciler.ingest({"_id": "Z", "status": "resolved"}) is None
        assert changes == []
        assert reconciler.is_tombstoned("Z")

    def test_update_overwrites_only_declared_fields(self, reconciler):
        """선언된 필드만 덮어씀"""
        reconciler.ingest(make_raw("A", description="old", numInjured=2))
        change = reconciler.ingest({"_id": "A", "status": "pending", "description": "new"})

        alert = reconciler.get("A")
        assert change.kind is ChangeKind.UPDATED
        assert alert.description == "new"
        assert alert.injured_count == 2
        assert alert.category == "medical"
        assert alert.location.lat == 10.0

    def test_update_keeps_accepting_state(self, reconciler):
        """수락 중인 경보의 내용 갱신은 잠금을 유지"""
        reconciler.ingest(make_raw("A"))
        reconciler.begin_accept("A")
        reconciler.ingest({"_id": "A", "status": "pending", "description": "moved"})

        assert reconciler.state_of("A") == "accepting"
        assert reconciler.get("A").description == "moved"

    @pytest.mark.parametrize("payload", [
        None,
        "not a dict",
        {"status": "pending"},
        {"_id": "A"},
        {"_id": "A", "status": "exploded"},
        {"_id": "A", "status": "pending"},
        {"_id": "A", "status": "pending", "lat": 200, "lng": 20},
    ])
    def test_invalid_payload_is_dropped(self, reconciler, changes, payload):
        """잘못된 페이로드는 예외 없이 무시됨"""
        assert reconciler.ingest(payload) is None
        assert len(reconciler) == 0
        assert changes == []

    def test_listener_error_does_not_break_ingest(self, reconciler):
        """리스너 예외는 삼켜짐"""
        def broken(change):
            raise RuntimeError("boom")

        reconciler.subscribe(broken)
        reconciler.ingest(make_raw("A"))

        assert "A" in reconciler

    def test_unsubscribe_stops_notifications(self, reconciler):
        received = []
        unsubscribe = reconciler.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        reconciler.ingest(make_raw("A"))

        assert received == []


class TestAccept:
    """수락 흐름 테스트"""

    def test_begin_accept_locks_and_second_attempt_fails(self, reconciler):
        """두 번째 begin_accept는 AlreadyAccepting"""
        reconciler.ingest(make_raw("B"))

        alert = reconciler.begin_accept("B")

        assert alert.id == "B"
        assert reconciler.state_of("B") == "accepting"
        with pytest.raises(AlreadyAccepting):
            reconciler.begin_accept("B")

    def test_begin_accept_unknown_id(self, reconciler):
        with pytest.raises(NotFound):
            reconciler.begin_accept("missing")

    def test_successful_accept_removes_alert(self, reconciler):
        """수락 성공 시 제거"""
        reconciler.ingest(make_raw("B"))
        reconciler.begin_accept("B")

        result = reconciler.resolve_accept("B", AcceptOutcome.succeeded())

        assert result.accepted is True
        assert result.applied is True
        assert "B" not in reconciler
        # 늦게 도착한 pending 선언은 되살리지 못함
        assert reconciler.ingest(make_raw("B")) is None

    def test_failed_accept_restores_pending(self, reconciler, changes):
        """수락 실패 시 pending으로 복원"""
        reconciler.ingest(make_raw("B"))
        reconciler.begin_accept("B")

        result = reconciler.resolve_accept("B", AcceptOutcome.failed("server error"))

        assert result.accepted is False
        assert result.reason == "server error"
        assert reconciler.state_of("B") == "pending"
        assert changes[-1].kind is ChangeKind.RESTORED

    def test_accept_race_with_push_removal(self, reconciler):
        """수락 중 다른 대응자 수락 푸시가 이기고, 이후 실패 결과는 되살리지 않음"""
        reconciler.ingest(make_raw("A"))
        reconciler.begin_accept("A")
        reconciler.ingest({"_id": "A", "status": "accepted", "acceptedBy": {"_id": "other"}})

        result = reconciler.resolve_accept("A", AcceptOutcome.failed("conflict"))

        assert result.applied is False
        assert "A" not in reconciler
        assert reconciler.ingest(make_raw("A")) is None
        assert "A" not in reconciler

    def test_success_after_push_removal_is_not_applied(self, reconciler):
        reconciler.ingest(make_raw("A"))
        reconciler.begin_accept("A")
        reconciler.ingest({"_id": "A", "status": "accepted"})

        result = reconciler.resolve_accept("A", AcceptOutcome.succeeded())

        assert result.accepted is True
        assert result.applied is False


class TestBulkReplace:
    """bulk_replace 테스트"""

    def test_bulk_replace_is_silent(self, reconciler, changes):
        """일괄 교체는 신규 알림을 내지 않음"""
        reconciler.ingest(make_raw("A"))
        change = reconciler.bulk_replace([make_raw("A"), make_raw("B")])

        assert change.kind is ChangeKind.REPLACED
        assert set(reconciler.snapshot()) == {"A", "B"}
        assert not any(c.notify for c in changes)

    def test_bulk_replace_drops_missing_and_non_pending(self, reconciler):
        reconciler.ingest(make_raw("A"))
        reconciler.ingest(make_raw("B"))

        reconciler.bulk_replace([make_raw("B", status="resolved"), make_raw("C")])

        assert set(reconciler.snapshot()) == {"C"}
        assert reconciler.is_tombstoned("B")

    def test_bulk_replace_preserves_accepting(self, reconciler):
        """진행 중인 수락은 일괄 교체 후에도 유지"""
        reconciler.ingest(make_raw("A"))
        reconciler.begin_accept("A")

        reconciler.bulk_replace([make_raw("A", description="refreshed")])

        assert reconciler.state_of("A") == "accepting"
        assert reconciler.get("A").description == "refreshed"

    def test_bulk_replace_skips_tombstoned(self, reconciler):
        reconciler.ingest(make_raw("A"))
        reconciler.ingest({"_id": "A", "status": "accepted"})

        reconciler.bulk_replace([make_raw("A")])

        assert "A" not in reconciler

    def test_clear_empties_everything(self, reconciler):
        reconciler.ingest(make_raw("A"))
        reconciler.ingest({"_id": "B", "status": "resolved"})

        reconciler.clear()

        assert len(reconciler) == 0
        assert not reconciler.is_tombstoned("B")


class TestTombstones:
    """툼스톤 만료/상한 테스트"""

    def test_tombstone_expires_after_ttl(self):
        clock = FakeClock()
        reconciler = AlertReconciler(tombstone_ttl_sec=60, clock=clock)
        reconciler.ingest({"_id": "A", "status": "resolved"})

        clock.now += 61

        assert not reconciler.is_tombstoned("A")
        assert reconciler.ingest(make_raw("A")).kind is ChangeKind.ADDED

    def test_tombstone_limit_evicts_oldest(self):
        reconciler = AlertReconciler(tombstone_limit=2)
        for alert_id in ("A", "B", "C"):
            reconciler.ingest({"_id": alert_id, "status": "resolved"})

        assert not reconciler.is_tombstoned("A")
        assert reconciler.is_tombstoned("B")
        assert reconciler.is_tombstoned("C")


class TestScenarios:
    """대표 시나리오"""

    def test_new_alert_then_removal(self, reconciler, changes):
        """{A} + 알림 B -> {A, B}, A accepted -> {B}"""
        reconciler.bulk_replace([make_raw("A")])
        changes.clear()

        reconciler.ingest(make_raw("B", lat=10, lng=20), notify=True)
        assert set(reconciler.snapshot()) == {"A", "B"}
        assert [c for c in changes if c.notify] == [Change(ChangeKind.ADDED, "B", notify=True)]

        reconciler.ingest({"_id": "A", "status": "accepted"})
        assert set(reconciler.snapshot()) == {"B"}


ids = st.sampled_from(["a", "b", "c"])
operations = st.lists(
    st.tuples(
        st.sampled_from(["pending", "accepted", "resolved", "begin", "ok", "fail", "bulk"]),
        ids,
    ),
    max_size=30,
)


class TestReconcilerProperties:
    """속성 기반 테스트"""

    @settings(max_examples=200, deadline=None)
    @given(ops=operations)
    def test_removed_ids_never_come_back(self, ops):
        """한 번 제거된 id는 다시 나타나지 않음"""
        reconciler = AlertReconciler()
        removed = set()

        for op, alert_id in ops:
            if op == "pending":
                reconciler.ingest(make_raw(alert_id))
            elif op in ("accepted", "resolved"):
                reconciler.ingest({"_id": alert_id, "status": op})
                removed.add(alert_id)
            elif op == "begin":
                try:
                    reconciler.begin_accept(alert_id)
                except (AlreadyAccepting, NotFound):
                    pass
            elif op == "ok":
                if reconciler.state_of(alert_id) == "accepting":
                    reconciler.resolve_accept(alert_id, AcceptOutcome.succeeded())
                    removed.add(alert_id)
            elif op == "fail":
                reconciler.resolve_accept(alert_id, AcceptOutcome.failed("x"))
            elif op == "bulk":
                reconciler.bulk_replace([make_raw(i) for i in ("a", "b", "c")])

            snapshot = reconciler.snapshot()
            assert not (removed & set(snapshot))
            assert all(e.state in (EntryState.PENDING, EntryState.ACCEPTING) for e in snapshot.values())

    @settings(max_examples=100, deadline=None)
    @given(ops=st.lists(st.tuples(ids, st.sampled_from(["pending", "accepted"])), max_size=20))
    def test_replaying_events_is_idempotent(self, ops):
        """같은 이벤트를 연속 두 번 적용한 결과는 한 번 적용과 같음"""
        once = AlertReconciler()
        twice = AlertReconciler()

        for alert_id, status in ops:
            raw = make_raw(alert_id, status=status)
            once.ingest(raw)
            twice.ingest(raw)
            twice.ingest(raw)

        assert dict(once.snapshot()) == dict(twice.snapshot())
