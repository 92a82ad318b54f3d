from __future__ import annotations

import threading
from dataclasses import replace

from labreserve.domain.errors import PermissionDeniedError
from labreserve.domain.models import CallerIdentity, RequestStatus, Role
from labreserve.repository.data_repository import DataRepository
from labreserve.services.allocation_service import AllocationEngine
from labreserve.services.dashboard_service import ViewProjector
from labreserve.utils.config import get_settings


STUDENT = CallerIdentity(uid="uid-student-1", login_id="S1234", role=Role.STUDENT)
OTHER_STUDENT = CallerIdentity(uid="uid-student-2", login_id="S5678", role=Role.STUDENT)
ADMIN = CallerIdentity(uid="admin:A0001", login_id="A0001", role=Role.ADMIN)


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        notifications_enabled=False,
    )


def _build_services(tmp_path, filename: str):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_systems()
    engine = AllocationEngine(repository=repository, settings=settings)
    return engine, ViewProjector(repository), repository


def _submit(engine: AllocationEngine, identity: CallerIdentity = STUDENT, purpose: str = "Project work"):
    return engine.submit_request(
        identity,
        purpose=purpose,
        date="2024-05-01",
        start="10:00",
        end="12:00",
    )


def test_stats_on_fresh_inventory(tmp_path):
    _, projector, repository = _build_services(tmp_path, "fresh_stats.db")

    stats = projector.stats()
    assert stats["total_systems"] == 33
    assert stats["systems_by_status"] == {
        "available": 33,
        "occupied": 0,
        "reserved": 0,
        "maintenance": 0,
    }
    assert stats["systems_by_category"] == {"high_tier": 14, "standard_tier": 19}
    assert stats["requests_by_status"] == {
        "pending": 0,
        "approved": 0,
        "rejected": 0,
        "cancelled": 0,
    }
    assert stats["pending_requests"] == 0
    repository.close()


def test_stats_follow_mutations(tmp_path):
    engine, projector, repository = _build_services(tmp_path, "stats.db")
    allocated = _submit(engine)
    _submit(engine, OTHER_STUDENT)
    engine.allocate(ADMIN, allocated.request_id, [1, 2, 20], "10:00-12:00")
    engine.mark_occupied(ADMIN, 20)
    engine.set_maintenance(ADMIN, 30, True)

    stats = projector.stats()
    assert stats["systems_by_status"] == {
        "available": 29,
        "occupied": 1,
        "reserved": 2,
        "maintenance": 1,
    }
    assert sum(stats["systems_by_status"].values()) == stats["total_systems"]
    assert stats["requests_by_status"]["approved"] == 1
    assert stats["pending_requests"] == 1
    repository.close()


def test_my_requests_and_summary(tmp_path):
    engine, projector, repository = _build_services(tmp_path, "mine.db")
    oldest = _submit(engine, purpose="first")
    _submit(engine, OTHER_STUDENT)
    middle = _submit(engine, purpose="second")
    newest = _submit(engine, purpose="third")
    engine.reject(ADMIN, oldest.request_id)
    engine.cancel(STUDENT, middle.request_id)

    mine = projector.my_requests(STUDENT.uid)
    assert [request.request_id for request in mine] == [
        newest.request_id,
        middle.request_id,
        oldest.request_id,
    ]
    assert projector.requester_summary(STUDENT.uid) == {
        "total": 3,
        "pending": 1,
        "approved": 0,
        "rejected": 1,
        "cancelled": 1,
    }
    assert projector.requester_summary("uid-nobody")["total"] == 0
    repository.close()


def test_pending_queue_is_newest_first(tmp_path):
    engine, projector, repository = _build_services(tmp_path, "queue.db")
    first = _submit(engine)
    second = _submit(engine, OTHER_STUDENT)
    third = _submit(engine)
    engine.approve_without_allocation(ADMIN, second.request_id)

    queue = projector.pending_queue()
    assert [request.request_id for request in queue] == [third.request_id, first.request_id]
    assert all(request.status is RequestStatus.PENDING for request in queue)
    repository.close()


def test_integrity_report_flags_eviction(tmp_path):
    engine, projector, repository = _build_services(tmp_path, "integrity.db")
    request = _submit(engine)
    engine.allocate(ADMIN, request.request_id, [3, 4], "10:00-12:00")
    assert projector.integrity_report() == []

    engine.set_maintenance(ADMIN, 4, True)
    issues = projector.integrity_report()
    assert [(issue.kind, issue.system_id, issue.request_id) for issue in issues] == [
        ("orphaned_allocation", 4, request.request_id)
    ]
    repository.close()


def test_subscribers_receive_fresh_snapshot(tmp_path):
    engine, projector, repository = _build_services(tmp_path, "subscribe.db")
    request = _submit(engine)
    repository.change_feed.wait_idle()

    received = []
    delivered = threading.Event()

    def on_change(snapshot) -> None:
        received.append(snapshot.stats())
        delivered.set()

    unsubscribe = projector.subscribe(on_change)
    engine.allocate(ADMIN, request.request_id, [1, 2], "10:00-12:00")

    assert delivered.wait(timeout=5)
    assert repository.change_feed.wait_idle()
    assert received[-1]["systems_by_status"]["reserved"] == 2
    assert received[-1]["requests_by_status"]["approved"] == 1

    unsubscribe()
    count = len(received)
    _submit(engine)
    assert repository.change_feed.wait_idle()
    assert len(received) == count
    assert repository.change_feed.subscriber_count == 0
    repository.close()


def test_subscriber_writes_are_refused(tmp_path):
    engine, projector, repository = _build_services(tmp_path, "subscriber_write.db")
    target = _submit(engine)
    repository.change_feed.wait_idle()

    refusals = []
    done = threading.Event()

    def on_change(snapshot) -> None:
        try:
            engine.reject(ADMIN, target.request_id)
        except PermissionDeniedError as exc:
            refusals.append(exc)
        finally:
            done.set()

    projector.subscribe(on_change)
    engine.set_maintenance(ADMIN, 5, True)

    assert done.wait(timeout=5)
    assert repository.change_feed.wait_idle()
    assert len(refusals) == 1
    assert projector.pending_queue()[0].request_id == target.request_id
    repository.close()


def test_failing_subscriber_does_not_affect_writer(tmp_path):
    engine, projector, repository = _build_services(tmp_path, "failing_subscriber.db")
    calls = []

    def broken(snapshot) -> None:
        raise RuntimeError("dashboard offline")

    def healthy(snapshot) -> None:
        calls.append(snapshot.taken_at)

    projector.subscribe(broken)
    projector.subscribe(healthy)
    created = _submit(engine)

    assert repository.change_feed.wait_idle()
    assert created.status is RequestStatus.PENDING
    assert len(calls) == 1
    repository.close()
