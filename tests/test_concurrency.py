from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from labreserve.domain.errors import ConflictError
from labreserve.domain.models import CallerIdentity, RequestStatus, Role, SystemStatus
from labreserve.repository.data_repository import DataRepository
from labreserve.repository.inventory_store import InventoryStore
from labreserve.repository.request_store import RequestStore
from labreserve.services.allocation_service import AllocationEngine
from labreserve.utils.config import get_settings


ADMIN = CallerIdentity(uid="admin:A0001", login_id="A0001", role=Role.ADMIN)
STUDENTS = [
    CallerIdentity(uid=f"uid-student-{index}", login_id=f"S{index:04d}", role=Role.STUDENT)
    for index in range(1, 5)
]


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        notifications_enabled=False,
        store_timeout_seconds=10.0,
    )


def _build_engine(tmp_path, filename: str):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_systems()
    inventory = InventoryStore(repository)
    requests = RequestStore(repository)
    engine = AllocationEngine(
        repository=repository,
        inventory=inventory,
        requests=requests,
        settings=settings,
    )
    return engine, inventory, requests, repository


def _submit(engine: AllocationEngine, identity: CallerIdentity):
    return engine.submit_request(
        identity,
        purpose="Project work",
        date="2024-05-01",
        start="10:00",
        end="12:00",
    )


def test_interleaved_allocations_one_commit_wins(tmp_path):
    engine, inventory, requests, repository = _build_engine(tmp_path, "interleaved.db")
    first = _submit(engine, STUDENTS[0])
    second = _submit(engine, STUDENTS[1])

    plan_a = engine.prepare_allocation(ADMIN, first.request_id, [1, 2], "10:00-12:00")
    plan_b = engine.prepare_allocation(ADMIN, second.request_id, [2, 3], "10:00-12:00")
    engine.commit_allocation(ADMIN, plan_a)

    with pytest.raises(ConflictError) as exc_info:
        engine.commit_allocation(ADMIN, plan_b)

    assert exc_info.value.conflicting_ids == [2]
    assert inventory.get(2).assignment.request_id == first.request_id
    assert inventory.get(3).status is SystemStatus.AVAILABLE
    assert requests.get(second.request_id).status is RequestStatus.PENDING
    repository.close()


def test_request_changed_after_prepare_conflicts(tmp_path):
    engine, inventory, requests, repository = _build_engine(tmp_path, "request_moved.db")
    request = _submit(engine, STUDENTS[0])

    plan = engine.prepare_allocation(ADMIN, request.request_id, [5], "10:00-12:00")
    engine.cancel(STUDENTS[0], request.request_id)

    with pytest.raises(ConflictError):
        engine.commit_allocation(ADMIN, plan)
    assert inventory.get(5).status is SystemStatus.AVAILABLE
    assert requests.get(request.request_id).status is RequestStatus.CANCELLED
    repository.close()


def test_system_sent_to_maintenance_after_prepare_conflicts(tmp_path):
    engine, inventory, requests, repository = _build_engine(tmp_path, "system_moved.db")
    request = _submit(engine, STUDENTS[0])

    plan = engine.prepare_allocation(ADMIN, request.request_id, [7, 8], "10:00-12:00")
    engine.set_maintenance(ADMIN, 8, True)

    with pytest.raises(ConflictError) as exc_info:
        engine.commit_allocation(ADMIN, plan)
    assert exc_info.value.conflicting_ids == [8]
    assert inventory.get(7).status is SystemStatus.AVAILABLE
    assert requests.get(request.request_id).status is RequestStatus.PENDING
    repository.close()


def test_concurrent_allocations_never_double_book(tmp_path):
    engine, inventory, requests, repository = _build_engine(tmp_path, "threads.db")
    pending = [_submit(engine, student) for student in STUDENTS]
    # Every request wants system 10.
    wanted = {
        pending[0].request_id: [10, 11],
        pending[1].request_id: [12, 10],
        pending[2].request_id: [10],
        pending[3].request_id: [13, 14, 10],
    }
    barrier = threading.Barrier(len(wanted))
    outcomes: dict[str, object] = {}
    outcomes_lock = threading.Lock()

    def worker(request_id: str, system_ids: list[int]) -> None:
        barrier.wait()
        try:
            result = engine.allocate(ADMIN, request_id, system_ids, "10:00-12:00")
            outcome: object = result
        except ConflictError as exc:
            outcome = exc
        with outcomes_lock:
            outcomes[request_id] = outcome

    threads = [
        threading.Thread(target=worker, args=(request_id, system_ids))
        for request_id, system_ids in wanted.items()
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(outcomes) == len(wanted)
    winners = [request_id for request_id, outcome in outcomes.items() if not isinstance(outcome, Exception)]
    losers = [outcome for outcome in outcomes.values() if isinstance(outcome, ConflictError)]
    assert len(winners) == 1
    assert len(losers) == len(wanted) - 1

    winner = winners[0]
    assert inventory.get(10).assignment.request_id == winner
    for request_id, system_ids in wanted.items():
        stored = requests.get(request_id)
        if request_id == winner:
            assert stored.status is RequestStatus.APPROVED
            assert all(
                inventory.get(system_id).assignment.request_id == winner
                for system_id in system_ids
            )
        else:
            assert stored.status is RequestStatus.PENDING
            assert all(
                inventory.get(system_id).status is SystemStatus.AVAILABLE
                for system_id in system_ids
                if system_id not in wanted[winner]
            )
    repository.close()


@pytest.mark.parametrize("operation", ["occupy", "release", "maintenance"])
def test_system_reassigned_after_read_conflicts(tmp_path, monkeypatch, operation):
    engine, inventory, requests, repository = _build_engine(tmp_path, f"reassigned_{operation}.db")
    first = _submit(engine, STUDENTS[0])
    second = _submit(engine, STUDENTS[1])
    engine.allocate(ADMIN, first.request_id, [1], "10:00-12:00")

    read_system = inventory.get
    armed = {"value": True}

    def read_then_reassign(system_id, **kwargs):
        observed = read_system(system_id, **kwargs)
        if armed["value"] and kwargs.get("txn") is None:
            armed["value"] = False
            # Another admin ends the first session and books the system for someone else.
            engine.release_system(ADMIN, system_id)
            engine.allocate(ADMIN, second.request_id, [system_id], "14:00-16:00")
        return observed

    monkeypatch.setattr(inventory, "get", read_then_reassign)

    with pytest.raises(ConflictError) as exc_info:
        if operation == "occupy":
            engine.mark_occupied(ADMIN, 1)
        elif operation == "release":
            engine.release_system(ADMIN, 1)
        else:
            engine.set_maintenance(ADMIN, 1, True)

    assert exc_info.value.conflicting_ids == [1]
    system = read_system(1)
    assert system.status is SystemStatus.RESERVED
    assert system.assignment.request_id == second.request_id
    assert system.assignment.time_slot == "14:00-16:00"
    assert requests.get(second.request_id).allocated_systems == (1,)
    repository.close()
