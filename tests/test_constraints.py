"""Tests for request, time-slot, and allocation validation rules."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from labreserve.domain.constraints import (
    ALLOWED_TRANSITIONS,
    find_integrity_issues,
    normalize_system_ids,
    parse_time_slot,
    validate_assignment,
    validate_date,
    validate_purpose,
    validate_time_window,
    validate_transition,
)
from labreserve.domain.errors import InvalidArgumentError, InvalidTransitionError
from labreserve.domain.models import (
    TERMINAL_REQUEST_STATUSES,
    LabRequest,
    LabSystem,
    RequestStatus,
    RequestType,
    Role,
    SystemAssignment,
    SystemCategory,
    SystemStatus,
    TimeWindow,
)


NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _system(system_id: int, status: SystemStatus, request_id: str | None = None) -> LabSystem:
    assignment = None
    if request_id is not None:
        assignment = SystemAssignment(request_id, "S1234", "Asha Rao", "10:00-12:00")
    return LabSystem(
        system_id=system_id,
        category=SystemCategory.HIGH_TIER,
        status=status,
        assignment=assignment,
        version=1,
        created_at=NOW,
        updated_at=NOW,
    )


def _request(request_id: str, status: RequestStatus, allocated: tuple[int, ...] = ()) -> LabRequest:
    return LabRequest(
        request_id=request_id,
        requester_uid="uid-1",
        requester_login_id="S1234",
        requester_name="Asha Rao",
        requester_role=Role.STUDENT,
        request_type=RequestType.PERSONAL,
        purpose="Thesis experiments",
        date="2024-05-01",
        window=TimeWindow("10:00", "12:00"),
        expected_count=None,
        status=status,
        allocated_systems=allocated,
        submitted_at=NOW,
        reviewed_at=None,
        reviewer_login_id=None,
        version=1,
    )


# --- time slots ---

def test_parse_time_slot_returns_window():
    window = parse_time_slot("10:00-12:00")
    assert window == TimeWindow(start="10:00", end="12:00")
    assert window.as_slot == "10:00-12:00"


@pytest.mark.parametrize("slot", ["10-12", "10:00 - 12:00", "24:00-25:00", "9:00-12:00", ""])
def test_parse_time_slot_rejects_bad_format(slot: str):
    with pytest.raises(InvalidArgumentError) as exc_info:
        parse_time_slot(slot)
    assert exc_info.value.offending_values == [slot]


@pytest.mark.parametrize("slot", ["12:00-10:00", "10:00-10:00"])
def test_parse_time_slot_requires_end_after_start(slot: str):
    with pytest.raises(InvalidArgumentError):
        parse_time_slot(slot)


def test_time_window_requires_end_after_start():
    assert validate_time_window("08:30", "09:15").end == "09:15"
    with pytest.raises(InvalidArgumentError):
        validate_time_window("14:00", "13:59")


def test_date_and_purpose_validation():
    assert validate_date("2024-05-01") == "2024-05-01"
    with pytest.raises(InvalidArgumentError):
        validate_date("01/05/2024")
    assert validate_purpose("  GPU training  ") == "GPU training"
    with pytest.raises(InvalidArgumentError):
        validate_purpose("   ")


# --- system ids ---

def test_normalize_system_ids_keeps_caller_order():
    assert normalize_system_ids([15, 1, 2]) == (15, 1, 2)


def test_normalize_system_ids_rejects_empty():
    with pytest.raises(InvalidArgumentError):
        normalize_system_ids([])


def test_normalize_system_ids_lists_duplicates():
    with pytest.raises(InvalidArgumentError) as exc_info:
        normalize_system_ids([1, 2, 1, 3, 2])
    assert exc_info.value.offending_values == [1, 2]


def test_normalize_system_ids_rejects_non_positive():
    with pytest.raises(InvalidArgumentError) as exc_info:
        normalize_system_ids([0, 4, -2])
    assert exc_info.value.offending_values == [0, -2]


# --- state machine ---

@pytest.mark.parametrize(
    "target",
    [RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED],
)
def test_pending_reaches_every_terminal_state(target: RequestStatus):
    validate_transition(RequestStatus.PENDING, target)


@pytest.mark.parametrize(
    "current",
    [RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED],
)
@pytest.mark.parametrize("target", list(RequestStatus))
def test_terminal_states_are_closed(current: RequestStatus, target: RequestStatus):
    with pytest.raises(InvalidTransitionError):
        validate_transition(current, target)



def test_terminal_statuses_match_state_machine():
    assert ALLOWED_TRANSITIONS[RequestStatus.PENDING] == TERMINAL_REQUEST_STATUSES
    assert not _request("r1", RequestStatus.PENDING).is_terminal
    for status in TERMINAL_REQUEST_STATUSES:
        assert _request("r1", status).is_terminal
        assert ALLOWED_TRANSITIONS[status] == frozenset()

# --- assignments ---

def test_maintenance_drops_assignment():
    assignment = SystemAssignment("r1", "S1234", "Asha Rao", "10:00-12:00")
    assert validate_assignment(SystemStatus.MAINTENANCE, assignment) is None


def test_held_status_requires_assignment():
    with pytest.raises(InvalidArgumentError):
        validate_assignment(SystemStatus.RESERVED, None)


def test_available_rejects_assignment():
    assignment = SystemAssignment("r1", "S1234", "Asha Rao", "10:00-12:00")
    with pytest.raises(InvalidArgumentError):
        validate_assignment(SystemStatus.AVAILABLE, assignment)


# --- integrity ---

def test_consistent_allocation_has_no_issues():
    systems = [_system(1, SystemStatus.RESERVED, "r1"), _system(2, SystemStatus.AVAILABLE)]
    requests = [_request("r1", RequestStatus.APPROVED, (1,))]
    assert find_integrity_issues(systems, requests) == []


def test_hold_without_approved_request_is_reported():
    systems = [_system(1, SystemStatus.OCCUPIED, "r1")]
    requests = [_request("r1", RequestStatus.PENDING)]
    issues = find_integrity_issues(systems, requests)
    assert [(issue.kind, issue.system_id) for issue in issues] == [("unbacked_hold", 1)]


def test_evicted_system_leaves_orphaned_allocation():
    systems = [_system(1, SystemStatus.MAINTENANCE)]
    requests = [_request("r1", RequestStatus.APPROVED, (1,))]
    issues = find_integrity_issues(systems, requests)
    assert [(issue.kind, issue.request_id) for issue in issues] == [("orphaned_allocation", "r1")]
