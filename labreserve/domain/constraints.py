"""Domain-level validation rules for requests, time slots, and allocations."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable, Optional, Sequence

from labreserve.domain.errors import InvalidArgumentError, InvalidTransitionError
from labreserve.domain.models import (
    HELD_STATUSES,
    TERMINAL_REQUEST_STATUSES,
    IntegrityIssue,
    LabRequest,
    LabSystem,
    RequestStatus,
    SystemAssignment,
    SystemStatus,
    TimeWindow,
)
from labreserve.utils.logger import format_ids


TIME_SLOT_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d-([01]\d|2[0-3]):[0-5]\d$"
TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: TERMINAL_REQUEST_STATUSES,
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}


def validate_transition(current: RequestStatus, target: RequestStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Request cannot move from {current.value} to {target.value}"
        )


def validate_time_of_day(value: str, field_name: str, pattern: str = TIME_OF_DAY_PATTERN) -> str:
    if re.fullmatch(pattern, value or "") is None:
        raise InvalidArgumentError(f"{field_name} must follow HH:mm format", [value])
    return value


def validate_time_window(start: str, end: str, pattern: str = TIME_OF_DAY_PATTERN) -> TimeWindow:
    validate_time_of_day(start, "start", pattern)
    validate_time_of_day(end, "end", pattern)
    # Zero-padded HH:mm strings order the same lexicographically and chronologically.
    if end <= start:
        raise InvalidArgumentError("end time must be later than start time", [start, end])
    return TimeWindow(start=start, end=end)


def parse_time_slot(slot: str, pattern: str = TIME_SLOT_PATTERN) -> TimeWindow:
    if re.fullmatch(pattern, slot or "") is None:
        raise InvalidArgumentError("time_slot must follow HH:mm-HH:mm format", [slot])
    start, end = slot.split("-")
    if end <= start:
        raise InvalidArgumentError("time_slot end must be later than start", [slot])
    return TimeWindow(start=start, end=end)


def validate_date(value: str) -> str:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError("date must follow YYYY-MM-DD format", [value]) from exc
    return value


def validate_purpose(value: str) -> str:
    purpose = (value or "").strip()
    if not purpose:
        raise InvalidArgumentError("purpose must not be empty", [value])
    return purpose


def normalize_system_ids(system_ids: Iterable[int]) -> tuple[int, ...]:
    """Return ids in caller order after rejecting empty, duplicate, or non-positive input."""
    ids = tuple(system_ids)
    if not ids:
        raise InvalidArgumentError("at least one system id is required")
    non_positive = [value for value in ids if int(value) <= 0]
    if non_positive:
        raise InvalidArgumentError(
            f"system ids must be positive integers: {format_ids(non_positive)}",
            non_positive,
        )
    seen: set[int] = set()
    duplicates: list[int] = []
    for value in ids:
        if value in seen and value not in duplicates:
            duplicates.append(value)
        seen.add(value)
    if duplicates:
        raise InvalidArgumentError(
            f"system ids must be distinct; repeated: {format_ids(duplicates)}",
            duplicates,
        )
    return tuple(int(value) for value in ids)


def validate_assignment(
    status: SystemStatus,
    assignment: Optional[SystemAssignment],
) -> Optional[SystemAssignment]:
    """Return the assignment to persist for `status`.

    Available and Maintenance never carry an assignment; Reserved and Occupied
    always do.
    """
    if status is SystemStatus.MAINTENANCE:
        return None
    if status is SystemStatus.AVAILABLE:
        if assignment is not None:
            raise InvalidArgumentError("available systems cannot carry an assignment")
        return None
    if assignment is None:
        raise InvalidArgumentError(f"{status.value} systems require an assignment")
    return assignment


def find_integrity_issues(
    systems: Sequence[LabSystem],
    requests: Sequence[LabRequest],
) -> list[IntegrityIssue]:
    """Cross-check held systems against approved allocations.

    `unbacked_hold` means a Reserved/Occupied system whose assignment does not
    point at an Approved request listing it. `orphaned_allocation` means an
    Approved request lists a system that no longer carries its assignment,
    which is expected after a maintenance eviction or a release.
    """
    requests_by_id = {request.request_id: request for request in requests}
    systems_by_id = {system.system_id: system for system in systems}
    issues: list[IntegrityIssue] = []

    for system in systems:
        if system.status not in HELD_STATUSES:
            continue
        assignment = system.assignment
        owner = requests_by_id.get(assignment.request_id) if assignment else None
        if (
            owner is None
            or owner.status is not RequestStatus.APPROVED
            or system.system_id not in owner.allocated_systems
        ):
            issues.append(
                IntegrityIssue(
                    kind="unbacked_hold",
                    system_id=system.system_id,
                    request_id=assignment.request_id if assignment else None,
                    detail="held system has no approved request allocating it",
                )
            )

    for request in requests:
        if request.status is not RequestStatus.APPROVED:
            continue
        for system_id in request.allocated_systems:
            system = systems_by_id.get(system_id)
            if (
                system is None
                or system.assignment is None
                or system.assignment.request_id != request.request_id
            ):
                issues.append(
                    IntegrityIssue(
                        kind="orphaned_allocation",
                        system_id=system_id,
                        request_id=request.request_id,
                        detail="approved request lists a system no longer assigned to it",
                    )
                )
    return issues
