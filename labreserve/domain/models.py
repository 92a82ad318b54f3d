"""Domain models for lab systems, reservation requests, and callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SystemCategory(str, Enum):
    HIGH_TIER = "high_tier"
    STANDARD_TIER = "standard_tier"


class SystemStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Role(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"


class RequestType(str, Enum):
    PERSONAL = "personal"
    CLASS = "class"


HELD_STATUSES = frozenset({SystemStatus.RESERVED, SystemStatus.OCCUPIED})
TERMINAL_REQUEST_STATUSES = frozenset(
    {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED}
)
REQUESTER_ROLES = frozenset({Role.STUDENT, Role.FACULTY})


@dataclass(frozen=True)
class CallerIdentity:
    """Resolved, request-scoped identity of whoever invokes the engine."""

    uid: str
    login_id: str
    role: Role
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.login_id

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class SystemAssignment:
    request_id: str
    requester_login_id: str
    requester_name: str
    time_slot: str

    def to_dict(self) -> dict[str, str]:
        return {
            "request_id": self.request_id,
            "requester_login_id": self.requester_login_id,
            "requester_name": self.requester_name,
            "time_slot": self.time_slot,
        }


@dataclass(frozen=True)
class LabSystem:
    system_id: int
    category: SystemCategory
    status: SystemStatus
    assignment: Optional[SystemAssignment]
    version: int
    created_at: datetime
    updated_at: datetime

    @property
    def is_held(self) -> bool:
        return self.status in HELD_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_id": self.system_id,
            "category": self.category.value,
            "status": self.status.value,
            "assignment": self.assignment.to_dict() if self.assignment else None,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class TimeWindow:
    start: str
    end: str

    @property
    def as_slot(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class RequestDraft:
    """Everything needed to create a request; produced from a caller identity."""

    requester_uid: str
    requester_login_id: str
    requester_name: str
    requester_role: Role
    request_type: RequestType
    purpose: str
    date: str
    window: TimeWindow
    expected_count: Optional[int] = None


@dataclass(frozen=True)
class LabRequest:
    request_id: str
    requester_uid: str
    requester_login_id: str
    requester_name: str
    requester_role: Role
    request_type: RequestType
    purpose: str
    date: str
    window: TimeWindow
    expected_count: Optional[int]
    status: RequestStatus
    allocated_systems: tuple[int, ...]
    submitted_at: datetime
    reviewed_at: Optional[datetime]
    reviewer_login_id: Optional[str]
    version: int

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "requester_uid": self.requester_uid,
            "requester_login_id": self.requester_login_id,
            "requester_name": self.requester_name,
            "requester_role": self.requester_role.value,
            "request_type": self.request_type.value,
            "purpose": self.purpose,
            "date": self.date,
            "start": self.window.start,
            "end": self.window.end,
            "expected_count": self.expected_count,
            "status": self.status.value,
            "allocated_systems": list(self.allocated_systems),
            "submitted_at": self.submitted_at.isoformat(),
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewer_login_id": self.reviewer_login_id,
            "version": self.version,
        }


@dataclass(frozen=True)
class RequestPatch:
    """Fields a transition may write alongside the new status."""

    allocated_systems: Optional[tuple[int, ...]] = None
    reviewer_login_id: Optional[str] = None


@dataclass(frozen=True)
class AllocationPlan:
    """Pre-flight result: what to reserve and the record versions observed."""

    request_id: str
    request_version: int
    system_ids: tuple[int, ...]
    time_slot: str
    system_versions: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AllocationResult:
    request: LabRequest
    systems: tuple[LabSystem, ...]


@dataclass(frozen=True)
class IntegrityIssue:
    kind: str
    system_id: int
    request_id: Optional[str]
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "system_id": self.system_id,
            "request_id": self.request_id,
            "detail": self.detail,
        }
