"""Response DTOs shared by the controllers."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from labreserve.domain.models import LabRequest, LabSystem


class AssignmentResponse(BaseModel):
    request_id: str
    requester_login_id: str
    requester_name: str
    time_slot: str


class SystemResponse(BaseModel):
    system_id: int = Field(gt=0)
    category: str
    status: str
    assignment: Optional[AssignmentResponse] = None
    version: int = Field(ge=1)
    updated_at: datetime

    @classmethod
    def from_domain(cls, system: LabSystem) -> "SystemResponse":
        assignment = None
        if system.assignment is not None:
            assignment = AssignmentResponse(**system.assignment.to_dict())
        return cls(
            system_id=system.system_id,
            category=system.category.value,
            status=system.status.value,
            assignment=assignment,
            version=system.version,
            updated_at=system.updated_at,
        )


class RequestResponse(BaseModel):
    request_id: str
    requester_uid: str
    requester_login_id: str
    requester_name: str
    requester_role: str
    request_type: str
    purpose: str
    date: str
    start: str
    end: str
    expected_count: Optional[int] = None
    status: str
    allocated_systems: list[int]
    submitted_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewer_login_id: Optional[str] = None

    @classmethod
    def from_domain(cls, request: LabRequest) -> "RequestResponse":
        payload = request.to_dict()
        payload.pop("version")
        return cls(**payload)
