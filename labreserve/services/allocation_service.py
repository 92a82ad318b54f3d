"""Allocation engine: request lifecycle and inventory mutation.

All mutating operations take an explicit `CallerIdentity` and are atomic.
`allocate` is split into a pre-flight step that validates against current
state and records the versions it saw, and a commit step that re-reads every
touched record inside one write transaction and refuses to proceed if any of
them moved in between.
"""

from __future__ import annotations

from typing import Iterable, Optional

from labreserve.domain.constraints import (
    normalize_system_ids,
    parse_time_slot,
    validate_date,
    validate_purpose,
    validate_time_window,
)
from labreserve.domain.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidTransitionError,
    PermissionDeniedError,
)
from labreserve.domain.models import (
    HELD_STATUSES,
    REQUESTER_ROLES,
    AllocationPlan,
    AllocationResult,
    CallerIdentity,
    LabRequest,
    LabSystem,
    RequestDraft,
    RequestPatch,
    RequestStatus,
    RequestType,
    Role,
    SystemAssignment,
    SystemStatus,
)
from labreserve.repository.data_repository import DataRepository
from labreserve.repository.inventory_store import InventoryStore
from labreserve.repository.request_store import RequestStore
from labreserve.services.notification_service import NotificationService
from labreserve.utils.config import Settings, get_settings
from labreserve.utils.logger import format_ids, get_logger


logger = get_logger(__name__)


def _require_admin(identity: CallerIdentity, action: str) -> None:
    if not identity.is_admin:
        raise PermissionDeniedError(f"Only administrators may {action}")


class AllocationEngine:
    """Moves requests through their states and keeps inventory consistent."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        inventory: Optional[InventoryStore] = None,
        requests: Optional[RequestStore] = None,
        notifier: Optional[NotificationService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._inventory = inventory or InventoryStore(self._repository)
        self._requests = requests or RequestStore(self._repository)
        self._notifier = notifier

    # -- requester operations -------------------------------------------------

    def submit_request(
        self,
        identity: CallerIdentity,
        *,
        purpose: str,
        date: str,
        start: str,
        end: str,
        expected_count: Optional[int] = None,
    ) -> LabRequest:
        if identity.role not in REQUESTER_ROLES:
            raise PermissionDeniedError("Only students and faculty may submit requests")
        cleaned_purpose = validate_purpose(purpose)
        validate_date(date)
        window = validate_time_window(start, end)
        if expected_count is not None:
            if identity.role is not Role.FACULTY:
                raise InvalidArgumentError(
                    "expected_count applies to faculty class sessions only",
                    [expected_count],
                )
            if expected_count < 1:
                raise InvalidArgumentError(
                    "expected_count must be a positive number",
                    [expected_count],
                )

        draft = RequestDraft(
            requester_uid=identity.uid,
            requester_login_id=identity.login_id,
            requester_name=identity.display_name,
            requester_role=identity.role,
            request_type=(
                RequestType.CLASS if identity.role is Role.FACULTY else RequestType.PERSONAL
            ),
            purpose=cleaned_purpose,
            date=date,
            window=window,
            expected_count=expected_count,
        )
        return self._requests.create(draft)

    def cancel(self, identity: CallerIdentity, request_id: str) -> LabRequest:
        request = self._requests.get(request_id)
        if request.requester_uid != identity.uid:
            raise PermissionDeniedError("Only the requester who submitted a request may cancel it")
        if request.is_terminal:
            raise InvalidTransitionError(
                f"Request {request_id} is {request.status.value}; only pending requests can be cancelled"
            )
        updated = self._requests.transition(
            request_id,
            RequestStatus.PENDING,
            RequestStatus.CANCELLED,
        )
        self._notify(updated)
        return updated

    # -- administrator operations ---------------------------------------------

    def prepare_allocation(
        self,
        identity: CallerIdentity,
        request_id: str,
        system_ids: Iterable[int],
        time_slot: str,
    ) -> AllocationPlan:
        """Validate an allocation against current state without writing anything."""
        _require_admin(identity, "allocate systems")
        ids = normalize_system_ids(system_ids)

        request = self._requests.get(request_id)
        if request.is_terminal:
            raise InvalidTransitionError(
                f"Request {request_id} is {request.status.value}; only pending requests can be allocated"
            )
        parse_time_slot(time_slot)

        found = self._inventory.get_many(ids)
        offending = [
            system_id
            for system_id in ids
            if system_id not in found or found[system_id].status is SystemStatus.MAINTENANCE
        ]
        if offending:
            raise InvalidArgumentError(
                f"These systems are unavailable or don't exist: {format_ids(offending)}",
                offending,
            )
        return AllocationPlan(
            request_id=request.request_id,
            request_version=request.version,
            system_ids=ids,
            time_slot=time_slot,
            system_versions={system_id: found[system_id].version for system_id in ids},
        )

    def commit_allocation(self, identity: CallerIdentity, plan: AllocationPlan) -> AllocationResult:
        """Apply a prepared allocation in one transaction or not at all."""
        _require_admin(identity, "allocate systems")
        with self._repository.transaction() as txn:
            request = self._requests.get(plan.request_id, txn=txn)
            if (
                request.status is not RequestStatus.PENDING
                or request.version != plan.request_version
            ):
                raise ConflictError(
                    f"Request {plan.request_id} changed since validation; refresh and retry",
                    [plan.request_id],
                )

            current = self._inventory.get_many(plan.system_ids, txn=txn)
            conflicting = [
                system_id
                for system_id in plan.system_ids
                if system_id not in current
                or current[system_id].version != plan.system_versions.get(system_id)
                or current[system_id].status in HELD_STATUSES
                or current[system_id].status is SystemStatus.MAINTENANCE
            ]
            if conflicting:
                logger.warning(
                    "Allocation conflict | request_id=%s | systems=%s",
                    plan.request_id,
                    format_ids(conflicting),
                )
                raise ConflictError(
                    f"Systems changed or are already held: {format_ids(conflicting)}; "
                    "refresh and retry",
                    conflicting,
                )

            assignment = SystemAssignment(
                request_id=request.request_id,
                requester_login_id=request.requester_login_id,
                requester_name=request.requester_name,
                time_slot=plan.time_slot,
            )
            systems = tuple(
                self._inventory.set_status(
                    system_id,
                    SystemStatus.RESERVED,
                    assignment,
                    expected_version=plan.system_versions[system_id],
                    txn=txn,
                )
                for system_id in plan.system_ids
            )
            approved = self._requests.transition(
                request.request_id,
                RequestStatus.PENDING,
                RequestStatus.APPROVED,
                RequestPatch(
                    allocated_systems=plan.system_ids,
                    reviewer_login_id=identity.login_id,
                ),
                expected_version=plan.request_version,
                txn=txn,
            )

        logger.info(
            "Allocation committed | request_id=%s | systems=%s | slot=%s | admin=%s",
            approved.request_id,
            format_ids(plan.system_ids),
            plan.time_slot,
            identity.login_id,
        )
        self._notify(approved, systems)
        return AllocationResult(request=approved, systems=systems)

    def allocate(
        self,
        identity: CallerIdentity,
        request_id: str,
        system_ids: Iterable[int],
        time_slot: str,
    ) -> AllocationResult:
        plan = self.prepare_allocation(identity, request_id, system_ids, time_slot)
        return self.commit_allocation(identity, plan)

    def approve_without_allocation(self, identity: CallerIdentity, request_id: str) -> LabRequest:
        return self._review(identity, request_id, RequestStatus.APPROVED, "approve requests")

    def reject(self, identity: CallerIdentity, request_id: str) -> LabRequest:
        return self._review(identity, request_id, RequestStatus.REJECTED, "reject requests")

    def _review(
        self,
        identity: CallerIdentity,
        request_id: str,
        target: RequestStatus,
        action: str,
    ) -> LabRequest:
        _require_admin(identity, action)
        request = self._requests.get(request_id)
        if request.is_terminal:
            raise InvalidTransitionError(
                f"Request {request_id} is {request.status.value}; only pending requests can be reviewed"
            )
        updated = self._requests.transition(
            request_id,
            RequestStatus.PENDING,
            target,
            RequestPatch(reviewer_login_id=identity.login_id),
        )
        self._notify(updated)
        return updated

    def set_maintenance(
        self,
        identity: CallerIdentity,
        system_id: int,
        in_maintenance: bool,
    ) -> LabSystem:
        _require_admin(identity, "toggle maintenance")
        current = self._inventory.get(system_id)
        if in_maintenance:
            if current.status is SystemStatus.MAINTENANCE:
                return current
            updated = self._inventory.set_status(
                system_id,
                SystemStatus.MAINTENANCE,
                expected_status=current.status,
                expected_version=current.version,
            )
            if current.assignment is not None:
                logger.warning(
                    "Maintenance evicted assignment | system_id=%s | request_id=%s | requester=%s",
                    system_id,
                    current.assignment.request_id,
                    current.assignment.requester_login_id,
                )
            return updated

        if current.status is not SystemStatus.MAINTENANCE:
            raise InvalidTransitionError(f"System {system_id} is not under maintenance")
        return self._inventory.set_status(
            system_id,
            SystemStatus.AVAILABLE,
            expected_status=SystemStatus.MAINTENANCE,
            expected_version=current.version,
        )

    def mark_occupied(self, identity: CallerIdentity, system_id: int) -> LabSystem:
        """Check the holder in: Reserved -> Occupied, keeping the assignment."""
        _require_admin(identity, "check systems in")
        current = self._inventory.get(system_id)
        if current.status is not SystemStatus.RESERVED:
            raise InvalidTransitionError(
                f"System {system_id} is {current.status.value}; only reserved systems can be occupied"
            )
        return self._inventory.set_status(
            system_id,
            SystemStatus.OCCUPIED,
            current.assignment,
            expected_status=SystemStatus.RESERVED,
            expected_version=current.version,
        )

    def release_system(self, identity: CallerIdentity, system_id: int) -> LabSystem:
        """End a session: Reserved/Occupied -> Available, clearing the assignment."""
        _require_admin(identity, "release systems")
        current = self._inventory.get(system_id)
        if current.status not in HELD_STATUSES:
            raise InvalidTransitionError(
                f"System {system_id} is {current.status.value}; nothing to release"
            )
        updated = self._inventory.set_status(
            system_id,
            SystemStatus.AVAILABLE,
            expected_status=current.status,
            expected_version=current.version,
        )
        logger.info(
            "System released | system_id=%s | request_id=%s",
            system_id,
            current.assignment.request_id if current.assignment else None,
        )
        return updated

    def _notify(self, request: LabRequest, systems: tuple[LabSystem, ...] = ()) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.request_transitioned(request, systems)
        except Exception:
            logger.exception("Notification hook failed | request_id=%s", request.request_id)
