"""Read-side projections for the requester and administrator dashboards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import pandas as pd

from labreserve.domain.constraints import find_integrity_issues
from labreserve.domain.models import (
    IntegrityIssue,
    LabRequest,
    LabSystem,
    RequestStatus,
    SystemCategory,
    SystemStatus,
)
from labreserve.repository.change_feed import ChangeEvent
from labreserve.repository.data_repository import DataRepository
from labreserve.repository.inventory_store import InventoryStore
from labreserve.repository.request_store import RequestStore
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)


def _count_by(values: list[str], members: list[str]) -> dict[str, int]:
    """Count `values` per enum member, zero-filling members that never occur."""
    counts = pd.Series(values, dtype="object").value_counts()
    return {member: int(count) for member, count in counts.reindex(members, fill_value=0).items()}


def compute_stats(systems: list[LabSystem], requests: list[LabRequest]) -> dict[str, Any]:
    systems_by_status = _count_by(
        [system.status.value for system in systems],
        [status.value for status in SystemStatus],
    )
    requests_by_status = _count_by(
        [request.status.value for request in requests],
        [status.value for status in RequestStatus],
    )
    return {
        "total_systems": len(systems),
        "systems_by_status": systems_by_status,
        "systems_by_category": _count_by(
            [system.category.value for system in systems],
            [category.value for category in SystemCategory],
        ),
        "requests_by_status": requests_by_status,
        "pending_requests": requests_by_status[RequestStatus.PENDING.value],
    }


def filter_my_requests(requests: list[LabRequest], requester_uid: str) -> list[LabRequest]:
    owned = [request for request in requests if request.requester_uid == requester_uid]
    return sorted(owned, key=lambda request: request.submitted_at, reverse=True)


def summarize_requester(requests: list[LabRequest], requester_uid: str) -> dict[str, int]:
    owned = filter_my_requests(requests, requester_uid)
    counts = _count_by(
        [request.status.value for request in owned],
        [status.value for status in RequestStatus],
    )
    return {"total": len(owned), **counts}


def build_pending_queue(requests: list[LabRequest]) -> list[LabRequest]:
    pending = [request for request in requests if request.status is RequestStatus.PENDING]
    return sorted(pending, key=lambda request: request.submitted_at, reverse=True)


@dataclass(frozen=True)
class DashboardSnapshot:
    """Point-in-time copy of both collections; every view is derived from it."""

    systems: list[LabSystem]
    requests: list[LabRequest]
    taken_at: datetime

    def stats(self) -> dict[str, Any]:
        return compute_stats(self.systems, self.requests)

    def my_requests(self, requester_uid: str) -> list[LabRequest]:
        return filter_my_requests(self.requests, requester_uid)

    def requester_summary(self, requester_uid: str) -> dict[str, int]:
        return summarize_requester(self.requests, requester_uid)

    def pending_queue(self) -> list[LabRequest]:
        return build_pending_queue(self.requests)

    def integrity_report(self) -> list[IntegrityIssue]:
        return find_integrity_issues(self.systems, self.requests)


class ViewProjector:
    """Builds dashboard views from the stores; holds no write authority."""

    def __init__(
        self,
        repository: DataRepository,
        inventory: Optional[InventoryStore] = None,
        requests: Optional[RequestStore] = None,
    ) -> None:
        self._repository = repository
        self._inventory = inventory or InventoryStore(repository)
        self._requests = requests or RequestStore(repository)

    def snapshot(self) -> DashboardSnapshot:
        with self._repository.read() as txn:
            systems = self._inventory.list_all(txn=txn)
            requests = self._requests.list_all(txn=txn)
        return DashboardSnapshot(
            systems=systems,
            requests=requests,
            taken_at=self._repository.now(),
        )

    def stats(self) -> dict[str, Any]:
        return self.snapshot().stats()

    def my_requests(self, requester_uid: str) -> list[LabRequest]:
        return self.snapshot().my_requests(requester_uid)

    def requester_summary(self, requester_uid: str) -> dict[str, int]:
        return self.snapshot().requester_summary(requester_uid)

    def pending_queue(self) -> list[LabRequest]:
        return self.snapshot().pending_queue()

    def integrity_report(self) -> list[IntegrityIssue]:
        return self.snapshot().integrity_report()

    def subscribe(self, on_change: Callable[[DashboardSnapshot], None]) -> Callable[[], None]:
        """Call `on_change` with a fresh snapshot after every committed change.

        Callbacks run on the change-feed workers and must not write; a write
        attempted from a callback is refused.
        """

        def handle(events: tuple[ChangeEvent, ...]) -> None:
            logger.debug(
                "Recomputing dashboard | collections=%s",
                sorted({event.collection for event in events}),
            )
            on_change(self.snapshot())

        return self._repository.change_feed.subscribe(handle)
