"""Inventory store: the fixed pool of lab systems."""

from __future__ import annotations

import sqlite3
from typing import Iterable, Optional

from labreserve.domain.constraints import validate_assignment
from labreserve.domain.errors import ConflictError, NotFoundError
from labreserve.domain.models import (
    LabSystem,
    SystemAssignment,
    SystemCategory,
    SystemStatus,
)
from labreserve.repository.change_feed import SYSTEMS_COLLECTION
from labreserve.repository.data_repository import (
    DataRepository,
    Transaction,
    decode_timestamp,
    encode_timestamp,
)
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)

_SYSTEM_COLUMNS = """
    id,
    category,
    status,
    assigned_request_id,
    assigned_login_id,
    assigned_name,
    assigned_time_slot,
    version,
    created_at,
    updated_at
"""


def _row_to_system(row: sqlite3.Row) -> LabSystem:
    assignment = None
    if row["assigned_login_id"] is not None:
        assignment = SystemAssignment(
            request_id=str(row["assigned_request_id"] or ""),
            requester_login_id=str(row["assigned_login_id"]),
            requester_name=str(row["assigned_name"] or ""),
            time_slot=str(row["assigned_time_slot"] or ""),
        )
    return LabSystem(
        system_id=int(row["id"]),
        category=SystemCategory(row["category"]),
        status=SystemStatus(row["status"]),
        assignment=assignment,
        version=int(row["version"]),
        created_at=decode_timestamp(row["created_at"]),
        updated_at=decode_timestamp(row["updated_at"]),
    )


class InventoryStore:
    """Reads and compare-and-set writes over the `Systems` collection."""

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def get(self, system_id: int, *, txn: Optional[Transaction] = None) -> LabSystem:
        with self._repository.read(txn) as tx:
            row = tx.connection.execute(
                f"SELECT {_SYSTEM_COLUMNS} FROM Systems WHERE id = ?;",
                (system_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"System {system_id} does not exist")
        return _row_to_system(row)

    def get_many(
        self,
        system_ids: Iterable[int],
        *,
        txn: Optional[Transaction] = None,
    ) -> dict[int, LabSystem]:
        """Return the systems that exist among `system_ids`, keyed by id."""
        ids = list(dict.fromkeys(system_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._repository.read(txn) as tx:
            rows = tx.connection.execute(
                f"SELECT {_SYSTEM_COLUMNS} FROM Systems WHERE id IN ({placeholders});",
                tuple(ids),
            ).fetchall()
        systems = [_row_to_system(row) for row in rows]
        return {system.system_id: system for system in systems}

    def list_all(self, *, txn: Optional[Transaction] = None) -> list[LabSystem]:
        with self._repository.read(txn) as tx:
            rows = tx.connection.execute(
                f"SELECT {_SYSTEM_COLUMNS} FROM Systems ORDER BY id ASC;"
            ).fetchall()
        return [_row_to_system(row) for row in rows]

    def set_status(
        self,
        system_id: int,
        status: SystemStatus,
        assignment: Optional[SystemAssignment] = None,
        *,
        expected_status: Optional[SystemStatus] = None,
        expected_version: Optional[int] = None,
        txn: Optional[Transaction] = None,
    ) -> LabSystem:
        """Write `status` if the stored record still matches the caller's precondition.

        Maintenance clears any assignment unconditionally.
        """
        resolved_assignment = validate_assignment(status, assignment)
        with self._repository.transaction(txn) as tx:
            current = self.get(system_id, txn=tx)
            if expected_status is not None and current.status is not expected_status:
                raise ConflictError(
                    f"System {system_id} is {current.status.value}, expected {expected_status.value}",
                    [system_id],
                )
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(
                    f"System {system_id} changed since it was read",
                    [system_id],
                )

            stamp = encode_timestamp(self._repository.now())
            cursor = tx.connection.execute(
                """
                UPDATE Systems
                SET status = ?,
                    assigned_request_id = ?,
                    assigned_login_id = ?,
                    assigned_name = ?,
                    assigned_time_slot = ?,
                    version = version + 1,
                    updated_at = ?
                WHERE id = ? AND version = ?;
                """,
                (
                    status.value,
                    resolved_assignment.request_id if resolved_assignment else None,
                    resolved_assignment.requester_login_id if resolved_assignment else None,
                    resolved_assignment.requester_name if resolved_assignment else None,
                    resolved_assignment.time_slot if resolved_assignment else None,
                    stamp,
                    system_id,
                    current.version,
                ),
            )
            if cursor.rowcount != 1:
                raise ConflictError(f"System {system_id} changed during update", [system_id])
            tx.record_change(SYSTEMS_COLLECTION, system_id)
            updated = self.get(system_id, txn=tx)

        logger.debug(
            "System status written | system_id=%s | %s -> %s | version=%s",
            system_id,
            current.status.value,
            updated.status.value,
            updated.version,
        )
        return updated
