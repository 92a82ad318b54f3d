"""Request store: reservation demand records and their status transitions."""

from __future__ import annotations

import json
import sqlite3
from typing import Optional
from uuid import uuid4

from labreserve.domain.constraints import validate_transition
from labreserve.domain.errors import ConflictError, NotFoundError
from labreserve.domain.models import (
    LabRequest,
    RequestDraft,
    RequestPatch,
    RequestStatus,
    RequestType,
    Role,
    TimeWindow,
)
from labreserve.repository.change_feed import REQUESTS_COLLECTION
from labreserve.repository.data_repository import (
    DataRepository,
    Transaction,
    decode_timestamp,
    encode_timestamp,
)
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)

_REQUEST_COLUMNS = """
    id,
    requester_uid,
    requester_login_id,
    requester_name,
    requester_role,
    request_type,
    purpose,
    date,
    start_time,
    end_time,
    expected_count,
    status,
    allocated_systems,
    submitted_at,
    reviewed_at,
    reviewer_login_id,
    version
"""


def _row_to_request(row: sqlite3.Row) -> LabRequest:
    return LabRequest(
        request_id=str(row["id"]),
        requester_uid=str(row["requester_uid"]),
        requester_login_id=str(row["requester_login_id"]),
        requester_name=str(row["requester_name"]),
        requester_role=Role(row["requester_role"]),
        request_type=RequestType(row["request_type"]),
        purpose=str(row["purpose"]),
        date=str(row["date"]),
        window=TimeWindow(start=str(row["start_time"]), end=str(row["end_time"])),
        expected_count=(
            int(row["expected_count"]) if row["expected_count"] is not None else None
        ),
        status=RequestStatus(row["status"]),
        allocated_systems=tuple(int(value) for value in json.loads(row["allocated_systems"])),
        submitted_at=decode_timestamp(row["submitted_at"]),
        reviewed_at=decode_timestamp(row["reviewed_at"]),
        reviewer_login_id=row["reviewer_login_id"],
        version=int(row["version"]),
    )


class RequestStore:
    """CRUD and compare-and-set transitions over the `Requests` collection."""

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def create(self, draft: RequestDraft, *, txn: Optional[Transaction] = None) -> LabRequest:
        request_id = uuid4().hex
        with self._repository.transaction(txn) as tx:
            tx.connection.execute(
                """
                INSERT INTO Requests (
                    id,
                    requester_uid,
                    requester_login_id,
                    requester_name,
                    requester_role,
                    request_type,
                    purpose,
                    date,
                    start_time,
                    end_time,
                    expected_count,
                    status,
                    submitted_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    request_id,
                    draft.requester_uid,
                    draft.requester_login_id,
                    draft.requester_name,
                    draft.requester_role.value,
                    draft.request_type.value,
                    draft.purpose,
                    draft.date,
                    draft.window.start,
                    draft.window.end,
                    draft.expected_count,
                    RequestStatus.PENDING.value,
                    encode_timestamp(self._repository.now()),
                ),
            )
            tx.record_change(REQUESTS_COLLECTION, request_id)
            created = self.get(request_id, txn=tx)
        logger.info(
            "Request created | request_id=%s | requester=%s | date=%s | window=%s",
            created.request_id,
            created.requester_login_id,
            created.date,
            created.window.as_slot,
        )
        return created

    def get(self, request_id: str, *, txn: Optional[Transaction] = None) -> LabRequest:
        with self._repository.read(txn) as tx:
            row = tx.connection.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM Requests WHERE id = ?;",
                (request_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Request {request_id} does not exist")
        return _row_to_request(row)

    def list_by_requester(
        self,
        requester_uid: str,
        *,
        txn: Optional[Transaction] = None,
    ) -> list[LabRequest]:
        """Requests owned by `requester_uid`, newest submission first."""
        with self._repository.read(txn) as tx:
            rows = tx.connection.execute(
                f"""
                SELECT {_REQUEST_COLUMNS}
                FROM Requests
                WHERE requester_uid = ?
                ORDER BY submitted_at DESC, rowid DESC;
                """,
                (requester_uid,),
            ).fetchall()
        return [_row_to_request(row) for row in rows]

    def list_by_status(
        self,
        status: RequestStatus,
        *,
        txn: Optional[Transaction] = None,
    ) -> list[LabRequest]:
        """Requests in `status`; order is unspecified, callers sort."""
        with self._repository.read(txn) as tx:
            rows = tx.connection.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM Requests WHERE status = ?;",
                (status.value,),
            ).fetchall()
        return [_row_to_request(row) for row in rows]

    def list_all(self, *, txn: Optional[Transaction] = None) -> list[LabRequest]:
        with self._repository.read(txn) as tx:
            rows = tx.connection.execute(f"SELECT {_REQUEST_COLUMNS} FROM Requests;").fetchall()
        return [_row_to_request(row) for row in rows]

    def transition(
        self,
        request_id: str,
        expected_status: RequestStatus,
        new_status: RequestStatus,
        patch: Optional[RequestPatch] = None,
        *,
        expected_version: Optional[int] = None,
        txn: Optional[Transaction] = None,
    ) -> LabRequest:
        """Move a request from `expected_status` to `new_status` atomically."""
        validate_transition(expected_status, new_status)
        patch = patch or RequestPatch()
        with self._repository.transaction(txn) as tx:
            current = self.get(request_id, txn=tx)
            if current.status is not expected_status:
                raise ConflictError(
                    f"Request {request_id} is {current.status.value}, "
                    f"expected {expected_status.value}",
                    [request_id],
                )
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(f"Request {request_id} changed since it was read", [request_id])

            allocated = (
                patch.allocated_systems
                if patch.allocated_systems is not None
                else current.allocated_systems
            )
            reviewed_at = current.reviewed_at
            reviewer_login_id = current.reviewer_login_id
            if patch.reviewer_login_id is not None:
                reviewer_login_id = patch.reviewer_login_id
                reviewed_at = self._repository.now()

            cursor = tx.connection.execute(
                """
                UPDATE Requests
                SET status = ?,
                    allocated_systems = ?,
                    reviewed_at = ?,
                    reviewer_login_id = ?,
                    version = version + 1
                WHERE id = ? AND status = ? AND version = ?;
                """,
                (
                    new_status.value,
                    json.dumps(list(allocated)),
                    encode_timestamp(reviewed_at) if reviewed_at else None,
                    reviewer_login_id,
                    request_id,
                    expected_status.value,
                    current.version,
                ),
            )
            if cursor.rowcount != 1:
                raise ConflictError(f"Request {request_id} changed during update", [request_id])
            tx.record_change(REQUESTS_COLLECTION, request_id)
            updated = self.get(request_id, txn=tx)

        logger.info(
            "Request transitioned | request_id=%s | %s -> %s | reviewer=%s",
            request_id,
            expected_status.value,
            new_status.value,
            updated.reviewer_login_id,
        )
        return updated
