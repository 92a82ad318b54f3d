"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

from labreserve.domain.errors import PermissionDeniedError, StoreUnavailableError
from labreserve.domain.models import SystemCategory, SystemStatus
from labreserve.repository.change_feed import (
    SYSTEMS_COLLECTION,
    ChangeEvent,
    ChangeFeed,
    in_change_callback,
)
from labreserve.utils.config import Settings, get_settings
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class Transaction:
    """Open connection plus the change events to publish once it commits."""

    connection: sqlite3.Connection
    read_only: bool = False
    changes: list[ChangeEvent] = field(default_factory=list)

    def record_change(self, collection: str, document_id: object) -> None:
        if self.read_only:
            raise RuntimeError("Cannot record changes inside a read-only transaction")
        self.changes.append(ChangeEvent(collection=collection, document_id=str(document_id)))


@contextmanager
def _translate_store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as exc:
        raise StoreUnavailableError(
            f"Store unavailable while {action}: {exc}. Retry the operation."
        ) from exc
    except sqlite3.Error as exc:
        raise RuntimeError(f"Store failure while {action}: {exc}") from exc


def encode_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def decode_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class DataRepository:
    """Encapsulates SQLite access so the stores stay storage-agnostic.

    Every operation opens its own connection with a bounded busy timeout.
    Writers use `BEGIN IMMEDIATE` so that the re-validation performed inside a
    transaction cannot interleave with another writer's commit.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        change_feed: Optional[ChangeFeed] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._change_feed = change_feed or ChangeFeed(
            max_workers=self._settings.change_feed_workers
        )
        self._clock_lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    @property
    def database_path(self) -> Path:
        return self._db_path

    @property
    def change_feed(self) -> ChangeFeed:
        return self._change_feed

    @property
    def settings(self) -> Settings:
        return self._settings

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.store_timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        return connection

    def now(self) -> datetime:
        """Server-assigned timestamp, strictly increasing within this process."""
        with self._clock_lock:
            current = datetime.now(timezone.utc)
            if self._last_timestamp is not None and current <= self._last_timestamp:
                current = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = current
            return current

    @contextmanager
    def transaction(self, existing: Optional[Transaction] = None) -> Iterator[Transaction]:
        """Atomic write scope; joins `existing` when one is already open."""
        if existing is not None:
            if existing.read_only:
                raise RuntimeError("Cannot write inside a read-only transaction")
            yield existing
            return
        if in_change_callback():
            raise PermissionDeniedError("Change subscribers must not write to the store")

        connection = self._connect()
        txn = Transaction(connection=connection)
        try:
            with _translate_store_errors("committing a transaction"):
                connection.execute("BEGIN IMMEDIATE;")
                try:
                    yield txn
                    connection.execute("COMMIT;")
                except BaseException:
                    if connection.in_transaction:
                        connection.execute("ROLLBACK;")
                    raise
        finally:
            connection.close()
        self._change_feed.publish(txn.changes)

    @contextmanager
    def read(self, existing: Optional[Transaction] = None) -> Iterator[Transaction]:
        """Consistent read snapshot across both collections."""
        if existing is not None:
            yield existing
            return
        connection = self._connect()
        txn = Transaction(connection=connection, read_only=True)
        try:
            with _translate_store_errors("reading"):
                connection.execute("BEGIN;")
                try:
                    yield txn
                finally:
                    if connection.in_transaction:
                        connection.execute("COMMIT;")
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            connection = self._connect()
            try:
                connection.execute("PRAGMA journal_mode = WAL;")
                connection.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Systems (
                        id INTEGER PRIMARY KEY CHECK (id > 0),
                        category TEXT NOT NULL
                            CHECK (category IN ('high_tier', 'standard_tier')),
                        status TEXT NOT NULL DEFAULT 'available'
                            CHECK (status IN ('available', 'occupied', 'reserved', 'maintenance')),
                        assigned_request_id TEXT,
                        assigned_login_id TEXT,
                        assigned_name TEXT,
                        assigned_time_slot TEXT,
                        version INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        CHECK (
                            (status IN ('reserved', 'occupied'))
                            = (assigned_login_id IS NOT NULL)
                        )
                    );
                    """
                )
                connection.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Requests (
                        id TEXT PRIMARY KEY,
                        requester_uid TEXT NOT NULL,
                        requester_login_id TEXT NOT NULL,
                        requester_name TEXT NOT NULL,
                        requester_role TEXT NOT NULL
                            CHECK (requester_role IN ('student', 'faculty')),
                        request_type TEXT NOT NULL
                            CHECK (request_type IN ('personal', 'class')),
                        purpose TEXT NOT NULL,
                        date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        expected_count INTEGER CHECK (expected_count IS NULL OR expected_count > 0),
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'approved', 'rejected', 'cancelled')),
                        allocated_systems TEXT NOT NULL DEFAULT '[]',
                        submitted_at TEXT NOT NULL,
                        reviewed_at TEXT,
                        reviewer_login_id TEXT,
                        version INTEGER NOT NULL DEFAULT 1,
                        CHECK (end_time > start_time)
                    );
                    """
                )
                connection.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_requests_requester_submitted
                    ON Requests(requester_uid, submitted_at);
                    """
                )
                connection.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_requests_status
                    ON Requests(status);
                    """
                )
            finally:
                connection.close()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_systems(self) -> int:
        """Create the inventory once; returns how many systems were inserted."""
        total = self._settings.inventory_system_count
        high_tier = self._settings.inventory_high_tier_count
        with self.transaction() as txn:
            cursor = txn.connection.execute("SELECT COUNT(*) AS count FROM Systems;")
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Inventory already seeded; skipping")
                return 0

            stamp = encode_timestamp(self.now())
            rows = []
            for system_id in range(1, total + 1):
                category = (
                    SystemCategory.HIGH_TIER if system_id <= high_tier else SystemCategory.STANDARD_TIER
                )
                rows.append(
                    (system_id, category.value, SystemStatus.AVAILABLE.value, stamp, stamp)
                )
                txn.record_change(SYSTEMS_COLLECTION, system_id)
            txn.connection.executemany(
                """
                INSERT INTO Systems (id, category, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                rows,
            )
        logger.info(
            "Inventory seeded | systems=%s | high_tier=%s",
            total,
            min(high_tier, total),
        )
        return total

    def close(self) -> None:
        self._change_feed.close()
