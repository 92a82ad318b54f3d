"""Error taxonomy shared by the stores, the engine, and the HTTP layer."""

from __future__ import annotations

from typing import Iterable, Sequence


class LabReservationError(Exception):
    """Base class for every failure surfaced by the reservation core."""


class InvalidArgumentError(LabReservationError):
    """Raised for malformed input; offending values are reported verbatim."""

    def __init__(self, message: str, offending_values: Iterable[object] = ()) -> None:
        super().__init__(message)
        self.offending_values: list[object] = list(offending_values)


class NotFoundError(LabReservationError):
    """Raised when a referenced request or system does not exist."""


class InvalidTransitionError(LabReservationError):
    """Raised when a record is not in the source state an operation requires."""


class PermissionDeniedError(LabReservationError):
    """Raised when the caller lacks authority for the operation."""


class ConflictError(LabReservationError):
    """Raised when an optimistic-concurrency precondition fails at commit."""

    def __init__(self, message: str, conflicting_ids: Sequence[object] = ()) -> None:
        super().__init__(message)
        self.conflicting_ids: list[object] = list(conflicting_ids)


class StoreUnavailableError(LabReservationError):
    """Raised on transient store failures; the whole operation is safe to retry."""


class UnauthenticatedError(LabReservationError):
    """Raised when a bearer credential cannot be resolved to an identity."""
