"""
Error taxonomy shared by every service.

Single operations raise these directly; batch operations (assignment, weekly
reset) catch them per item and record `kind` + message in their result.
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError


class ScheduleError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str, *, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(ScheduleError):
    """Malformed template/activity/execution data, rejected before anything is persisted."""

    kind = "validation"
    status_code = 422


class PermissionDenied(ScheduleError):
    kind = "permission"
    status_code = 403


class StateConflictError(ScheduleError):
    """Illegal transition, duplicate active assignment or duplicate snapshot."""

    kind = "state_conflict"
    status_code = 409


class NotFoundError(ScheduleError):
    kind = "not_found"
    status_code = 404


class TransientStoreError(ScheduleError):
    """Retryable I/O fault in the store."""

    kind = "transient"
    status_code = 503


def classify_store_error(exc: Exception) -> ScheduleError | None:
    """Map a SQLAlchemy exception onto the taxonomy; None when it is not a store fault we know."""
    if isinstance(exc, ScheduleError):
        return exc
    if isinstance(exc, StaleDataError):
        return StateConflictError("Concurrent update detected; the record changed underneath this write.")
    if isinstance(exc, IntegrityError):
        return StateConflictError(f"Constraint violated: {exc.orig}")
    if isinstance(exc, OperationalError):
        return TransientStoreError(f"Store unavailable: {exc.orig}")
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientStoreError("Store connection was invalidated.")
    return None
