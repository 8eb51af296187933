"""Errors raised inside the scheduling core.

They never leave the package: BookingScheduler turns each one into a failed
result carrying its ErrorKind.
"""

from __future__ import annotations

from scheduling.schema import ErrorKind


class SchedulingError(Exception):
    kind: ErrorKind

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class BookingValidationError(SchedulingError):
    kind = ErrorKind.VALIDATION_ERROR


class SlotConflict(SchedulingError):
    kind = ErrorKind.SLOT_CONFLICT


class FacilityInactive(SchedulingError):
    kind = ErrorKind.FACILITY_INACTIVE


class InvalidTransition(SchedulingError):
    kind = ErrorKind.INVALID_TRANSITION


class NotFound(SchedulingError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class Forbidden(SchedulingError):
    kind = ErrorKind.FORBIDDEN


class FacilityInUse(SchedulingError):
    kind = ErrorKind.FACILITY_IN_USE
