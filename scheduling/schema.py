"""Pydantic schemas for booking, review and facility admin flows."""

from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FacilityType(str, Enum):
    LECTURE_HALL = "LECTURE_HALL"
    LAB = "LAB"
    MEETING_ROOM = "MEETING_ROOM"
    PROJECTOR = "PROJECTOR"
    CAMERA = "CAMERA"
    OTHER_EQUIPMENT = "OTHER_EQUIPMENT"


class FacilityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def from_date(cls, value: date) -> "DayOfWeek":
        return list(cls)[value.weekday()]


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    TECHNICIAN = "TECHNICIAN"
    MANAGER = "MANAGER"


class ReviewDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SLOT_CONFLICT = "SLOT_CONFLICT"
    FACILITY_INACTIVE = "FACILITY_INACTIVE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    FACILITY_IN_USE = "FACILITY_IN_USE"


class Actor(BaseModel):
    """Authenticated caller, as supplied by the auth collaborator."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(min_length=1)
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class AvailabilityWindowIn(BaseModel):
    day_of_week: DayOfWeek
    start_time: time
    end_time: time

    @field_validator("start_time", "end_time")
    @classmethod
    def whole_minutes(cls, value: time) -> time:
        if value.second or value.microsecond:
            raise ValueError("window times must be whole minutes.")
        if value.tzinfo is not None:
            raise ValueError("window times are campus-local and must not carry a UTC offset.")
        return value

    @model_validator(mode="after")
    def validate_order(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be earlier than end_time; windows cannot span midnight.")
        return self


class FacilityUpsertRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    facility_id: Optional[str] = None
    name: str = Field(min_length=1)
    type: FacilityType
    capacity: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[FacilityStatus] = None
    availability_windows: Optional[list[AvailabilityWindowIn]] = None

    @model_validator(mode="after")
    def validate_windows_disjoint(self):
        by_day: dict[DayOfWeek, list[AvailabilityWindowIn]] = {}
        for window in self.availability_windows or []:
            by_day.setdefault(window.day_of_week, []).append(window)

        for day, windows in by_day.items():
            ordered = sorted(windows, key=lambda w: w.start_time)
            for earlier, later in zip(ordered, ordered[1:]):
                if later.start_time < earlier.end_time:
                    raise ValueError(
                        f"availability windows overlap on {day.value}: "
                        f"{earlier.start_time.strftime('%H:%M')}-{earlier.end_time.strftime('%H:%M')} and "
                        f"{later.start_time.strftime('%H:%M')}-{later.end_time.strftime('%H:%M')}."
                    )
        return self


class FacilityStatusUpdateRequest(BaseModel):
    status: FacilityStatus


class BookingRequest(BaseModel):
    """Validated booking submission.

    Interval order, blank purpose and past dates are policy checks performed
    by the scheduler so they surface as VALIDATION_ERROR results.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    facility_id: str = Field(min_length=1)
    booking_date: date
    start_time: time
    end_time: time
    purpose: str = ""
    expected_attendees: Optional[int] = Field(default=None, ge=1)

    @field_validator("start_time", "end_time")
    @classmethod
    def campus_local_time(cls, value: time) -> time:
        if value.tzinfo is not None:
            raise ValueError("times are campus-local and must not carry a UTC offset.")
        return value


class ReviewRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    decision: ReviewDecision
    remarks: Optional[str] = None


class AvailabilityWindowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: DayOfWeek
    start_time: time
    end_time: time


class FacilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: FacilityType
    status: FacilityStatus
    capacity: Optional[int] = None
    description: Optional[str] = None
    location: Optional[str] = None
    availability_windows: list[AvailabilityWindowOut] = Field(default_factory=list)
    created_by: Optional[str] = None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    facility_id: str
    user_id: str
    booking_date: date
    start_time: time
    end_time: time
    purpose: str
    expected_attendees: Optional[int] = None
    status: BookingStatus
    admin_remarks: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BookingResult(BaseModel):
    success: bool
    error: Optional[ErrorKind] = None
    reason: Optional[str] = None
    booking: Optional[BookingOut] = None

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class FacilityActionResult(BaseModel):
    success: bool
    error: Optional[ErrorKind] = None
    reason: Optional[str] = None
    facility: Optional[FacilityOut] = None


class BookingListResponse(BaseModel):
    success: bool = True
    error: Optional[ErrorKind] = None
    reason: Optional[str] = None
    bookings: list[BookingOut] = Field(default_factory=list)


class FacilityListResponse(BaseModel):
    facilities: list[FacilityOut]


class TimeRange(BaseModel):
    start_time: time
    end_time: time


class BusyInterval(TimeRange):
    booking_id: str
    status: BookingStatus


class FacilityAvailabilityResponse(BaseModel):
    facility_id: str
    booking_date: date
    day_of_week: DayOfWeek
    facility_status: FacilityStatus
    always_open: bool
    windows: list[TimeRange]
    busy: list[BusyInterval]
    free: list[TimeRange]


class AvailabilityResult(BaseModel):
    success: bool
    error: Optional[ErrorKind] = None
    reason: Optional[str] = None
    availability: Optional[FacilityAvailabilityResponse] = None
