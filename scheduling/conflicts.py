"""Overlap detection between a candidate booking and the facility's active bookings."""

from __future__ import annotations

from datetime import date, time
from typing import Iterable, Optional, Protocol

from sqlalchemy import Select, select

from scheduling.models import Booking
from scheduling.schema import ACTIVE_BOOKING_STATUSES


class SlotLike(Protocol):
    facility_id: str
    booking_date: date
    start_time: time
    end_time: time


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    # half-open intervals: touching endpoints are not an overlap
    return start_a < end_b and start_b < end_a


def comparison_set_query(*, facility_id: str, booking_date: date, statuses=ACTIVE_BOOKING_STATUSES) -> Select:
    return (
        select(Booking)
        .where(
            Booking.facility_id == facility_id,
            Booking.booking_date == booking_date,
            Booking.status.in_([status.value for status in statuses]),
        )
        .order_by(Booking.start_time.asc(), Booking.created_at.asc())
    )


class BookingConflictChecker:
    active_statuses = frozenset(status.value for status in ACTIVE_BOOKING_STATUSES)

    @classmethod
    def is_active(cls, booking) -> bool:
        status = getattr(booking.status, "value", booking.status)
        return status in cls.active_statuses

    @classmethod
    def find_conflict(cls, candidate: SlotLike, existing_bookings: Iterable) -> Optional[Booking]:
        candidate_id = getattr(candidate, "id", None)
        for existing in existing_bookings:
            if candidate_id is not None and existing.id == candidate_id:
                continue
            if existing.facility_id != candidate.facility_id or existing.booking_date != candidate.booking_date:
                continue
            if not cls.is_active(existing):
                continue
            if intervals_overlap(candidate.start_time, candidate.end_time, existing.start_time, existing.end_time):
                return existing
        return None
