"""Booking orchestration: submit, review, cancel and facility administration.

Every public method returns a typed result model. Scheduling errors raised by
the calendar, conflict checker and lifecycle are translated here and nowhere
else.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from scheduling.availability import AvailabilityCalendar, valid_interval
from scheduling.conflicts import BookingConflictChecker, comparison_set_query
from scheduling.errors import (
    BookingValidationError,
    FacilityInactive,
    FacilityInUse,
    Forbidden,
    NotFound,
    SchedulingError,
    SlotConflict,
)
from scheduling.lifecycle import BookingAction, BookingLifecycle
from scheduling.models import Booking, Facility, FacilityAvailabilityWindow
from scheduling.notifications import BookingEvent, BookingNotifier
from scheduling.schema import (
    ACTIVE_BOOKING_STATUSES,
    Actor,
    AvailabilityResult,
    BookingListResponse,
    BookingOut,
    BookingRequest,
    BookingResult,
    BookingStatus,
    BusyInterval,
    DayOfWeek,
    ErrorKind,
    FacilityActionResult,
    FacilityAvailabilityResponse,
    FacilityListResponse,
    FacilityOut,
    FacilityStatus,
    FacilityType,
    FacilityUpsertRequest,
    ReviewDecision,
    TimeRange,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _resolve_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown campus time zone %r, falling back to UTC", tz_name)
        return ZoneInfo("UTC")


def _whole_minutes(value: time) -> bool:
    return not value.second and not value.microsecond


def _fmt(value: time) -> str:
    return value.strftime("%H:%M")


class BookingScheduler:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        campus_timezone: str = "UTC",
        clock: Optional[Clock] = None,
        notifier: Optional[BookingNotifier] = None,
    ):
        self.session_factory = session_factory
        self.zone = _resolve_zone(campus_timezone)
        self.clock = clock or _utc_now
        self.notifier = notifier or BookingNotifier()

    # ── helpers ──────────────────────────────────────────────────────────

    def now(self) -> datetime:
        current = self.clock()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current

    def today(self) -> date:
        return self.now().astimezone(self.zone).date()

    @staticmethod
    def _lock_facility(db: Session, facility_id: str) -> Facility:
        # First statement of the submit transaction: takes the facility row
        # lock (or the SQLite write lock) before the comparison set is read.
        result = db.execute(
            update(Facility)
            .where(Facility.id == facility_id)
            .values(booking_lock_version=Facility.booking_lock_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound("Facility", facility_id)
        return db.get(Facility, facility_id)

    @staticmethod
    def _load_facility(db: Session, facility_id: str) -> Facility:
        facility = db.get(Facility, facility_id)
        if not facility:
            raise NotFound("Facility", facility_id)
        return facility

    @staticmethod
    def _load_booking(db: Session, booking_id: str) -> Booking:
        booking = db.get(Booking, booking_id)
        if not booking:
            raise NotFound("Booking", booking_id)
        return booking

    @staticmethod
    def _coerce_actor(actor: Union[Actor, dict]) -> Actor:
        return actor if isinstance(actor, Actor) else Actor.model_validate(actor)

    def _validate_submission(self, facility: Facility, request: BookingRequest) -> None:
        if facility.status != FacilityStatus.ACTIVE.value:
            raise FacilityInactive(f"Cannot book a facility that is currently {facility.status}.")

        if not valid_interval(request.start_time, request.end_time):
            raise BookingValidationError("Start time must be before end time; bookings cannot span midnight.")
        if not (_whole_minutes(request.start_time) and _whole_minutes(request.end_time)):
            raise BookingValidationError("Booking times must be whole minutes.")
        if not request.purpose:
            raise BookingValidationError("Purpose is required.")
        if request.booking_date < self.today():
            raise BookingValidationError("Booking date is in the past.")
        if (
            request.expected_attendees is not None
            and facility.capacity is not None
            and request.expected_attendees > facility.capacity
        ):
            raise BookingValidationError(
                f"Expected attendees ({request.expected_attendees}) exceed facility capacity ({facility.capacity})."
            )

        calendar = AvailabilityCalendar.for_facility(facility)
        if not calendar.is_within_availability(request.booking_date, request.start_time, request.end_time):
            raise BookingValidationError(
                f"Requested slot {_fmt(request.start_time)}-{_fmt(request.end_time)} on "
                f"{DayOfWeek.from_date(request.booking_date).value} is outside availability window."
            )

    @staticmethod
    def _raise_on_conflict(candidate, existing) -> None:
        conflict = BookingConflictChecker.find_conflict(candidate, existing)
        if conflict is not None:
            raise SlotConflict(
                "Scheduling conflict: facility is already booked from "
                f"{_fmt(conflict.start_time)} to {_fmt(conflict.end_time)} on {conflict.booking_date} "
                f"(Booking ID: {conflict.id}, Status: {conflict.status})."
            )

    @staticmethod
    def _failure(exc: SchedulingError, operation: str) -> BookingResult:
        logger.info("Booking %s refused (%s): %s", operation, exc.kind.value, exc.reason)
        return BookingResult(success=False, error=exc.kind, reason=exc.reason)

    def _publish(self, action: str, booking: Optional[BookingOut], actor: Actor) -> None:
        self.notifier.publish(BookingEvent(action=action, booking=booking, actor=actor, occurred_at=self.now()))

    # ── bookings ─────────────────────────────────────────────────────────

    def submit_booking(self, request: Union[BookingRequest, dict], actor: Union[Actor, dict]) -> BookingResult:
        try:
            actor = self._coerce_actor(actor)
            if not isinstance(request, BookingRequest):
                request = BookingRequest.model_validate(request)
        except ValidationError as exc:
            return BookingResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid booking payload: {exc}")

        with self.session_factory() as db:
            try:
                with db.begin():
                    facility = self._lock_facility(db, request.facility_id)
                    self._validate_submission(facility, request)

                    existing = db.scalars(
                        comparison_set_query(facility_id=facility.id, booking_date=request.booking_date)
                    )
                    self._raise_on_conflict(request, existing)

                    booking = Booking(
                        facility_id=facility.id,
                        user_id=actor.id,
                        booking_date=request.booking_date,
                        start_time=request.start_time,
                        end_time=request.end_time,
                        purpose=request.purpose,
                        expected_attendees=request.expected_attendees,
                        status=BookingStatus.PENDING.value,
                    )
                    db.add(booking)
                    db.flush()
                    snapshot = BookingOut.model_validate(booking)
            except SchedulingError as exc:
                return self._failure(exc, "submission")
            except SQLAlchemyError:
                logger.exception("Database error while creating booking for facility %s", request.facility_id)
                return BookingResult(success=False, reason="Database error while creating booking.")

        self._publish("SUBMITTED", snapshot, actor)
        return BookingResult(success=True, booking=snapshot)

    def review_booking(
        self,
        booking_id: str,
        decision: Union[ReviewDecision, str],
        actor: Union[Actor, dict],
        remarks: Optional[str] = None,
    ) -> BookingResult:
        try:
            actor = self._coerce_actor(actor)
            action = BookingAction.from_decision(ReviewDecision(decision))
        except (ValidationError, ValueError) as exc:
            return BookingResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid review payload: {exc}")

        with self.session_factory() as db:
            try:
                with db.begin():
                    BookingLifecycle.authorize(action, actor)
                    booking = self._load_booking(db, booking_id)
                    values = BookingLifecycle.plan(action, booking, actor, now=self.now(), remarks=remarks)

                    if action == BookingAction.APPROVE:
                        approved = db.scalars(
                            comparison_set_query(
                                facility_id=booking.facility_id,
                                booking_date=booking.booking_date,
                                statuses=(BookingStatus.APPROVED,),
                            )
                        )
                        self._raise_on_conflict(booking, approved)

                    BookingLifecycle.apply(db, booking, action, values)
                    snapshot = BookingOut.model_validate(booking)
            except SchedulingError as exc:
                return self._failure(exc, action.value.lower())
            except SQLAlchemyError:
                logger.exception("Database error while reviewing booking %s", booking_id)
                return BookingResult(success=False, reason="Database error while reviewing booking.")

        self._publish(snapshot.status.value, snapshot, actor)
        return BookingResult(success=True, booking=snapshot)

    def cancel_booking(self, booking_id: str, actor: Union[Actor, dict]) -> BookingResult:
        try:
            actor = self._coerce_actor(actor)
        except ValidationError as exc:
            return BookingResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid actor: {exc}")

        with self.session_factory() as db:
            try:
                with db.begin():
                    booking = self._load_booking(db, booking_id)
                    values = BookingLifecycle.plan(BookingAction.CANCEL, booking, actor, now=self.now())
                    BookingLifecycle.apply(db, booking, BookingAction.CANCEL, values)
                    snapshot = BookingOut.model_validate(booking)
            except SchedulingError as exc:
                return self._failure(exc, "cancellation")
            except SQLAlchemyError:
                logger.exception("Database error while cancelling booking %s", booking_id)
                return BookingResult(success=False, reason="Database error while cancelling booking.")

        self._publish("CANCELLED", snapshot, actor)
        return BookingResult(success=True, booking=snapshot)

    def get_booking(self, booking_id: str, actor: Union[Actor, dict]) -> BookingResult:
        try:
            actor = self._coerce_actor(actor)
        except ValidationError as exc:
            return BookingResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid actor: {exc}")

        with self.session_factory() as db:
            try:
                booking = self._load_booking(db, booking_id)
                if not actor.is_admin and booking.user_id != actor.id:
                    raise Forbidden("You can only view your own bookings.")
                return BookingResult(success=True, booking=BookingOut.model_validate(booking))
            except SchedulingError as exc:
                return BookingResult(success=False, error=exc.kind, reason=exc.reason)

    def list_bookings(
        self,
        actor: Union[Actor, dict],
        *,
        status: Optional[BookingStatus] = None,
        facility_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        mine: bool = False,
    ) -> BookingListResponse:
        """Bookings newest first. Non-administrators only ever see their own."""
        try:
            actor = self._coerce_actor(actor)
        except ValidationError as exc:
            return BookingListResponse(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid actor: {exc}")

        stmt = select(Booking).order_by(Booking.created_at.desc(), Booking.id.asc())
        if mine or not actor.is_admin:
            stmt = stmt.where(Booking.user_id == actor.id)
        if status is not None:
            stmt = stmt.where(Booking.status == BookingStatus(status).value)
        if facility_id:
            stmt = stmt.where(Booking.facility_id == facility_id)
        if date_from is not None:
            stmt = stmt.where(Booking.booking_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Booking.booking_date <= date_to)

        with self.session_factory() as db:
            return BookingListResponse(bookings=[BookingOut.model_validate(b) for b in db.scalars(stmt)])

    def delete_booking(self, booking_id: str, actor: Union[Actor, dict]) -> BookingResult:
        try:
            actor = self._coerce_actor(actor)
        except ValidationError as exc:
            return BookingResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid actor: {exc}")

        with self.session_factory() as db:
            try:
                with db.begin():
                    if not actor.is_admin:
                        raise Forbidden("Only administrators can delete bookings.")
                    booking = self._load_booking(db, booking_id)
                    snapshot = BookingOut.model_validate(booking)
                    db.delete(booking)
            except SchedulingError as exc:
                return self._failure(exc, "deletion")
            except SQLAlchemyError:
                logger.exception("Database error while deleting booking %s", booking_id)
                return BookingResult(success=False, reason="Database error while deleting booking.")

        self._publish("DELETED", snapshot, actor)
        return BookingResult(success=True, booking=snapshot)

    # ── facilities ───────────────────────────────────────────────────────

    def facility_availability(self, facility_id: str, day: date) -> AvailabilityResult:
        with self.session_factory() as db:
            try:
                facility = self._load_facility(db, facility_id)
            except SchedulingError as exc:
                return AvailabilityResult(success=False, error=exc.kind, reason=exc.reason)

            calendar = AvailabilityCalendar.for_facility(facility)
            weekday = DayOfWeek.from_date(day)
            busy = list(db.scalars(comparison_set_query(facility_id=facility.id, booking_date=day)))
            free = calendar.free_intervals(day, [(b.start_time, b.end_time) for b in busy])

            return AvailabilityResult(
                success=True,
                availability=FacilityAvailabilityResponse(
                    facility_id=facility.id,
                    booking_date=day,
                    day_of_week=weekday,
                    facility_status=FacilityStatus(facility.status),
                    always_open=calendar.always_open,
                    windows=[TimeRange(start_time=w.start_time, end_time=w.end_time) for w in calendar.windows_for(weekday)],
                    busy=[
                        BusyInterval(
                            booking_id=b.id,
                            status=BookingStatus(b.status),
                            start_time=b.start_time,
                            end_time=b.end_time,
                        )
                        for b in busy
                    ],
                    free=[TimeRange(start_time=start, end_time=end) for start, end in free],
                ),
            )

    def get_facility(self, facility_id: str) -> FacilityActionResult:
        with self.session_factory() as db:
            try:
                facility = self._load_facility(db, facility_id)
            except SchedulingError as exc:
                return FacilityActionResult(success=False, error=exc.kind, reason=exc.reason)
            return FacilityActionResult(success=True, facility=FacilityOut.model_validate(facility))

    def list_facilities(
        self,
        *,
        facility_type: Optional[FacilityType] = None,
        status: Optional[FacilityStatus] = None,
        min_capacity: Optional[int] = None,
        search: Optional[str] = None,
        location: Optional[str] = None,
    ) -> FacilityListResponse:
        stmt = select(Facility).order_by(Facility.name.asc())
        if facility_type is not None:
            stmt = stmt.where(Facility.type == FacilityType(facility_type).value)
        if status is not None:
            stmt = stmt.where(Facility.status == FacilityStatus(status).value)
        if min_capacity is not None:
            stmt = stmt.where(Facility.capacity >= min_capacity)
        if search and search.strip():
            stmt = stmt.where(Facility.name.ilike(f"%{search.strip()}%"))
        if location and location.strip():
            stmt = stmt.where(Facility.location.ilike(f"%{location.strip()}%"))

        with self.session_factory() as db:
            return FacilityListResponse(facilities=[FacilityOut.model_validate(f) for f in db.scalars(stmt)])

    def upsert_facility(self, payload: Union[FacilityUpsertRequest, dict], actor: Union[Actor, dict]) -> FacilityActionResult:
        try:
            actor = self._coerce_actor(actor)
            model = payload if isinstance(payload, FacilityUpsertRequest) else FacilityUpsertRequest.model_validate(payload)
        except ValidationError as exc:
            return FacilityActionResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid facility payload: {exc}")

        with self.session_factory() as db:
            try:
                with db.begin():
                    if not actor.is_admin:
                        raise Forbidden("Only administrators can manage facilities.")

                    facility = db.get(Facility, model.facility_id) if model.facility_id else None
                    if model.facility_id and facility is None:
                        raise NotFound("Facility", model.facility_id)

                    if facility is None:
                        facility = Facility(
                            name=model.name,
                            type=model.type.value,
                            status=(model.status or FacilityStatus.ACTIVE).value,
                            created_by=actor.id,
                        )
                        db.add(facility)
                    else:
                        facility.name = model.name
                        facility.type = model.type.value
                        if model.status is not None:
                            facility.status = model.status.value

                    facility.capacity = model.capacity
                    facility.description = model.description
                    facility.location = model.location
                    if model.availability_windows is not None:
                        facility.availability_windows = [
                            FacilityAvailabilityWindow(
                                day_of_week=window.day_of_week.value,
                                start_time=window.start_time,
                                end_time=window.end_time,
                            )
                            for window in model.availability_windows
                        ]

                    db.flush()
                    snapshot = FacilityOut.model_validate(facility)
            except SchedulingError as exc:
                return FacilityActionResult(success=False, error=exc.kind, reason=exc.reason)
            except SQLAlchemyError:
                logger.exception("Database error while upserting facility %s", model.facility_id or model.name)
                return FacilityActionResult(success=False, reason="Database error while upserting facility.")

        logger.info("Facility saved: %s (id=%s) by %s", snapshot.name, snapshot.id, actor.id)
        return FacilityActionResult(success=True, facility=snapshot)

    def set_facility_status(
        self,
        facility_id: str,
        status: Union[FacilityStatus, str],
        actor: Union[Actor, dict],
    ) -> FacilityActionResult:
        """Toggle a facility in or out of service. Existing bookings are kept."""
        try:
            actor = self._coerce_actor(actor)
            status = FacilityStatus(status)
        except (ValidationError, ValueError) as exc:
            return FacilityActionResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=str(exc))

        with self.session_factory() as db:
            try:
                with db.begin():
                    if not actor.is_admin:
                        raise Forbidden("Only administrators can change facility status.")
                    facility = self._load_facility(db, facility_id)
                    facility.status = status.value
                    db.flush()
                    snapshot = FacilityOut.model_validate(facility)
            except SchedulingError as exc:
                return FacilityActionResult(success=False, error=exc.kind, reason=exc.reason)
            except SQLAlchemyError:
                logger.exception("Database error while updating status of facility %s", facility_id)
                return FacilityActionResult(success=False, reason="Database error while updating facility status.")

        logger.info("Facility %s marked %s by %s", facility_id, status.value, actor.id)
        return FacilityActionResult(success=True, facility=snapshot)

    def delete_facility(self, facility_id: str, actor: Union[Actor, dict]) -> FacilityActionResult:
        """Remove a facility and its booking history.

        Refused while the facility still has PENDING or APPROVED bookings;
        those have to be cancelled or rejected first.
        """
        try:
            actor = self._coerce_actor(actor)
        except ValidationError as exc:
            return FacilityActionResult(success=False, error=ErrorKind.VALIDATION_ERROR, reason=f"Invalid actor: {exc}")

        with self.session_factory() as db:
            try:
                with db.begin():
                    if not actor.is_admin:
                        raise Forbidden("Only administrators can delete facilities.")
                    # same lock as submission, so no booking lands mid-delete
                    facility = self._lock_facility(db, facility_id)
                    active = db.scalar(
                        select(func.count(Booking.id)).where(
                            Booking.facility_id == facility.id,
                            Booking.status.in_([s.value for s in ACTIVE_BOOKING_STATUSES]),
                        )
                    )
                    if active:
                        raise FacilityInUse(
                            f"Facility {facility.id} still has {active} pending or approved booking(s); "
                            "cancel or reject them before deleting it."
                        )
                    snapshot = FacilityOut.model_validate(facility)
                    db.execute(delete(Booking).where(Booking.facility_id == facility.id))
                    db.delete(facility)
            except SchedulingError as exc:
                return FacilityActionResult(success=False, error=exc.kind, reason=exc.reason)
            except SQLAlchemyError:
                logger.exception("Database error while deleting facility %s", facility_id)
                return FacilityActionResult(success=False, reason="Database error while deleting facility.")

        logger.info("Facility deleted: %s (id=%s) by %s", snapshot.name, snapshot.id, actor.id)
        return FacilityActionResult(success=True, facility=snapshot)
