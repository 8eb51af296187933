"""Booking status state machine.

    (none) --submit--> PENDING --approve--> APPROVED --cancel--> CANCELLED
                          |  \\--reject--> REJECTED
                          \\--cancel--> CANCELLED

REJECTED and CANCELLED are terminal. Status changes are applied with a
compare-and-swap update so that two concurrent reviews of the same booking
cannot both succeed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from scheduling.errors import BookingValidationError, Forbidden, InvalidTransition
from scheduling.models import Booking
from scheduling.schema import Actor, BookingStatus, ReviewDecision


class BookingAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CANCEL = "CANCEL"

    @classmethod
    def from_decision(cls, decision: ReviewDecision) -> "BookingAction":
        return cls.APPROVE if decision == ReviewDecision.APPROVE else cls.REJECT


@dataclass(frozen=True)
class Transition:
    action: BookingAction
    sources: frozenset
    target: BookingStatus
    admin_only: bool
    records_review: bool = False
    requires_remarks: bool = False


TRANSITIONS: dict[BookingAction, Transition] = {
    BookingAction.APPROVE: Transition(
        action=BookingAction.APPROVE,
        sources=frozenset({BookingStatus.PENDING}),
        target=BookingStatus.APPROVED,
        admin_only=True,
        records_review=True,
    ),
    BookingAction.REJECT: Transition(
        action=BookingAction.REJECT,
        sources=frozenset({BookingStatus.PENDING}),
        target=BookingStatus.REJECTED,
        admin_only=True,
        records_review=True,
        requires_remarks=True,
    ),
    BookingAction.CANCEL: Transition(
        action=BookingAction.CANCEL,
        sources=frozenset({BookingStatus.PENDING, BookingStatus.APPROVED}),
        target=BookingStatus.CANCELLED,
        admin_only=False,
    ),
}


class BookingLifecycle:
    @staticmethod
    def allowed_actions(status: BookingStatus) -> list[BookingAction]:
        return [action for action, transition in TRANSITIONS.items() if status in transition.sources]

    @staticmethod
    def authorize(action: BookingAction, actor: Actor, owner_id: Optional[str] = None) -> None:
        transition = TRANSITIONS[action]
        if transition.admin_only:
            if not actor.is_admin:
                raise Forbidden(f"Only administrators can {action.value.lower()} bookings.")
            return
        if action == BookingAction.CANCEL and not actor.is_admin and actor.id != owner_id:
            raise Forbidden("You can only cancel your own bookings.")

    @staticmethod
    def check_state(action: BookingAction, current: BookingStatus | str) -> Transition:
        transition = TRANSITIONS[action]
        current_status = BookingStatus(current)
        if current_status not in transition.sources:
            allowed = ", ".join(sorted(s.value for s in transition.sources))
            raise InvalidTransition(
                f"Cannot {action.value.lower()} a {current_status.value} booking; "
                f"only {allowed} bookings can move to {transition.target.value}."
            )
        return transition

    @staticmethod
    def plan(
        action: BookingAction,
        booking: Booking,
        actor: Actor,
        *,
        now: datetime,
        remarks: Optional[str] = None,
    ) -> dict[str, Any]:
        """Validate a transition and return the column values it writes."""
        BookingLifecycle.authorize(action, actor, owner_id=booking.user_id)
        transition = BookingLifecycle.check_state(action, booking.status)

        remarks = (remarks or "").strip() or None
        if transition.requires_remarks and not remarks:
            raise BookingValidationError("Rejection reason is required.")

        values: dict[str, Any] = {"status": transition.target.value}
        if transition.records_review:
            values["reviewed_by"] = actor.id
            values["reviewed_at"] = now
            if remarks:
                values["admin_remarks"] = remarks
        return values

    @staticmethod
    def apply(db: Session, booking: Booking, action: BookingAction, values: dict[str, Any]) -> None:
        transition = TRANSITIONS[action]
        result = db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.status.in_([s.value for s in transition.sources]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransition(
                f"Booking {booking.id} changed state concurrently; {action.value.lower()} was not applied."
            )
        db.refresh(booking)
