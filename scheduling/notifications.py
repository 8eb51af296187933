"""Post-commit booking events.

Listeners run after the transaction that produced the event has committed,
so a failing listener never rolls back a booking change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from scheduling.schema import Actor, BookingOut

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingEvent:
    action: str
    booking: Optional[BookingOut]
    actor: Actor
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[BookingEvent], None]


def log_event(event: BookingEvent) -> None:
    booking = event.booking
    if booking is None:
        logger.info("Booking %s by %s", event.action.lower(), event.actor.id)
        return
    logger.info(
        "Booking %s: %s facility=%s date=%s %s-%s status=%s actor=%s",
        event.action.lower(),
        booking.id,
        booking.facility_id,
        booking.booking_date,
        booking.start_time.strftime("%H:%M"),
        booking.end_time.strftime("%H:%M"),
        booking.status.value,
        event.actor.id,
    )


class BookingNotifier:
    def __init__(self, listeners: Optional[list[Listener]] = None):
        self.listeners: list[Listener] = list(listeners) if listeners is not None else [log_event]

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def publish(self, event: BookingEvent) -> None:
        for listener in self.listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Booking event listener %r failed for %s", listener, event.action)
