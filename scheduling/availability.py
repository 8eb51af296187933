"""Weekly availability windows and the open/closed decision for a slot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Iterable

from scheduling.schema import DayOfWeek


@dataclass(frozen=True, order=True)
class TimeWindow:
    day_of_week: DayOfWeek
    start_time: time
    end_time: time

    def __post_init__(self):
        if self.start_time >= self.end_time:
            raise ValueError("TimeWindow start_time must be earlier than end_time.")

    @classmethod
    def from_row(cls, row) -> "TimeWindow":
        return cls(
            day_of_week=DayOfWeek(row.day_of_week),
            start_time=row.start_time,
            end_time=row.end_time,
        )

    def contains(self, start_time: time, end_time: time) -> bool:
        return self.start_time <= start_time and end_time <= self.end_time


def valid_interval(start_time: time, end_time: time) -> bool:
    # a same-day interval; anything wrapping past midnight has end <= start
    return start_time < end_time


class AvailabilityCalendar:
    def __init__(self, windows: Iterable[TimeWindow] = ()):
        self.windows = tuple(sorted(windows))

    @classmethod
    def for_facility(cls, facility) -> "AvailabilityCalendar":
        return cls(TimeWindow.from_row(row) for row in facility.availability_windows)

    @property
    def always_open(self) -> bool:
        return not self.windows

    def windows_for(self, day: DayOfWeek) -> list[TimeWindow]:
        return [window for window in self.windows if window.day_of_week == day]

    def is_within_availability(self, booking_date: date, start_time: time, end_time: time) -> bool:
        if not valid_interval(start_time, end_time):
            return False
        if self.always_open:
            return True
        day = DayOfWeek.from_date(booking_date)
        return any(window.contains(start_time, end_time) for window in self.windows_for(day))

    def free_intervals(self, booking_date: date, busy: Iterable[tuple[time, time]]) -> list[tuple[time, time]]:
        """Open gaps of the day once the busy intervals are carved out.

        A facility without windows is open the whole day, which is reported as
        00:00 up to the last representable minute.
        """
        if self.always_open:
            open_ranges = [(time(0, 0), time(23, 59))]
        else:
            day = DayOfWeek.from_date(booking_date)
            open_ranges = [(w.start_time, w.end_time) for w in self.windows_for(day)]

        taken = sorted(busy)
        free: list[tuple[time, time]] = []
        for range_start, range_end in open_ranges:
            cursor = range_start
            for busy_start, busy_end in taken:
                if busy_end <= cursor or busy_start >= range_end:
                    continue
                if busy_start > cursor:
                    free.append((cursor, busy_start))
                cursor = max(cursor, busy_end)
                if cursor >= range_end:
                    break
            if cursor < range_end:
                free.append((cursor, range_end))
        return free


def is_within_availability(facility, booking_date: date, start_time: time, end_time: time) -> bool:
    return AvailabilityCalendar.for_facility(facility).is_within_availability(booking_date, start_time, end_time)
