import os
import tempfile
from datetime import date, datetime, time, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "campus_booking_tests.db"))
os.environ.setdefault("BOOKING_API_KEY", "test-api-key")
os.environ.setdefault("CAMPUS_TIMEZONE", "UTC")

import pytest  # noqa: E402

from db.session import build_engine, build_session_factory, init_db  # noqa: E402
from scheduling.engine import BookingScheduler  # noqa: E402
from scheduling.notifications import BookingNotifier  # noqa: E402
from scheduling.schema import Actor, Role  # noqa: E402

# 2030-01-01 is a Tuesday
NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 7)
PAST_MONDAY = date(2029, 12, 31)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def events():
    return []


@pytest.fixture
def scheduler(session_factory, events):
    return BookingScheduler(
        session_factory,
        campus_timezone="UTC",
        clock=lambda: NOW,
        notifier=BookingNotifier(listeners=[events.append]),
    )


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def alice():
    return Actor(id="alice", role=Role.USER)


@pytest.fixture
def bob():
    return Actor(id="bob", role=Role.USER)


@pytest.fixture
def facility_id(scheduler, admin):
    result = scheduler.upsert_facility(
        {
            "name": "Room A101",
            "type": "MEETING_ROOM",
            "capacity": 20,
            "location": "Building A, Floor 1",
            "availability_windows": [
                {"day_of_week": "MONDAY", "start_time": "08:00", "end_time": "17:00"},
            ],
        },
        admin,
    )
    assert result.success, result.reason
    return result.facility.id


@pytest.fixture
def open_facility_id(scheduler, admin):
    result = scheduler.upsert_facility({"name": "Projector #3", "type": "PROJECTOR"}, admin)
    assert result.success, result.reason
    return result.facility.id


def booking_payload(facility_id, start="09:00", end="10:00", booking_date=MONDAY, **extra):
    payload = {
        "facility_id": facility_id,
        "booking_date": booking_date.isoformat(),
        "start_time": start,
        "end_time": end,
        "purpose": "Project sync",
    }
    payload.update(extra)
    return payload


def hm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))
