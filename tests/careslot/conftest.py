import os
from datetime import datetime, time, timedelta
from decimal import Decimal

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('SWEEPER_ENABLED', 'false')

from careslot.database import build_engine, build_session_factory, create_schema  # noqa: E402
from careslot.models.user import User  # noqa: E402
from careslot.services.container import build_services  # noqa: E402

DOCTOR_ID = 1
OTHER_DOCTOR_ID = 2
FAMILY_ID = 10
OTHER_FAMILY_ID = 11
ADMIN_ID = 20
DOCTOR_FEE = Decimal('45.00')

# 2030-01-07 is a Monday.
MONDAY = datetime(2030, 1, 7).date()


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2030, 1, 1, 8, 0))


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f'sqlite:///{tmp_path / "careslot-test.db"}')
    create_schema(engine)

    factory = build_session_factory(engine)
    with factory() as db:
        db.add_all([
            User(id=DOCTOR_ID, email='doctor@example.org', role='doctor', consultation_fee=DOCTOR_FEE),
            User(id=OTHER_DOCTOR_ID, email='other.doctor@example.org', role='doctor', consultation_fee=None),
            User(id=FAMILY_ID, email='family@example.org', role='family'),
            User(id=OTHER_FAMILY_ID, email='cousin@example.org', role='family'),
            User(id=ADMIN_ID, email='admin@example.org', role='admin'),
        ])
        db.commit()

    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture
def services(session_factory, clock):
    return build_services(session_factory, clock=clock)


@pytest.fixture
def monday_schedule(services):
    """Doctor 1 works Mondays 09:00-11:00; doctor 2 works Mondays 14:00-16:00."""
    services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(9, 0), time(11, 0))
    services.schedule_store.add_recurring_window(OTHER_DOCTOR_ID, 0, time(14, 0), time(16, 0))
    return services


@pytest.fixture
def users(session_factory) -> dict[str, User]:
    with session_factory() as db:
        return {user.email.split('@')[0]: user for user in db.query(User).all()}
