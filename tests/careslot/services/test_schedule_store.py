from datetime import date, time

import pytest

from careslot.core.errors import ConfigurationError, ScheduleEntryNotFoundError
from careslot.models.schedule import ScheduleException

DOCTOR_ID = 1
MONDAY = date(2030, 1, 7)


def test_add_recurring_window_persists_active_window(services) -> None:
    window = services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(9, 0), time(11, 0))

    stored = services.schedule_store.list_windows(DOCTOR_ID)
    assert [item.id for item in stored] == [window.id]
    assert stored[0].is_available is True
    assert stored[0].start_time == time(9, 0)


def test_overlapping_active_window_is_rejected(services) -> None:
    services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(9, 0), time(11, 0))

    with pytest.raises(ConfigurationError):
        services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(10, 30), time(12, 0))


def test_touching_and_other_day_windows_are_allowed(services) -> None:
    services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(9, 0), time(11, 0))
    services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(11, 0), time(12, 0))
    services.schedule_store.add_recurring_window(DOCTOR_ID, 1, time(9, 0), time(11, 0))

    assert len(services.schedule_store.list_windows(DOCTOR_ID)) == 3


def test_inverted_window_is_rejected(services) -> None:
    with pytest.raises(ConfigurationError):
        services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(11, 0), time(9, 0))


def test_deactivated_window_frees_its_time_for_a_replacement(services) -> None:
    window = services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(9, 0), time(11, 0))

    deactivated = services.schedule_store.deactivate_window(window.id)
    services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(10, 0), time(12, 0))

    assert deactivated.is_available is False
    assert [item.start_time for item in services.schedule_store.list_windows(DOCTOR_ID)] == [time(10, 0)]
    assert len(services.schedule_store.list_windows(DOCTOR_ID, active_only=False)) == 2


def test_deactivating_unknown_window_raises_not_found(services) -> None:
    with pytest.raises(ScheduleEntryNotFoundError):
        services.schedule_store.deactivate_window(999)


def test_overlapping_exceptions_are_rejected_at_entry(services) -> None:
    services.schedule_store.add_exception(DOCTOR_ID, MONDAY, reason='Conference')

    with pytest.raises(ConfigurationError):
        services.schedule_store.add_exception(DOCTOR_ID, MONDAY, time(9, 0), time(10, 0), is_unavailable=False)


def test_exceptions_are_listed_by_date_range(services) -> None:
    services.schedule_store.add_exception(DOCTOR_ID, MONDAY, reason='Conference')
    services.schedule_store.add_exception(DOCTOR_ID, date(2030, 2, 4), time(9, 0), time(10, 0), is_unavailable=False)

    in_january = services.schedule_store.list_exceptions(DOCTOR_ID, date(2030, 1, 1), date(2030, 1, 31))

    assert [exception.date for exception in in_january] == [MONDAY]
    assert in_january[0].reason == 'Conference'
    assert in_january[0].is_full_day is True


def test_removed_exception_no_longer_applies(services) -> None:
    services.schedule_store.add_recurring_window(DOCTOR_ID, 0, time(9, 0), time(10, 0))
    exception = services.schedule_store.add_exception(DOCTOR_ID, MONDAY)
    assert services.resolver.resolve(DOCTOR_ID, MONDAY, MONDAY, 30) == ()

    services.schedule_store.remove_exception(exception.id)

    assert len(services.resolver.resolve(DOCTOR_ID, MONDAY, MONDAY, 30)) == 2


def test_removing_unknown_exception_raises_not_found(services) -> None:
    with pytest.raises(ScheduleEntryNotFoundError):
        services.schedule_store.remove_exception(999)


def test_validate_reports_rows_that_bypassed_the_store(services, session_factory) -> None:
    with session_factory() as db:
        db.add_all([
            ScheduleException(doctor_id=DOCTOR_ID, date=MONDAY, is_unavailable=True),
            ScheduleException(
                doctor_id=DOCTOR_ID,
                date=MONDAY,
                start_time=time(9, 0),
                end_time=time(10, 0),
                is_unavailable=False,
            ),
        ])
        db.commit()

    with pytest.raises(ConfigurationError):
        services.schedule_store.validate(DOCTOR_ID)
    with pytest.raises(ConfigurationError):
        services.resolver.resolve(DOCTOR_ID, MONDAY, MONDAY, 30)
