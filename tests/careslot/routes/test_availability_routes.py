from datetime import date, datetime, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from careslot.models.schedule import ScheduleException
from careslot.routes.availability_routes import (
    CreateRecurringWindowRequest,
    CreateScheduleExceptionRequest,
    create_recurring_window,
    create_schedule_exception,
    deactivate_recurring_window,
    list_available_slots,
    list_recurring_windows,
    list_schedule_exceptions,
    remove_schedule_exception,
    validate_doctor_schedule,
)

DOCTOR_ID = 1
MONDAY = date(2030, 1, 7)


def _slots(services, start_date: date, end_date: date | None = None, slot_duration: int = 30, include_past=False):
    return list_available_slots(
        DOCTOR_ID,
        start_date=start_date,
        end_date=end_date,
        slot_duration=slot_duration,
        include_past=include_past,
        services=services,
    )


def test_create_recurring_window_request_rejects_inverted_bounds() -> None:
    with pytest.raises(ValidationError):
        CreateRecurringWindowRequest(day_of_week=0, start_time=time(11, 0), end_time=time(9, 0))


def test_create_recurring_window_request_rejects_unknown_day() -> None:
    with pytest.raises(ValidationError):
        CreateRecurringWindowRequest(day_of_week=7, start_time=time(9, 0), end_time=time(11, 0))


def test_create_schedule_exception_request_normalizes_blank_reason() -> None:
    request = CreateScheduleExceptionRequest(date=MONDAY, reason='   ')

    assert request.reason is None
    assert request.is_unavailable is True


def test_list_available_slots_returns_slot_bounds(monday_schedule) -> None:
    slots = _slots(monday_schedule, MONDAY)

    assert [slot.time for slot in slots] == [time(9, 0), time(9, 30), time(10, 0), time(10, 30)]
    assert slots[0].start_time == datetime(2030, 1, 7, 9, 0)
    assert slots[0].end_time == datetime(2030, 1, 7, 9, 30)
    assert slots[0].duration_minutes == 30


def test_list_available_slots_hides_held_slots(monday_schedule) -> None:
    monday_schedule.arbiter.try_reserve(DOCTOR_ID, None, datetime(2030, 1, 7, 9, 30), 30, 10)

    slots = _slots(monday_schedule, MONDAY)

    assert datetime(2030, 1, 7, 9, 30) not in [slot.start_time for slot in slots]


def test_list_available_slots_drops_past_slots_unless_asked(monday_schedule) -> None:
    past_monday = date(2020, 1, 6)

    assert _slots(monday_schedule, past_monday) == []
    assert len(_slots(monday_schedule, past_monday, include_past=True)) == 4


def test_list_available_slots_rejects_inverted_range(monday_schedule) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _slots(monday_schedule, MONDAY, date(2030, 1, 1))

    assert exception_info.value.status_code == 400


def test_list_available_slots_rejects_oversized_range(monday_schedule) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _slots(monday_schedule, MONDAY, date(2030, 6, 1))

    assert exception_info.value.status_code == 400
    assert 'at most 31 days' in exception_info.value.detail


def test_list_available_slots_reports_broken_schedule_as_unavailable(services, session_factory) -> None:
    with session_factory() as db:
        db.add(ScheduleException(doctor_id=DOCTOR_ID, date=MONDAY, is_unavailable=False))
        db.commit()

    with pytest.raises(HTTPException) as exception_info:
        _slots(services, MONDAY)

    assert exception_info.value.status_code == 503


def test_window_endpoints_create_list_and_deactivate(services, users) -> None:
    staff = users['doctor']
    created = create_recurring_window(
        DOCTOR_ID,
        CreateRecurringWindowRequest(day_of_week=0, start_time=time(9, 0), end_time=time(10, 0)),
        services=services,
        staff=staff,
    )

    listed = list_recurring_windows(DOCTOR_ID, include_inactive=False, services=services)
    deactivated = deactivate_recurring_window(created.id, services=services, staff=staff)

    assert [window.id for window in listed] == [created.id]
    assert deactivated.is_available is False
    assert list_recurring_windows(DOCTOR_ID, include_inactive=False, services=services) == []


def test_overlapping_window_is_unprocessable(monday_schedule, users) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_recurring_window(
            DOCTOR_ID,
            CreateRecurringWindowRequest(day_of_week=0, start_time=time(10, 0), end_time=time(12, 0)),
            services=monday_schedule,
            staff=users['admin'],
        )

    assert exception_info.value.status_code == 422


def test_deactivating_unknown_window_is_not_found(services, users) -> None:
    with pytest.raises(HTTPException) as exception_info:
        deactivate_recurring_window(404, services=services, staff=users['admin'])

    assert exception_info.value.status_code == 404


def test_exception_endpoints_block_and_restore_a_day(monday_schedule, users) -> None:
    staff = users['doctor']
    created = create_schedule_exception(
        DOCTOR_ID,
        CreateScheduleExceptionRequest(date=MONDAY, reason=' Conference '),
        services=monday_schedule,
        staff=staff,
    )

    assert created.reason == 'Conference'
    assert _slots(monday_schedule, MONDAY) == []
    assert [item.id for item in list_schedule_exceptions(
        DOCTOR_ID, start_date=MONDAY, end_date=MONDAY, services=monday_schedule,
    )] == [created.id]

    remove_schedule_exception(created.id, services=monday_schedule, staff=staff)

    assert len(_slots(monday_schedule, MONDAY)) == 4


def test_available_exception_without_times_is_unprocessable(services, users) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_schedule_exception(
            DOCTOR_ID,
            CreateScheduleExceptionRequest(date=MONDAY, is_unavailable=False),
            services=services,
            staff=users['admin'],
        )

    assert exception_info.value.status_code == 422


def test_schedule_check_reports_configuration_errors(services, session_factory, users) -> None:
    validate_doctor_schedule(DOCTOR_ID, services=services, staff=users['admin'])

    with session_factory() as db:
        db.add_all([
            ScheduleException(doctor_id=DOCTOR_ID, date=MONDAY, is_unavailable=True),
            ScheduleException(doctor_id=DOCTOR_ID, date=MONDAY, is_unavailable=True),
        ])
        db.commit()

    with pytest.raises(HTTPException) as exception_info:
        validate_doctor_schedule(DOCTOR_ID, services=services, staff=users['admin'])

    assert exception_info.value.status_code == 422
