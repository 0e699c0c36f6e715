"""Turn recurring windows plus date exceptions into bookable slot start times.

``resolve_slots`` is pure: it only looks at the rows handed to it, so it can be
called from any number of threads and always returns the same answer for the
same inputs. ``SlotResolver`` loads those inputs from the schedule store and
the reservation ledger.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from careslot.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

Interval = tuple[time, time]


def intervals_overlap(first: Interval, second: Interval) -> bool:
    return first[0] < second[1] and second[0] < first[1]


def validate_interval(start_time: time | None, end_time: time | None, label: str) -> None:
    if start_time is None or end_time is None:
        raise ConfigurationError(f'{label} needs both a start and an end time.')
    if start_time >= end_time:
        raise ConfigurationError(f'{label} must start before it ends ({start_time} >= {end_time}).')


def validate_exception(exception) -> None:
    has_start = exception.start_time is not None
    has_end = exception.end_time is not None
    if has_start != has_end:
        raise ConfigurationError(
            f'Schedule exception on {exception.date} needs both a start and an end time, or neither.'
        )
    if has_start:
        validate_interval(exception.start_time, exception.end_time, f'Schedule exception on {exception.date}')
    elif not exception.is_unavailable:
        raise ConfigurationError(
            f'Schedule exception on {exception.date} adds availability but has no window.'
        )


def exceptions_overlap(first, second) -> bool:
    if first.is_full_day or second.is_full_day:
        return True
    return intervals_overlap((first.start_time, first.end_time), (second.start_time, second.end_time))


def check_exception_conflicts(exceptions: list) -> None:
    """Raise ``ConfigurationError`` when exceptions sharing a date overlap."""
    for exception in exceptions:
        validate_exception(exception)

    for index, first in enumerate(exceptions):
        for second in exceptions[index + 1:]:
            if first.date == second.date and exceptions_overlap(first, second):
                raise ConfigurationError(
                    f'Overlapping schedule exceptions for doctor {first.doctor_id} on {first.date}.'
                )


def check_window_conflicts(windows: list) -> None:
    """Raise ``ConfigurationError`` when active windows on the same weekday overlap."""
    for window in windows:
        validate_interval(window.start_time, window.end_time, f'Recurring window on day {window.day_of_week}')
        if not 0 <= window.day_of_week <= 6:
            raise ConfigurationError(f'Day of week must be between 0 and 6, got {window.day_of_week}.')

    for index, first in enumerate(windows):
        for second in windows[index + 1:]:
            if first.day_of_week == second.day_of_week and intervals_overlap(
                (first.start_time, first.end_time),
                (second.start_time, second.end_time),
            ):
                raise ConfigurationError(
                    f'Overlapping recurring windows for doctor {first.doctor_id} on day {first.day_of_week}.'
                )


def effective_windows(
    day_windows: list[Interval],
    day_exceptions: list,
) -> tuple[list[Interval], list[Interval]]:
    """Return ``(windows, carve_outs)`` for one date.

    Exceptions replace the recurring windows for their date: a full-day
    unavailable exception leaves nothing, available exceptions become the
    only windows, and unavailable exceptions with times are carved out.
    """
    if not day_exceptions:
        return day_windows, []

    if any(exception.is_unavailable and exception.is_full_day for exception in day_exceptions):
        return [], []

    added = [
        (exception.start_time, exception.end_time)
        for exception in day_exceptions
        if not exception.is_unavailable
    ]
    carve_outs = [
        (exception.start_time, exception.end_time)
        for exception in day_exceptions
        if exception.is_unavailable
    ]

    return (added or day_windows), carve_outs


def partition_window(day: date, window: Interval, slot_duration: timedelta) -> list[datetime]:
    starts: list[datetime] = []
    current = datetime.combine(day, window[0])
    window_end = datetime.combine(day, window[1])

    while current + slot_duration <= window_end:
        starts.append(current)
        current += slot_duration

    return starts


def resolve_slots(
    start_date: date,
    end_date: date,
    windows: Iterable,
    exceptions: Iterable,
    slot_duration_minutes: int,
    occupied: Iterable[tuple[datetime, datetime]] = (),
) -> tuple[datetime, ...]:
    """Candidate slot starts for one doctor between two dates, inclusive.

    ``windows`` are recurring windows (inactive ones are ignored),
    ``exceptions`` are schedule exceptions, and ``occupied`` holds the
    ``(start, end)`` intervals already claimed in the ledger. A slot that
    intersects any of them is left out.
    """
    if slot_duration_minutes <= 0:
        raise ValueError('Slot duration must be positive.')
    if end_date < start_date:
        raise ValueError('Date range end must not precede its start.')

    active_windows = [window for window in windows if window.is_available]
    check_window_conflicts(active_windows)

    relevant_exceptions = [
        exception for exception in exceptions
        if start_date <= exception.date <= end_date
    ]
    check_exception_conflicts(relevant_exceptions)

    windows_by_weekday: dict[int, list[Interval]] = defaultdict(list)
    for window in active_windows:
        windows_by_weekday[window.day_of_week].append((window.start_time, window.end_time))

    exceptions_by_date: dict[date, list] = defaultdict(list)
    for exception in relevant_exceptions:
        exceptions_by_date[exception.date].append(exception)

    occupied_intervals = list(occupied)
    slot_duration = timedelta(minutes=slot_duration_minutes)
    slots: set[datetime] = set()

    current_day = start_date
    while current_day <= end_date:
        day_windows, carve_outs = effective_windows(
            windows_by_weekday.get(current_day.weekday(), []),
            exceptions_by_date.get(current_day, []),
        )

        blocked = [
            (datetime.combine(current_day, carve_start), datetime.combine(current_day, carve_end))
            for carve_start, carve_end in carve_outs
        ] + occupied_intervals

        for window in day_windows:
            for slot_start in partition_window(current_day, window, slot_duration):
                slot_interval = (slot_start, slot_start + slot_duration)
                if any(intervals_overlap(slot_interval, interval) for interval in blocked):
                    continue
                slots.add(slot_start)

        current_day += timedelta(days=1)

    return tuple(sorted(slots))


class SlotResolver:
    """Loads schedule rows and occupied slots, then runs ``resolve_slots``."""

    def __init__(self, schedule_store, ledger, clock=datetime.now) -> None:
        self._schedule_store = schedule_store
        self._ledger = ledger
        self._clock = clock

    def resolve(
        self,
        doctor_id: int,
        start_date: date,
        end_date: date,
        slot_duration_minutes: int,
        include_occupied: bool = False,
    ) -> tuple[datetime, ...]:
        windows = self._schedule_store.list_windows(doctor_id)
        exceptions = self._schedule_store.list_exceptions(doctor_id, start_date, end_date)
        occupied = () if include_occupied else self._ledger.occupied_intervals(
            doctor_id,
            datetime.combine(start_date, time.min),
            datetime.combine(end_date + timedelta(days=1), time.min),
            self._clock(),
        )

        try:
            return resolve_slots(start_date, end_date, windows, exceptions, slot_duration_minutes, occupied)
        except ConfigurationError:
            logger.error('Schedule for doctor %s is misconfigured between %s and %s', doctor_id, start_date, end_date)
            raise
