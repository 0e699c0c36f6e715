"""Persistence for recurring windows and schedule exceptions."""

import logging
from datetime import date, time

from sqlalchemy.orm import sessionmaker

from careslot.core.errors import ConfigurationError, ScheduleEntryNotFoundError
from careslot.models.schedule import RecurringWindow, ScheduleException
from careslot.services.slot_resolver import (
    check_exception_conflicts,
    check_window_conflicts,
    exceptions_overlap,
    intervals_overlap,
    validate_exception,
)

logger = logging.getLogger(__name__)


class ScheduleStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def add_recurring_window(
        self,
        doctor_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
    ) -> RecurringWindow:
        window = RecurringWindow(
            doctor_id=doctor_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            is_available=True,
        )
        check_window_conflicts([window])

        with self._session_factory() as db:
            existing = db.query(RecurringWindow).filter(
                RecurringWindow.doctor_id == doctor_id,
                RecurringWindow.day_of_week == day_of_week,
                RecurringWindow.is_available.is_(True),
            ).all()
            for other in existing:
                if intervals_overlap((start_time, end_time), (other.start_time, other.end_time)):
                    raise ConfigurationError(
                        f'Window {start_time}-{end_time} overlaps window {other.id} '
                        f'({other.start_time}-{other.end_time}) for doctor {doctor_id} on day {day_of_week}.'
                    )

            db.add(window)
            db.commit()
            db.refresh(window)

        logger.info('Added recurring window %s for doctor %s', window.id, doctor_id)
        return window

    def deactivate_window(self, window_id: int) -> RecurringWindow:
        with self._session_factory() as db:
            window = db.get(RecurringWindow, window_id)
            if window is None:
                raise ScheduleEntryNotFoundError(f'Recurring window {window_id} not found.')

            window.is_available = False
            db.commit()
            db.refresh(window)

        logger.info('Deactivated recurring window %s', window_id)
        return window

    def list_windows(self, doctor_id: int, active_only: bool = True) -> list[RecurringWindow]:
        with self._session_factory() as db:
            query = db.query(RecurringWindow).filter(RecurringWindow.doctor_id == doctor_id)
            if active_only:
                query = query.filter(RecurringWindow.is_available.is_(True))
            return query.order_by(RecurringWindow.day_of_week.asc(), RecurringWindow.start_time.asc()).all()

    def add_exception(
        self,
        doctor_id: int,
        exception_date: date,
        start_time: time | None = None,
        end_time: time | None = None,
        is_unavailable: bool = True,
        reason: str | None = None,
    ) -> ScheduleException:
        exception = ScheduleException(
            doctor_id=doctor_id,
            date=exception_date,
            start_time=start_time,
            end_time=end_time,
            is_unavailable=is_unavailable,
            reason=reason,
        )
        validate_exception(exception)

        with self._session_factory() as db:
            same_day = db.query(ScheduleException).filter(
                ScheduleException.doctor_id == doctor_id,
                ScheduleException.date == exception_date,
            ).all()
            for other in same_day:
                if exceptions_overlap(exception, other):
                    raise ConfigurationError(
                        f'Exception overlaps exception {other.id} for doctor {doctor_id} on {exception_date}.'
                    )

            db.add(exception)
            db.commit()
            db.refresh(exception)

        logger.info('Added schedule exception %s for doctor %s on %s', exception.id, doctor_id, exception_date)
        return exception

    def remove_exception(self, exception_id: int) -> None:
        with self._session_factory() as db:
            exception = db.get(ScheduleException, exception_id)
            if exception is None:
                raise ScheduleEntryNotFoundError(f'Schedule exception {exception_id} not found.')

            db.delete(exception)
            db.commit()

        logger.info('Removed schedule exception %s', exception_id)

    def list_exceptions(
        self,
        doctor_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[ScheduleException]:
        with self._session_factory() as db:
            query = db.query(ScheduleException).filter(ScheduleException.doctor_id == doctor_id)
            if start_date is not None:
                query = query.filter(ScheduleException.date >= start_date)
            if end_date is not None:
                query = query.filter(ScheduleException.date <= end_date)
            return query.order_by(ScheduleException.date.asc(), ScheduleException.start_time.asc()).all()

    def validate(self, doctor_id: int) -> None:
        """Re-check every stored row for a doctor; used by schedule administrators."""
        check_window_conflicts(self.list_windows(doctor_id))
        check_exception_conflicts(self.list_exceptions(doctor_id))
