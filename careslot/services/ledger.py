"""The reservation ledger: the only writer of appointment status and hold fields.

Every write is guarded by the database itself. New entries are checked for
overlap inside their own write transaction and backed by the partial unique
indexes declared on ``Appointment``; status changes are conditional
``UPDATE`` statements whose ``WHERE`` clause re-checks the expected status, so
two writers racing on the same row can never both succeed.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from careslot.core.errors import AppointmentNotFoundError, SlotTakenError, StaleHoldError
from careslot.models.appointment import Appointment
from careslot.models.user import User
from careslot.services.state_machine import (
    ACTIVE_STATUSES,
    AppointmentStatus,
    PaymentStatus,
    ensure_transition,
)

logger = logging.getLogger(__name__)

HOLD_EXPIRED_REASON = 'hold_expired'

CLEARED_HOLD = {
    Appointment.reserved_at: None,
    Appointment.reserved_by: None,
    Appointment.blocked_until: None,
}

ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_STATUSES]

# No entry spans more than a day, so older rows cannot reach into a range.
OVERLAP_LOOKBACK = timedelta(days=1)

Interval = tuple[datetime, datetime]


def _occupying(now: datetime):
    """Rows that hold their slot at ``now``: active, and not a lapsed hold."""
    return or_(
        Appointment.status.in_([AppointmentStatus.PENDING.value, AppointmentStatus.APPROVED.value]),
        and_(
            Appointment.status == AppointmentStatus.RESERVED.value,
            Appointment.blocked_until >= now,
        ),
    )


def _lapsed_holds(now: datetime):
    return and_(
        Appointment.status == AppointmentStatus.RESERVED.value,
        Appointment.blocked_until.is_not(None),
        Appointment.blocked_until < now,
    )


def _expire_values(now: datetime) -> dict:
    return {
        Appointment.status: AppointmentStatus.CANCELLED.value,
        Appointment.payment_status: PaymentStatus.EXPIRED.value,
        Appointment.cancellation_reason: HOLD_EXPIRED_REASON,
        Appointment.updated_at: now,
        **CLEARED_HOLD,
    }


class ReservationLedger:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, appointment_id: int) -> Appointment:
        with self._session_factory() as db:
            appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f'Appointment {appointment_id} not found.')
        return appointment

    def occupied_intervals(
        self,
        doctor_id: int,
        range_start: datetime,
        range_end: datetime,
        now: datetime,
    ) -> list[Interval]:
        """``(start, end)`` of every entry holding part of ``[range_start, range_end)`` at ``now``."""
        with self._session_factory() as db:
            return self._occupied_intervals(db, doctor_id, range_start, range_end, now)

    def _occupied_intervals(
        self,
        db: Session,
        doctor_id: int,
        range_start: datetime,
        range_end: datetime,
        now: datetime,
    ) -> list[Interval]:
        rows = db.query(Appointment.appointment_at, Appointment.duration_minutes).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_at >= range_start - OVERLAP_LOOKBACK,
            Appointment.appointment_at < range_end,
            _occupying(now),
        ).order_by(Appointment.appointment_at.asc()).all()

        intervals = [
            (appointment_at, appointment_at + timedelta(minutes=duration_minutes))
            for appointment_at, duration_minutes in rows
        ]
        return [interval for interval in intervals if interval[1] > range_start]

    def active_session_exists(self, elder_id: int, session_date: date, now: datetime) -> bool:
        with self._session_factory() as db:
            return db.query(Appointment.id).filter(
                Appointment.elder_id == elder_id,
                Appointment.session_date == session_date,
                _occupying(now),
            ).first() is not None

    def record(self, entry: Appointment, now: datetime) -> Appointment:
        """Insert a new entry, first reclaiming lapsed holds on the same keys.

        Raises ``SlotTakenError`` when the entry's interval overlaps an
        occupying entry for the doctor, or when a uniqueness guard rejects
        the insert.
        """
        ensure_transition(None, entry.status)
        entry_end = entry.appointment_at + timedelta(minutes=entry.duration_minutes)

        with self._session_factory() as db:
            try:
                self._lock_doctor(db, entry.doctor_id)
                # First write of the transaction: on SQLite this takes the
                # database write lock, so the overlap read below is serialised.
                self._expire_lapsed_conflicts(db, entry, now)
                overlapping = self._occupied_intervals(db, entry.doctor_id, entry.appointment_at, entry_end, now)
                if overlapping:
                    db.rollback()
                    raise SlotTakenError(
                        f'Doctor {entry.doctor_id} is already booked {overlapping[0][0]}-{overlapping[0][1]}.',
                        reason='slot_taken',
                    )
                db.add(entry)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise SlotTakenError(
                    f'Doctor {entry.doctor_id} slot {entry.appointment_at} is already taken.',
                    reason=self._conflict_reason(db, entry, now),
                ) from exc
            db.refresh(entry)

        return entry

    def _lock_doctor(self, db: Session, doctor_id: int) -> None:
        # Row lock on the doctor's account serialises inserts per doctor on
        # PostgreSQL. SQLite ignores FOR UPDATE.
        db.query(User.id).filter(User.id == doctor_id).with_for_update().first()

    def _expire_lapsed_conflicts(self, db: Session, entry: Appointment, now: datetime) -> None:
        conflict_keys = [
            and_(
                Appointment.doctor_id == entry.doctor_id,
                Appointment.appointment_at == entry.appointment_at,
            )
        ]
        if entry.session_date is not None:
            conflict_keys.append(
                and_(
                    Appointment.elder_id == entry.elder_id,
                    Appointment.session_date == entry.session_date,
                )
            )

        expired = db.query(Appointment).filter(
            or_(*conflict_keys),
            _lapsed_holds(now),
        ).update(_expire_values(now), synchronize_session=False)

        if expired:
            logger.info('Reclaimed %s lapsed hold(s) before inserting for doctor %s at %s',
                        expired, entry.doctor_id, entry.appointment_at)

    def _conflict_reason(self, db: Session, entry: Appointment, now: datetime) -> str:
        if entry.session_date is None:
            return 'slot_taken'

        session_conflict = db.query(Appointment.id).filter(
            Appointment.elder_id == entry.elder_id,
            Appointment.session_date == entry.session_date,
            Appointment.status.in_(ACTIVE_STATUS_VALUES),
        ).first()
        return 'session_exists' if session_conflict is not None else 'slot_taken'

    def transition(
        self,
        appointment_id: int,
        expected: Iterable[AppointmentStatus],
        target: AppointmentStatus,
        values: dict | None = None,
        conditions: Iterable = (),
        now: datetime | None = None,
    ) -> Appointment | None:
        """Move one row from any of ``expected`` to ``target`` in a single guarded UPDATE.

        Returns the updated row, or ``None`` if the guard no longer matched.
        """
        expected = list(expected)
        for current in expected:
            ensure_transition(current, target)

        update_values = {
            Appointment.status: target.value,
            Appointment.updated_at: now or datetime.now(),
        }
        if values:
            update_values.update(values)

        with self._session_factory() as db:
            updated = db.query(Appointment).filter(
                Appointment.id == appointment_id,
                Appointment.status.in_([status.value for status in expected]),
                *conditions,
            ).update(update_values, synchronize_session=False)
            db.commit()

            if not updated:
                return None
            return db.get(Appointment, appointment_id)

    def annotate(
        self,
        appointment_id: int,
        expected: Iterable[AppointmentStatus],
        values: dict,
        now: datetime | None = None,
    ) -> Appointment | None:
        """Update non-status fields while the row is still in one of ``expected``."""
        update_values = {Appointment.updated_at: now or datetime.now(), **values}

        with self._session_factory() as db:
            updated = db.query(Appointment).filter(
                Appointment.id == appointment_id,
                Appointment.status.in_([status.value for status in expected]),
            ).update(update_values, synchronize_session=False)
            db.commit()

            if not updated:
                return None
            return db.get(Appointment, appointment_id)

    def find_expired_holds(self, now: datetime, limit: int | None = None) -> list[int]:
        with self._session_factory() as db:
            query = db.query(Appointment.id).filter(_lapsed_holds(now)).order_by(Appointment.blocked_until.asc())
            if limit is not None:
                query = query.limit(limit)
            return [appointment_id for (appointment_id,) in query.all()]

    def expire_hold(self, appointment_id: int, now: datetime) -> Appointment:
        """Cancel a lapsed hold. Raises ``StaleHoldError`` if it was confirmed or released first."""
        appointment = self.transition(
            appointment_id,
            [AppointmentStatus.RESERVED],
            AppointmentStatus.CANCELLED,
            values={
                Appointment.payment_status: PaymentStatus.EXPIRED.value,
                Appointment.cancellation_reason: HOLD_EXPIRED_REASON,
                **CLEARED_HOLD,
            },
            conditions=[Appointment.blocked_until.is_not(None), Appointment.blocked_until < now],
            now=now,
        )
        if appointment is None:
            raise StaleHoldError(f'Hold on appointment {appointment_id} is no longer expirable.')
        return appointment
