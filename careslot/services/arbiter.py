"""Reservation arbiter: grants at most one hold per contested slot."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from careslot.core.errors import (
    HoldExpiredError,
    InvalidTransitionError,
    SlotTakenError,
    StaleHoldError,
)
from careslot.models.appointment import Appointment
from careslot.services.ledger import (
    ACTIVE_STATUS_VALUES,
    CLEARED_HOLD,
    HOLD_EXPIRED_REASON,
    OVERLAP_LOOKBACK,
    ReservationLedger,
)
from careslot.services.slot_resolver import SlotResolver
from careslot.services.state_machine import (
    AppointmentKind,
    AppointmentStatus,
    PaymentStatus,
    ensure_transition,
)

logger = logging.getLogger(__name__)

FeeLookup = Callable[[int], Decimal | None]

OUTCOME_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})


@dataclass(frozen=True)
class Granted:
    appointment_id: int
    expires_at: datetime | None


@dataclass(frozen=True)
class Rejected:
    reason: str


ReservationOutcome = Granted | Rejected


def no_fee(doctor_id: int) -> Decimal | None:
    return None


class ReservationArbiter:
    def __init__(
        self,
        ledger: ReservationLedger,
        resolver: SlotResolver,
        fee_lookup: FeeLookup = no_fee,
        hold_ttl: timedelta = timedelta(minutes=10),
        auto_approve: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._ledger = ledger
        self._resolver = resolver
        self._fee_lookup = fee_lookup
        self._hold_ttl = hold_ttl
        self._auto_approve = auto_approve
        self._clock = clock

    def try_reserve(
        self,
        doctor_id: int,
        elder_id: int | None,
        slot_start: datetime,
        duration_minutes: int,
        requester_id: int,
        hold_ttl: timedelta | None = None,
        kind: AppointmentKind = AppointmentKind.APPOINTMENT,
        reason: str | None = None,
    ) -> ReservationOutcome:
        """Place a time-boxed hold on a slot while the requester pays."""
        now = self._clock()
        expires_at = now + (hold_ttl or self._hold_ttl)
        return self._claim(
            doctor_id=doctor_id,
            elder_id=elder_id,
            slot_start=slot_start,
            duration_minutes=duration_minutes,
            requester_id=requester_id,
            kind=kind,
            reason=reason,
            now=now,
            status=AppointmentStatus.RESERVED,
            hold_values={
                'reserved_at': now,
                'reserved_by': requester_id,
                'blocked_until': expires_at,
            },
        )

    def request_appointment(
        self,
        doctor_id: int,
        elder_id: int | None,
        slot_start: datetime,
        duration_minutes: int,
        requester_id: int,
        kind: AppointmentKind = AppointmentKind.APPOINTMENT,
        reason: str | None = None,
    ) -> ReservationOutcome:
        """Claim a slot as a pending request that waits for the doctor, without a hold."""
        return self._claim(
            doctor_id=doctor_id,
            elder_id=elder_id,
            slot_start=slot_start,
            duration_minutes=duration_minutes,
            requester_id=requester_id,
            kind=kind,
            reason=reason,
            now=self._clock(),
            status=AppointmentStatus.PENDING,
            hold_values={},
        )

    def _claim(
        self,
        doctor_id: int,
        elder_id: int | None,
        slot_start: datetime,
        duration_minutes: int,
        requester_id: int,
        kind: AppointmentKind,
        reason: str | None,
        now: datetime,
        status: AppointmentStatus,
        hold_values: dict,
    ) -> ReservationOutcome:
        kind = AppointmentKind(kind)
        slot_start = slot_start.replace(second=0, microsecond=0)
        if not timedelta(0) < timedelta(minutes=duration_minutes) <= OVERLAP_LOOKBACK:
            raise ValueError('Duration must be positive and at most one day.')
        session_date = None

        if kind is AppointmentKind.MONTHLY_SESSION:
            if elder_id is None:
                raise ValueError('Monthly sessions require an elder.')
            session_date = slot_start.date()
            if self._ledger.active_session_exists(elder_id, session_date, now):
                return self._reject('session_exists', doctor_id, slot_start, requester_id)

        schedule_slots = self._resolver.resolve(
            doctor_id,
            slot_start.date(),
            slot_start.date(),
            duration_minutes,
            include_occupied=True,
        )
        if slot_start not in schedule_slots:
            return self._reject('slot_unavailable', doctor_id, slot_start, requester_id)

        entry = Appointment(
            kind=kind.value,
            requester_id=requester_id,
            elder_id=elder_id,
            doctor_id=doctor_id,
            appointment_at=slot_start,
            duration_minutes=duration_minutes,
            status=status.value,
            payment_status=PaymentStatus.PENDING.value,
            consultation_fee=self._fee_lookup(doctor_id),
            session_date=session_date,
            reason=reason,
            created_at=now,
            updated_at=now,
            **hold_values,
        )

        try:
            entry = self._ledger.record(entry, now)
        except SlotTakenError as exc:
            return self._reject(exc.reason, doctor_id, slot_start, requester_id)

        logger.info(
            'Granted %s %s on doctor %s at %s to requester %s (expires %s)',
            status.value, entry.id, doctor_id, slot_start, requester_id, entry.blocked_until,
        )
        return Granted(appointment_id=entry.id, expires_at=entry.blocked_until)

    def _reject(self, reason: str, doctor_id: int, slot_start: datetime, requester_id: int) -> Rejected:
        logger.info('Rejected reservation for doctor %s at %s by requester %s: %s',
                    doctor_id, slot_start, requester_id, reason)
        return Rejected(reason=reason)

    def confirm_reservation(self, appointment_id: int) -> Appointment:
        """Payment completed: turn the hold into a request (or an approval)."""
        now = self._clock()
        target = AppointmentStatus.APPROVED if self._auto_approve else AppointmentStatus.PENDING
        if self._auto_approve:
            # reserved -> pending -> approved, written as one guarded statement.
            ensure_transition(AppointmentStatus.PENDING, AppointmentStatus.APPROVED)

        appointment = self._ledger.transition(
            appointment_id,
            [AppointmentStatus.RESERVED],
            AppointmentStatus.PENDING,
            values={
                Appointment.status: target.value,
                Appointment.payment_status: PaymentStatus.COMPLETED.value,
                **CLEARED_HOLD,
            },
            conditions=[Appointment.blocked_until.is_not(None), Appointment.blocked_until >= now],
            now=now,
        )
        if appointment is not None:
            logger.info('Confirmed reservation %s as %s', appointment_id, target.value)
            return appointment

        current = self._ledger.get(appointment_id)
        if current.status == AppointmentStatus.RESERVED.value:
            if current.blocked_until is not None and current.blocked_until < now:
                raise HoldExpiredError(f'Hold on appointment {appointment_id} expired at {current.blocked_until}.')
            raise StaleHoldError(f'Hold on appointment {appointment_id} changed during confirmation.')
        if (
            current.status == AppointmentStatus.CANCELLED.value
            and current.payment_status == PaymentStatus.EXPIRED.value
        ):
            raise HoldExpiredError(f'Hold on appointment {appointment_id} was already reclaimed.')
        return self._invalid(current, AppointmentStatus.PENDING)

    def release_reservation(self, appointment_id: int, reason: str | None = None) -> Appointment:
        """Cancel any entry that has not reached a terminal status and free its slot."""
        now = self._clock()
        appointment = self._ledger.transition(
            appointment_id,
            [AppointmentStatus.RESERVED, AppointmentStatus.PENDING, AppointmentStatus.APPROVED],
            AppointmentStatus.CANCELLED,
            values={Appointment.cancellation_reason: reason, **CLEARED_HOLD},
            now=now,
        )
        if appointment is not None:
            logger.info('Released appointment %s (%s)', appointment_id, reason or 'no reason given')
            return appointment

        current = self._ledger.get(appointment_id)
        if current.cancellation_reason == HOLD_EXPIRED_REASON:
            raise HoldExpiredError(f'Hold on appointment {appointment_id} was already reclaimed.')
        if current.status in ACTIVE_STATUS_VALUES:
            raise StaleHoldError(f'Appointment {appointment_id} changed during release.')
        return self._invalid(current, AppointmentStatus.CANCELLED)

    def decide(
        self,
        appointment_id: int,
        approve: bool,
        rejection_reason: str | None = None,
        doctor_notes: str | None = None,
    ) -> Appointment:
        target = AppointmentStatus.APPROVED if approve else AppointmentStatus.REJECTED
        values = {}
        if doctor_notes is not None:
            values[Appointment.doctor_notes] = doctor_notes
        if not approve:
            values[Appointment.rejection_reason] = rejection_reason or 'Rejected by doctor'

        return self._guarded(appointment_id, AppointmentStatus.PENDING, target, values)

    def record_outcome(
        self,
        appointment_id: int,
        outcome: AppointmentStatus,
        doctor_notes: str | None = None,
    ) -> Appointment:
        outcome = AppointmentStatus(outcome)
        if outcome not in OUTCOME_STATUSES:
            raise InvalidTransitionError(AppointmentStatus.APPROVED.value, outcome.value)

        values = {}
        if doctor_notes is not None:
            values[Appointment.doctor_notes] = doctor_notes
        return self._guarded(appointment_id, AppointmentStatus.APPROVED, outcome, values)

    def attach_meeting_link(
        self,
        appointment_id: int,
        meeting_id: str,
        join_url: str,
        password: str | None = None,
    ) -> Appointment:
        appointment = self._ledger.annotate(
            appointment_id,
            [AppointmentStatus.APPROVED],
            {
                Appointment.meeting_id: meeting_id,
                Appointment.meeting_join_url: join_url,
                Appointment.meeting_password: password,
            },
            now=self._clock(),
        )
        if appointment is not None:
            return appointment

        current = self._ledger.get(appointment_id)
        raise InvalidTransitionError(
            current.status,
            AppointmentStatus.APPROVED.value,
            f'Meeting links can only be attached to approved appointments (appointment {appointment_id} '
            f'is {current.status}).',
        )

    def get_appointment(self, appointment_id: int) -> Appointment:
        return self._ledger.get(appointment_id)

    def _guarded(
        self,
        appointment_id: int,
        expected: AppointmentStatus,
        target: AppointmentStatus,
        values: dict,
    ) -> Appointment:
        appointment = self._ledger.transition(appointment_id, [expected], target, values=values, now=self._clock())
        if appointment is not None:
            logger.info('Appointment %s moved from %s to %s', appointment_id, expected.value, target.value)
            return appointment

        return self._invalid(self._ledger.get(appointment_id), target)

    def _invalid(self, current: Appointment, target: AppointmentStatus):
        error = InvalidTransitionError(current.status, target.value)
        logger.error('Illegal transition for appointment %s: %s', current.id, error)
        raise error
