"""Appointment status state machine."""

from enum import Enum

from careslot.core.errors import InvalidTransitionError


class AppointmentStatus(str, Enum):
    PENDING = 'pending'
    RESERVED = 'reserved'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no-show'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    EXPIRED = 'expired'


class AppointmentKind(str, Enum):
    APPOINTMENT = 'appointment'
    MONTHLY_SESSION = 'monthly_session'


# Statuses that occupy a slot; mirrored by the partial unique indexes on the ledger.
ACTIVE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.APPROVED,
    AppointmentStatus.RESERVED,
})

TERMINAL_STATUSES = frozenset({
    AppointmentStatus.REJECTED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

ALLOWED_TRANSITIONS: dict[AppointmentStatus | None, frozenset[AppointmentStatus]] = {
    None: frozenset({AppointmentStatus.PENDING, AppointmentStatus.RESERVED}),
    AppointmentStatus.RESERVED: frozenset({AppointmentStatus.PENDING, AppointmentStatus.CANCELLED}),
    # A paid request can still be withdrawn before the doctor decides.
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.APPROVED,
        AppointmentStatus.REJECTED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.APPROVED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
}


def coerce_status(value: str | AppointmentStatus | None) -> AppointmentStatus | None:
    if value is None:
        return None
    return AppointmentStatus(value)


def can_transition(current: str | AppointmentStatus | None, target: str | AppointmentStatus) -> bool:
    return AppointmentStatus(target) in ALLOWED_TRANSITIONS.get(coerce_status(current), frozenset())


def ensure_transition(current: str | AppointmentStatus | None, target: str | AppointmentStatus) -> None:
    if not can_transition(current, target):
        current_value = coerce_status(current)
        raise InvalidTransitionError(
            current_value.value if current_value else None,
            AppointmentStatus(target).value,
        )
