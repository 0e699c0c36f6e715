"""Error taxonomy shared by the schedule store, resolver, ledger and arbiter."""


class ReservationError(Exception):
    """Base class for every error raised by the reservation engine."""


class ConfigurationError(ReservationError):
    """Schedule data is inconsistent (overlapping windows or exceptions).

    This is a data-entry problem for schedule administrators; it is never
    retried and never shown to end users.
    """


class SlotTakenError(ReservationError):
    """Another active ledger entry already holds the slot."""

    def __init__(self, message: str = 'slot_taken', reason: str = 'slot_taken') -> None:
        super().__init__(message)
        self.reason = reason


class HoldExpiredError(ReservationError):
    """The hold's time-box elapsed before it was confirmed."""


class StaleHoldError(ReservationError):
    """A guarded write lost a race: the row changed after it was read."""


class InvalidTransitionError(ReservationError):
    """A status change that the appointment state machine does not allow."""

    def __init__(self, current: str | None, target: str, message: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(message or f'Cannot move appointment from {current or "(none)"} to {target}.')


class AppointmentNotFoundError(ReservationError, LookupError):
    """No ledger entry with the given id."""


class ScheduleEntryNotFoundError(ReservationError, LookupError):
    """No recurring window or schedule exception with the given id."""
