"""Wires the schedule store, ledger, resolver, arbiter and sweeper together once per process."""

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.orm import sessionmaker

from careslot.core import config
from careslot.models.user import User
from careslot.services.arbiter import ReservationArbiter
from careslot.services.ledger import ReservationLedger
from careslot.services.schedule_store import ScheduleStore
from careslot.services.slot_resolver import SlotResolver
from careslot.services.sweeper import HoldExpirySweeper


@dataclass
class Services:
    schedule_store: ScheduleStore
    ledger: ReservationLedger
    resolver: SlotResolver
    arbiter: ReservationArbiter
    sweeper: HoldExpirySweeper


def user_fee_lookup(session_factory: sessionmaker):
    """Consultation fee snapshot read from the account collaborator's users table."""

    def lookup(doctor_id: int) -> Decimal | None:
        with session_factory() as db:
            fee = db.query(User.consultation_fee).filter(User.id == doctor_id).scalar()
        return fee

    return lookup


def build_services(session_factory: sessionmaker, clock=None, fee_lookup=None) -> Services:
    clock_kwargs = {'clock': clock} if clock is not None else {}

    schedule_store = ScheduleStore(session_factory)
    ledger = ReservationLedger(session_factory)
    resolver = SlotResolver(schedule_store, ledger, **clock_kwargs)
    arbiter = ReservationArbiter(
        ledger,
        resolver,
        fee_lookup=fee_lookup or user_fee_lookup(session_factory),
        hold_ttl=timedelta(minutes=config.HOLD_TTL_MINUTES),
        auto_approve=config.CONFIRM_AUTO_APPROVE,
        **clock_kwargs,
    )
    sweeper = HoldExpirySweeper(
        ledger,
        interval_seconds=config.SWEEP_INTERVAL_SECONDS,
        retry_attempts=config.SWEEP_RETRY_ATTEMPTS,
        **clock_kwargs,
    )

    return Services(
        schedule_store=schedule_store,
        ledger=ledger,
        resolver=resolver,
        arbiter=arbiter,
        sweeper=sweeper,
    )
