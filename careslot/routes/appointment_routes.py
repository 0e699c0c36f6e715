from datetime import datetime, timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from careslot.auth.dependencies import ensure_staff, get_current_user, get_staff_user
from careslot.core import config
from careslot.core.errors import ReservationError
from careslot.models.user import User
from careslot.routes.common import PICK_ANOTHER_TIME, database_unavailable, get_services, reservation_http_error
from careslot.services.arbiter import Rejected
from careslot.services.container import Services
from careslot.services.state_machine import AppointmentKind, AppointmentStatus

router = APIRouter(tags=['appointments'])

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 120
MAX_REASON_LENGTH = 500
REJECTION_MESSAGES = {
    'slot_taken': PICK_ANOTHER_TIME,
    'slot_unavailable': 'The doctor is not available at this time. Please pick another time.',
    'session_exists': 'This elder already has a session on that date. Please pick another date.',
}


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_REASON_LENGTH:
        raise ValueError(f'Text must be {MAX_REASON_LENGTH} characters or fewer.')

    return normalized


class ReserveSlotRequest(BaseModel):
    doctor_id: int
    elder_id: int | None = None
    slot_start: datetime
    duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    kind: AppointmentKind = AppointmentKind.APPOINTMENT
    reason: str | None = None

    @field_validator('slot_start')
    @classmethod
    def validate_slot_start(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone().replace(tzinfo=None)
        return value.replace(second=0, microsecond=0)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if not MIN_DURATION_MINUTES <= value <= MAX_DURATION_MINUTES:
            raise ValueError(
                f'Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes.'
            )
        return value

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class ReservationGrantedResponse(BaseModel):
    appointment_id: int
    status: str
    expires_at: datetime | None = None


class ReleaseRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class DecisionRequest(BaseModel):
    approve: bool
    rejection_reason: str | None = None
    doctor_notes: str | None = None

    @field_validator('rejection_reason', 'doctor_notes')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class OutcomeRequest(BaseModel):
    outcome: AppointmentStatus
    doctor_notes: str | None = None

    @field_validator('outcome')
    @classmethod
    def validate_outcome(cls, value: AppointmentStatus) -> AppointmentStatus:
        if value not in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW):
            raise ValueError('Outcome must be completed, cancelled or no-show.')
        return value

    @field_validator('doctor_notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class MeetingLinkRequest(BaseModel):
    meeting_id: str
    join_url: str
    password: str | None = None


class AppointmentResponse(BaseModel):
    id: int
    kind: str
    requester_id: int
    elder_id: int | None = None
    doctor_id: int
    appointment_at: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    reserved_at: datetime | None = None
    reserved_by: int | None = None
    blocked_until: datetime | None = None
    payment_status: str
    consultation_fee: Decimal | None = None
    reason: str | None = None
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    meeting_id: str | None = None
    meeting_join_url: str | None = None


def to_response(appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        kind=appointment.kind,
        requester_id=appointment.requester_id,
        elder_id=appointment.elder_id,
        doctor_id=appointment.doctor_id,
        appointment_at=appointment.appointment_at,
        end_time=appointment.appointment_at + timedelta(minutes=appointment.duration_minutes),
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        reserved_at=appointment.reserved_at,
        reserved_by=appointment.reserved_by,
        blocked_until=appointment.blocked_until,
        payment_status=appointment.payment_status,
        consultation_fee=appointment.consultation_fee,
        reason=appointment.reason,
        rejection_reason=appointment.rejection_reason,
        cancellation_reason=appointment.cancellation_reason,
        meeting_id=appointment.meeting_id,
        meeting_join_url=appointment.meeting_join_url,
    )


def ensure_participant(appointment, user: User) -> None:
    if appointment.requester_id == user.id or appointment.reserved_by == user.id:
        return
    ensure_staff(user)


def _check_bookable(data: ReserveSlotRequest) -> None:
    if data.slot_start <= datetime.now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )

    if data.kind is AppointmentKind.MONTHLY_SESSION and data.elder_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Monthly sessions require an elder.',
        )


def _granted_or_conflict(outcome, granted_status: AppointmentStatus) -> ReservationGrantedResponse:
    if isinstance(outcome, Rejected):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=REJECTION_MESSAGES.get(outcome.reason, PICK_ANOTHER_TIME),
        )

    return ReservationGrantedResponse(
        appointment_id=outcome.appointment_id,
        status=granted_status.value,
        expires_at=outcome.expires_at,
    )


@router.post('/reserve', response_model=ReservationGrantedResponse, status_code=status.HTTP_201_CREATED)
def reserve_slot(
    data: ReserveSlotRequest,
    services: Services = Depends(get_services),
    user: User = Depends(get_current_user),
):
    _check_bookable(data)

    try:
        outcome = services.arbiter.try_reserve(
            doctor_id=data.doctor_id,
            elder_id=data.elder_id,
            slot_start=data.slot_start,
            duration_minutes=data.duration_minutes,
            requester_id=user.id,
            kind=data.kind,
            reason=data.reason,
        )
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return _granted_or_conflict(outcome, AppointmentStatus.RESERVED)


@router.post('/request', response_model=ReservationGrantedResponse, status_code=status.HTTP_201_CREATED)
def request_appointment(
    data: ReserveSlotRequest,
    services: Services = Depends(get_services),
    user: User = Depends(get_current_user),
):
    """Book a slot straight into the doctor's queue, for flows without upfront payment."""
    _check_bookable(data)

    try:
        outcome = services.arbiter.request_appointment(
            doctor_id=data.doctor_id,
            elder_id=data.elder_id,
            slot_start=data.slot_start,
            duration_minutes=data.duration_minutes,
            requester_id=user.id,
            kind=data.kind,
            reason=data.reason,
        )
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return _granted_or_conflict(outcome, AppointmentStatus.PENDING)


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    services: Services = Depends(get_services),
    user: User = Depends(get_current_user),
):
    try:
        appointment = services.arbiter.get_appointment(appointment_id)
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    ensure_participant(appointment, user)
    return to_response(appointment)


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_reservation(
    appointment_id: int,
    services: Services = Depends(get_services),
    user: User = Depends(get_current_user),
):
    try:
        ensure_participant(services.arbiter.get_appointment(appointment_id), user)
        appointment = services.arbiter.confirm_reservation(appointment_id)
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return to_response(appointment)


@router.post('/{appointment_id}/release', response_model=AppointmentResponse)
def release_reservation(
    appointment_id: int,
    data: ReleaseRequest,
    services: Services = Depends(get_services),
    user: User = Depends(get_current_user),
):
    try:
        ensure_participant(services.arbiter.get_appointment(appointment_id), user)
        appointment = services.arbiter.release_reservation(appointment_id, data.reason)
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return to_response(appointment)


@router.post('/{appointment_id}/decision', response_model=AppointmentResponse)
def decide_appointment(
    appointment_id: int,
    data: DecisionRequest,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        appointment = services.arbiter.decide(
            appointment_id,
            approve=data.approve,
            rejection_reason=data.rejection_reason,
            doctor_notes=data.doctor_notes,
        )
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return to_response(appointment)


@router.post('/{appointment_id}/outcome', response_model=AppointmentResponse)
def record_outcome(
    appointment_id: int,
    data: OutcomeRequest,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        appointment = services.arbiter.record_outcome(appointment_id, data.outcome, data.doctor_notes)
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return to_response(appointment)


@router.post('/{appointment_id}/meeting', response_model=AppointmentResponse)
def attach_meeting_link(
    appointment_id: int,
    data: MeetingLinkRequest,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        appointment = services.arbiter.attach_meeting_link(
            appointment_id,
            meeting_id=data.meeting_id,
            join_url=data.join_url,
            password=data.password,
        )
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return to_response(appointment)
