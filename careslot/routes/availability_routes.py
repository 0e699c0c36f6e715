from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError

from careslot.auth.dependencies import get_staff_user
from careslot.core import config
from careslot.core.errors import ConfigurationError, ReservationError
from careslot.models.user import User
from careslot.routes.common import database_unavailable, get_services, reservation_http_error
from careslot.services.container import Services

router = APIRouter(tags=['availability'])

MAX_EXCEPTION_REASON_LENGTH = 255


class SlotResponse(BaseModel):
    doctor_id: int
    date: date
    time: time
    duration_minutes: int
    start_time: datetime
    end_time: datetime


class CreateRecurringWindowRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Monday) and 6 (Sunday).')
        return value

    @model_validator(mode='after')
    def validate_bounds(self) -> 'CreateRecurringWindowRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class RecurringWindowResponse(BaseModel):
    id: int
    doctor_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool

    class Config:
        from_attributes = True


class CreateScheduleExceptionRequest(BaseModel):
    date: date
    start_time: time | None = None
    end_time: time | None = None
    is_unavailable: bool = True
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_EXCEPTION_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_EXCEPTION_REASON_LENGTH} characters or fewer.')

        return normalized


class ScheduleExceptionResponse(BaseModel):
    id: int
    doctor_id: int
    date: date
    start_time: time | None = None
    end_time: time | None = None
    is_unavailable: bool
    reason: str | None = None

    class Config:
        from_attributes = True


def configuration_rejected(exc: ConfigurationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.get('/doctors/{doctor_id}/slots', response_model=list[SlotResponse])
def list_available_slots(
    doctor_id: int,
    start_date: date = Query(...),
    end_date: date | None = Query(default=None),
    slot_duration: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=5, le=240),
    include_past: bool = Query(default=False),
    services: Services = Depends(get_services),
):
    end_date = end_date or start_date

    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='end_date must not be before start_date.',
        )

    if (end_date - start_date).days + 1 > config.MAX_SLOT_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Slots can be listed for at most {config.MAX_SLOT_RANGE_DAYS} days at a time.',
        )

    try:
        slot_starts = services.resolver.resolve(doctor_id, start_date, end_date, slot_duration)
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    now = datetime.now()
    return [
        SlotResponse(
            doctor_id=doctor_id,
            date=slot_start.date(),
            time=slot_start.time(),
            duration_minutes=slot_duration,
            start_time=slot_start,
            end_time=slot_start + timedelta(minutes=slot_duration),
        )
        for slot_start in slot_starts
        if include_past or slot_start > now
    ]


@router.post(
    '/doctors/{doctor_id}/windows',
    response_model=RecurringWindowResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_recurring_window(
    doctor_id: int,
    data: CreateRecurringWindowRequest,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        return services.schedule_store.add_recurring_window(
            doctor_id,
            data.day_of_week,
            data.start_time,
            data.end_time,
        )
    except ConfigurationError as exc:
        raise configuration_rejected(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/doctors/{doctor_id}/windows', response_model=list[RecurringWindowResponse])
def list_recurring_windows(
    doctor_id: int,
    include_inactive: bool = Query(default=False),
    services: Services = Depends(get_services),
):
    try:
        return services.schedule_store.list_windows(doctor_id, active_only=not include_inactive)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/windows/{window_id}/deactivate', response_model=RecurringWindowResponse)
def deactivate_recurring_window(
    window_id: int,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        return services.schedule_store.deactivate_window(window_id)
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post(
    '/doctors/{doctor_id}/exceptions',
    response_model=ScheduleExceptionResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_schedule_exception(
    doctor_id: int,
    data: CreateScheduleExceptionRequest,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        return services.schedule_store.add_exception(
            doctor_id,
            data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            is_unavailable=data.is_unavailable,
            reason=data.reason,
        )
    except ConfigurationError as exc:
        raise configuration_rejected(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/doctors/{doctor_id}/exceptions', response_model=list[ScheduleExceptionResponse])
def list_schedule_exceptions(
    doctor_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    services: Services = Depends(get_services),
):
    try:
        return services.schedule_store.list_exceptions(doctor_id, start_date, end_date)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.delete('/exceptions/{exception_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_schedule_exception(
    exception_id: int,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        services.schedule_store.remove_exception(exception_id)
    except ReservationError as exc:
        raise reservation_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/doctors/{doctor_id}/schedule-check', status_code=status.HTTP_204_NO_CONTENT)
def validate_doctor_schedule(
    doctor_id: int,
    services: Services = Depends(get_services),
    staff: User = Depends(get_staff_user),
):
    try:
        services.schedule_store.validate(doctor_id)
    except ConfigurationError as exc:
        raise configuration_rejected(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
