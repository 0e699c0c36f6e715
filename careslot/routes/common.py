import logging

from fastapi import HTTPException, Request, status

from careslot.core.errors import (
    AppointmentNotFoundError,
    ConfigurationError,
    HoldExpiredError,
    InvalidTransitionError,
    ScheduleEntryNotFoundError,
    StaleHoldError,
)
from careslot.services.container import Services

logger = logging.getLogger(__name__)

PICK_ANOTHER_TIME = 'This time is no longer available. Please pick another time.'
DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def get_services(request: Request) -> Services:
    return request.app.state.services


def database_unavailable(exc: Exception) -> HTTPException:
    logger.error('Database error: %s', exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE,
    )


def reservation_http_error(exc: Exception) -> HTTPException:
    """Translate a reservation-engine error raised on a caller-facing endpoint."""
    if isinstance(exc, (AppointmentNotFoundError, ScheduleEntryNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (HoldExpiredError, StaleHoldError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=PICK_ANOTHER_TIME)
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        logger.error('Schedule configuration error surfaced to a caller endpoint: %s', exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Availability is temporarily unavailable for this doctor.',
        )
    raise exc
