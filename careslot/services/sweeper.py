"""Background release of holds whose time-box elapsed without payment."""

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from careslot.core.errors import StaleHoldError
from careslot.services.ledger import ReservationLedger

logger = logging.getLogger(__name__)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome is not None else None
    logger.warning(
        'Sweep attempt %s failed (%s), retrying',
        retry_state.attempt_number,
        type(exc).__name__ if exc is not None else 'unknown error',
    )


class HoldExpirySweeper:
    def __init__(
        self,
        ledger: ReservationLedger,
        interval_seconds: float = 30.0,
        retry_attempts: int = 3,
        batch_size: int | None = 500,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._ledger = ledger
        self._interval_seconds = interval_seconds
        self._retry_attempts = retry_attempts
        self._batch_size = batch_size
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_once(self) -> int:
        """Expire every hold lapsed at the start of the pass, reading ``batch_size`` rows at a time.

        Returns how many holds this pass released.
        """
        now = self._clock()
        expired = 0

        while True:
            batch = self._ledger.find_expired_holds(now, limit=self._batch_size)
            for appointment_id in batch:
                try:
                    self._ledger.expire_hold(appointment_id, now)
                except StaleHoldError:
                    # Confirmed or released between the scan and the guarded write.
                    logger.info('Hold %s changed before it could be expired, skipping', appointment_id)
                    continue
                expired += 1

            if self._batch_size is None or len(batch) < self._batch_size:
                break

        if expired:
            logger.info('Released %s expired hold(s)', expired)
        return expired

    def sweep_with_retry(self) -> int:
        decorated = retry(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            before_sleep=_log_before_sleep,
            reraise=True,
        )(self.sweep_once)

        return decorated()

    def run_forever(self) -> None:
        logger.info('Hold expiry sweeper started. Interval=%ss', self._interval_seconds)
        while not self._stop_event.is_set():
            try:
                self.sweep_with_retry()
            except SQLAlchemyError as e:
                # The next pass picks up whatever this one missed.
                logger.error('Sweep failed (%s: %s)', type(e).__name__, e)
            self._stop_event.wait(self._interval_seconds)
        logger.info('Hold expiry sweeper stopped.')

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name='hold-expiry-sweeper', daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
