"""Bounded retries with a fixed backoff table."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from invoice_export.core.exceptions import ExhaustedRetriesError, ExportError, RetryCancelledError
from invoice_export.core.observability import get_job_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Seconds before attempt 2, 3, 4...; the last entry is reused past the end.
BACKOFF_SCHEDULE: tuple[float, ...] = (0.5, 1.0, 2.0)

DEFAULT_MAX_ATTEMPTS = 3

RetryCallback = Callable[[int, int, BaseException], None]
Sleeper = Callable[[float], Awaitable[None]]


def backoff_delay(failed_attempt: int, schedule: Sequence[float] = BACKOFF_SCHEDULE) -> float:
    """Delay after ``failed_attempt`` (1-based) fails."""
    index = min(failed_attempt - 1, len(schedule) - 1)
    return schedule[max(index, 0)]


class wait_schedule(wait_base):
    """Tenacity wait strategy that looks delays up in a fixed table."""

    def __init__(self, schedule: Sequence[float] = BACKOFF_SCHEDULE) -> None:
        if not schedule:
            raise ValueError("backoff schedule must not be empty")
        self.schedule = tuple(schedule)

    def __call__(self, retry_state: RetryCallState) -> float:
        return backoff_delay(retry_state.attempt_number, self.schedule)


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, ExportError):
        return error.retryable
    return isinstance(error, Exception)


class RetryOrchestrator:
    """Runs an async unit of work with bounded retries.

    ``on_retry(next_attempt, max_attempts, error)`` fires once before each
    retry delay. Pending delays can be abandoned with ``cancel_pending``.
    """

    def __init__(
        self,
        on_retry: Optional[RetryCallback] = None,
        schedule: Sequence[float] = BACKOFF_SCHEDULE,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.on_retry = on_retry
        self.schedule = tuple(schedule)
        self._sleeper = sleep
        self._pending: Optional[asyncio.Future] = None
        self._cancelled = False

    async def execute(
        self,
        unit_of_work: Callable[[], Awaitable[T]],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> T:
        """Run ``unit_of_work`` until it succeeds or ``max_attempts`` are spent."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._cancelled = False

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_schedule(self.schedule),
            retry=retry_if_exception(is_retryable),
            before_sleep=lambda state: self._announce(state, max_attempts),
            sleep=self._sleep,
            reraise=False,
        )

        # Tenacity only awaits coroutine functions, not callables returning awaitables
        async def attempt() -> T:
            return await unit_of_work()

        try:
            return await retrying(attempt)
        except RetryError as exc:
            last_attempt = exc.last_attempt
            last_error = last_attempt.exception()
            logger.error(
                "Export attempts exhausted",
                extra={
                    "job_id": get_job_id(),
                    "attempts": last_attempt.attempt_number,
                    "error": str(last_error),
                },
            )
            raise ExhaustedRetriesError(last_error, last_attempt.attempt_number) from last_error

    def cancel_pending(self) -> None:
        """Abandon a scheduled retry; the running ``execute`` raises ``RetryCancelledError``."""
        self._cancelled = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

    @property
    def has_pending_retry(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def _announce(self, retry_state: RetryCallState, max_attempts: int) -> None:
        if self._cancelled:
            raise RetryCancelledError("Export dismissed before retry")

        next_attempt = retry_state.attempt_number + 1
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retrying export",
            extra={
                "job_id": get_job_id(),
                "attempt": next_attempt,
                "max_attempts": max_attempts,
                "delay": retry_state.next_action.sleep if retry_state.next_action else None,
                "error": str(error),
            },
        )
        if self.on_retry is not None:
            self.on_retry(next_attempt, max_attempts, error)

    async def _sleep(self, seconds: float) -> None:
        if self._cancelled:
            raise RetryCancelledError("Export dismissed before retry")

        self._pending = asyncio.ensure_future(self._sleeper(seconds))
        try:
            await self._pending
        except asyncio.CancelledError:
            if self._cancelled:
                raise RetryCancelledError("Export dismissed before retry") from None
            raise
        finally:
            self._pending = None
