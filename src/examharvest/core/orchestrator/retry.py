"""
Retry policies with tenacity.

RetryExecutor retries one whole extraction run with linear backoff.
retry_persistence retries a single business-record write with jitter.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_incrementing,
    wait_random_exponential,
)

from examharvest.core.config.models import RetryConfig, Step
from examharvest.core.errors import (
    AuthenticationError,
    PersistenceError,
    RetryExhaustedError,
    ScrapeCancelledError,
)

from .cancellation import CancellationToken

if TYPE_CHECKING:
    from .sinks import ProgressSink

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Never retried; re-raised on the first occurrence
NON_RETRYABLE: tuple[type[BaseException], ...] = (ScrapeCancelledError, AuthenticationError)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 5.0  # seconds


class RetryExecutor:
    """Runs one operation with bounded retries and linear backoff.

    The wait before retry ``n`` is ``base_delay * n``. The wait goes
    through the cancellation token, so a cancel during backoff ends the
    run immediately.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        token: CancellationToken | None = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.token = token or CancellationToken()

    @classmethod
    def from_config(cls, config: RetryConfig, token: CancellationToken | None = None) -> "RetryExecutor":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            token=token,
        )

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        sink: ProgressSink | None = None,
    ) -> T:
        """Invoke ``operation(attempt_number)`` until it succeeds.

        Args:
            operation: Async callable receiving the 1-based attempt number
            sink: Receives a warning status before every retry

        Returns:
            The operation's result

        Raises:
            ScrapeCancelledError: Cancelled, before or during any attempt
            AuthenticationError: Credential rejected, on the first occurrence
            RetryExhaustedError: Every attempt failed
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_not_exception_type(NON_RETRYABLE),
            sleep=self.token.sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    self.token.raise_if_cancelled()
                    try:
                        return await operation(number)
                    except NON_RETRYABLE:
                        raise
                    except Exception as e:
                        await self._report_failure(number, e, sink)
                        raise
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetryExhaustedError(self.max_attempts, last_error) from last_error

        # AsyncRetrying either returns from the block or raises
        raise RetryExhaustedError(self.max_attempts)

    async def _report_failure(
        self,
        number: int,
        error: Exception,
        sink: ProgressSink | None,
    ) -> None:
        if number >= self.max_attempts:
            logger.error(f"Attempt {number}/{self.max_attempts} failed: {error}")
            return

        delay = self.base_delay * number
        logger.warning(
            f"Attempt {number}/{self.max_attempts} failed: {error}. "
            f"Retrying in {delay:.1f}s"
        )
        if sink is not None:
            await sink.emit_status(
                Step.WARNING,
                f"⚠️ Falha na tentativa {number}/{self.max_attempts}: {error}. "
                f"Nova tentativa em {delay:.0f}s...",
            )


async def retry_persistence(
    func: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    max_wait: float = 2.0,
    **kwargs: Any,
) -> T:
    """Call a synchronous persistence function, retrying PersistenceError.

    Waits are jittered exponential, capped at ``max_wait`` seconds. The
    last PersistenceError is re-raised when attempts run out.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(multiplier=0.25, max=max_wait),
        retry=retry_if_exception_type(PersistenceError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            return func(*args, **kwargs)

    raise PersistenceError("Persistence retry ended without a result")
