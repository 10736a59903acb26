"""
Cooperative cancellation.

A CancellationToken is set by whoever owns the run (a disconnected client,
or a poll that sees the job marked as failed) and checked by the
extraction state machine at phase, unit and item boundaries.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from examharvest.core.errors import ScrapeCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative abort signal for one run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Set the token. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info(f"Cancellation requested: {reason or 'no reason given'}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScrapeCancelledError()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until cancelled or until the timeout elapses.

        Returns:
            True if the token was cancelled
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            ScrapeCancelledError: If the token is set before or during the sleep
        """
        self.raise_if_cancelled()
        if seconds > 0 and await self.wait(seconds):
            raise ScrapeCancelledError()

    # -------------------------------------------------------------------------
    # External poll
    # -------------------------------------------------------------------------

    def start_polling(
        self,
        check: Callable[[], Awaitable[bool]],
        interval: float,
        reason: str = "cancelled externally",
    ) -> None:
        """Poll ``check`` every ``interval`` seconds and cancel when it returns True.

        Poll errors are logged and the poll keeps going.
        """
        if self._poll_task is not None:
            raise RuntimeError("Cancellation poll already running")
        self._poll_task = asyncio.create_task(self._poll(check, interval, reason))

    async def _poll(
        self,
        check: Callable[[], Awaitable[bool]],
        interval: float,
        reason: str,
    ) -> None:
        while not self._event.is_set():
            if await self.wait(interval):
                return
            try:
                if await check():
                    self.cancel(reason)
                    return
            except Exception as e:
                logger.warning(f"Cancellation poll failed: {e}")

    async def stop_polling(self) -> None:
        """Stop the external poll, if running."""
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
