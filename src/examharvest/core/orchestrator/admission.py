"""
Admission control for interactive harvest requests.

At most ``max_concurrency`` runs execute at once; further submissions wait
in a FIFO queue. All state lives on one asyncio event loop, so no lock is
taken around the counter or the queue.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


DEFAULT_MAX_CONCURRENCY = 3


def _never_abandoned() -> bool:
    return False


@dataclass(eq=False)
class AdmissionTicket:
    """Handle for one submitted task.

    ``position`` is 0 when the task started immediately, otherwise its
    1-based place in the queue at submission time.
    """

    id: int
    task: Callable[[], Awaitable[Any]] = field(repr=False)
    is_abandoned: Callable[[], bool] = field(default=_never_abandoned, repr=False)
    position: int = 0
    started: bool = False
    skipped: bool = False
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def queued(self) -> bool:
        return not self.started and not self._done.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    async def wait(self) -> None:
        """Wait until the task finished or was skipped."""
        await self._done.wait()


class AdmissionQueue:
    """Bounded FIFO admission of async tasks."""

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._active = 0
        self._queue: deque[AdmissionTicket] = deque()
        self._tasks: set[asyncio.Task[None]] = set()
        self._ids = itertools.count(1)

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    def submit(
        self,
        task: Callable[[], Awaitable[Any]],
        is_abandoned: Callable[[], bool] | None = None,
    ) -> AdmissionTicket:
        """Start ``task`` now if capacity allows, else queue it.

        Args:
            task: Zero-argument coroutine function running one harvest
            is_abandoned: Returns True once the caller has gone away

        Returns:
            The ticket; check ``position`` to see whether it was queued
        """
        ticket = AdmissionTicket(
            id=next(self._ids),
            task=task,
            is_abandoned=is_abandoned or _never_abandoned,
        )

        if self._active < self.max_concurrency:
            self._start(ticket)
        else:
            self._queue.append(ticket)
            ticket.position = len(self._queue)
            logger.info(f"Request {ticket.id} queued at position {ticket.position}")

        return ticket

    def _start(self, ticket: AdmissionTicket) -> None:
        self._active += 1
        ticket.started = True
        logger.info(
            f"Request {ticket.id} admitted "
            f"({self._active}/{self.max_concurrency} active, {len(self._queue)} queued)"
        )
        task = asyncio.create_task(self._run(ticket), name=f"harvest-{ticket.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, ticket: AdmissionTicket) -> None:
        try:
            await ticket.task()
        except asyncio.CancelledError:
            logger.info(f"Request {ticket.id} cancelled")
            raise
        except Exception:
            # Tasks report their own terminal event; anything reaching here is a bug
            logger.exception(f"Request {ticket.id} raised outside its own error handling")
        finally:
            self._active -= 1
            ticket._done.set()
            self._release()

    def _release(self) -> None:
        """Start queued tasks while capacity allows, skipping abandoned ones."""
        while self._active < self.max_concurrency and self._queue:
            ticket = self._queue.popleft()
            if ticket.is_abandoned():
                ticket.skipped = True
                ticket._done.set()
                logger.info(f"Request {ticket.id} abandoned while queued, skipping")
                continue
            self._start(ticket)

    async def drain(self) -> None:
        """Wait until every admitted and queued task has finished."""
        while self._tasks or self._queue:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                self._release()
                if not self._tasks:
                    break
