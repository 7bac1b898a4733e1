"""
dispatcher.py - Bounded Concurrency Dispatcher
==============================================
Runs an unbounded stream of requests against the results API while keeping at
most `concurrency_limit` of them in flight at any moment.

How it works:
-------------
    submit() ──> queue (FIFO, unbounded) ──admit──> in-flight set ──settle──┐
                      ^                                                     │
                      └────────────── admit next ───────────────────────────┘

Admission is attempted on exactly two triggers:
1. A new submission
2. The settlement of any in-flight entry (success, failure or cancellation)

Everything runs on one asyncio event loop. Queue and in-flight mutations
happen between awaits, so no locking is needed. The one thing that must hold
is that every path removing an entry from the in-flight set also admits the
next one, which is why settlement sits in a `finally` block.

The dispatcher never looks at what a request returns. Values and exceptions
are forwarded untouched to the future handed out by submit().
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional, Set


logger = logging.getLogger(__name__)


@dataclass(eq=False)
class QueueEntry:
    """A submitted request and the future that reports its outcome."""

    request: Any
    future: asyncio.Future
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class BoundedDispatcher:
    """
    FIFO, admission-controlled request executor.

    Usage:
        dispatcher = BoundedDispatcher(client.execute, concurrency_limit=20)
        futures = [dispatcher.submit(q) for q in queries]
        outcomes = await asyncio.gather(*futures, return_exceptions=True)

    Args:
        execute: Async callable that performs one request and returns its
                 response (or raises)
        concurrency_limit: Maximum number of requests in flight, at least 1
        on_dispatch: Optional hook called with each entry as it is admitted
        on_settle: Optional hook called with each entry as it settles

    Hook exceptions are logged and never affect slot accounting.
    """

    def __init__(
        self,
        execute: Callable[[Any], Awaitable[Any]],
        concurrency_limit: int,
        *,
        on_dispatch: Optional[Callable[[QueueEntry], None]] = None,
        on_settle: Optional[Callable[[QueueEntry], None]] = None,
    ):
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")

        self._execute = execute
        self._limit = concurrency_limit
        self._on_dispatch = on_dispatch
        self._on_settle = on_settle

        self._queue: Deque[QueueEntry] = deque()
        self._in_flight: Set[QueueEntry] = set()
        self._closed = False

    @property
    def concurrency_limit(self) -> int:
        return self._limit

    def pending_count(self) -> int:
        """Entries waiting for a slot. In-flight entries are not counted."""
        return len(self._queue)

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def submit(self, request: Any) -> asyncio.Future:
        """
        Queue a request and return a future for its outcome.

        Never blocks and never awaits. Must be called from inside the running
        event loop.
        """
        if self._closed:
            raise RuntimeError("Dispatcher is closed")
        loop = asyncio.get_running_loop()
        entry = QueueEntry(request=request, future=loop.create_future())
        self._queue.append(entry)
        self._admit()
        return entry.future

    def close(self):
        """
        Stop the dispatcher.

        Queued entries are dropped and their futures cancelled, then every
        in-flight task is cancelled. Nothing is admitted after this call.
        """
        self._closed = True
        while self._queue:
            self._queue.popleft().future.cancel()
        for entry in list(self._in_flight):
            entry.future.cancel()
            if entry.task is not None:
                entry.task.cancel()
        # A task cancelled before its first step never reaches _settle
        self._in_flight.clear()

    # -------------------------------------------------------------------------
    # ADMISSION AND SETTLEMENT
    # -------------------------------------------------------------------------

    def _admit(self):
        while not self._closed and self._queue and len(self._in_flight) < self._limit:
            entry = self._queue.popleft()
            self._in_flight.add(entry)
            logger.debug(
                f"Dispatch {entry.request!r} "
                f"(in flight: {len(self._in_flight)}, queued: {len(self._queue)})"
            )
            entry.task = asyncio.ensure_future(self._run(entry))
            self._notify(self._on_dispatch, entry)

    async def _run(self, entry: QueueEntry):
        outcome = None
        error: Optional[BaseException] = None
        try:
            outcome = await self._execute(entry.request)
        except asyncio.CancelledError as e:
            error = e
            raise
        except Exception as e:
            error = e
        finally:
            self._settle(entry, outcome, error)

    def _settle(self, entry: QueueEntry, outcome: Any, error: Optional[BaseException]):
        self._in_flight.discard(entry)

        if not entry.future.done():
            if isinstance(error, asyncio.CancelledError):
                entry.future.cancel()
            elif error is not None:
                entry.future.set_exception(error)
            else:
                entry.future.set_result(outcome)

        try:
            self._notify(self._on_settle, entry)
        finally:
            self._admit()

    @staticmethod
    def _notify(hook: Optional[Callable[[QueueEntry], None]], entry: QueueEntry):
        # Hooks observe; a failing hook must not cost a slot
        if hook is None:
            return
        try:
            hook(entry)
        except Exception:
            logger.exception(f"Dispatcher hook {hook!r} failed for {entry.request!r}")
