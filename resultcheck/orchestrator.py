"""
orchestrator.py - Retrieval Orchestrator
========================================
Drives one retrieval run over a session's subjects:

1. Build a ResultQuery for every subject that has no result yet
2. Hand all of them to the BoundedDispatcher
3. Store each payload on its subject as it arrives, or log why it failed
4. Stop sending anything new once the API reports an authentication failure
5. Wait for everything to settle, then recompute the summary counters

Failure handling:
-----------------
No per-subject failure escapes run(). Each one becomes session log lines and
leaves the subject without a result, ready for the next run. Only an
AuthenticationError changes the course of the run: it sets the run's
StopToken, and every request that has not reached the server yet is dropped.
Requests already in flight still finish.
Cancelling run() itself is harsher: the token is set, the queue is dropped
and in-flight lookups are cancelled.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from .client import ResultQuery, ResultsClient
from .dispatcher import BoundedDispatcher
from .errors import (
    AUTH_FAILED_MESSAGE,
    AuthenticationError,
    LocalError,
    NoResponseError,
    RemoteResponseError,
    RetrievalError,
    RunInProgressError,
)
from .subjects import IdType, Session, Stats, Subject, calculate_stats


logger = logging.getLogger(__name__)


# =============================================================================
# STOP TOKEN
# =============================================================================

class StopToken:
    """
    Cancellation token for a single run.

    Set at most once. Cancels future submissions only, never requests that
    are already in flight. A new run always gets a new token.
    """

    def __init__(self):
        self._reason: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def stop(self, reason: str) -> bool:
        """Set the token. Returns False if it was already set."""
        if self._reason is not None:
            return False
        self._reason = reason
        return True


class _Skipped(Exception):
    """A queued request was dropped because the run was stopped."""


# =============================================================================
# QUERY BUILDING AND ERROR CLASSIFICATION
# =============================================================================

def build_query(subject: Subject, start_timestamp: Optional[str] = None) -> ResultQuery:
    """
    Build the lookup for one subject.

    - UIN subjects:      uin=<uin>
    - Passport subjects: uin=<passport number>&uin_country_of_issue=<nationality>

    A non-empty start_timestamp is appended to either.
    """
    if subject.id_type == IdType.PASSPORT:
        params = [("uin", subject.passport), ("uin_country_of_issue", subject.nationality)]
    else:
        params = [("uin", subject.uin)]

    if start_timestamp and start_timestamp.strip():
        params.append(("start_timestamp", start_timestamp.strip()))

    return ResultQuery(key=subject.key, params=tuple(params))


def _response_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_error(exc: BaseException) -> RetrievalError:
    """
    Map whatever a lookup raised onto the error taxonomy.

    - A response came back with the auth sentinel -> AuthenticationError
    - Any other response                           -> RemoteResponseError
    - A requests error with no response            -> NoResponseError
    - Anything else                                -> LocalError
    """
    if isinstance(exc, RetrievalError):
        return exc

    if isinstance(exc, requests.RequestException):
        response = getattr(exc, "response", None)
        if response is None:
            return NoResponseError(f"{type(exc).__name__}: {exc}")

        body = _response_body(response)
        if isinstance(body, dict) and body.get("message") == AUTH_FAILED_MESSAGE:
            return AuthenticationError()
        return RemoteResponseError(response.status_code, dict(response.headers), body)

    return LocalError(str(exc) or type(exc).__name__)


def check_payload(payload: Any) -> Dict[str, Any]:
    """
    Make sure a 2xx body has the shape stored on a subject.

    Raises:
        LocalError: If it is not {"results": [...]} with dict entries
    """
    if not isinstance(payload, dict):
        raise LocalError(f"Unexpected payload type {type(payload).__name__}")
    results = payload.get("results")
    if not isinstance(results, list):
        raise LocalError(f"Unexpected 'results' type {type(results).__name__}")
    if results and not isinstance(results[0], dict):
        raise LocalError(f"Unexpected result entry type {type(results[0]).__name__}")
    return payload


# =============================================================================
# ORCHESTRATOR
# =============================================================================

@dataclass
class RunReport:
    """What happened during one run."""

    queued: int = 0
    sent: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    stopped: bool = False
    stats: Stats = field(default_factory=Stats)


class RetrievalOrchestrator:
    """
    Runs one retrieval pass over a session.

    Args:
        session: The subjects to look up, and where logs and stats go
        execute: Async callable performing one lookup (e.g. ResultsClient.execute)
        concurrency_limit: Max lookups in flight
        start_timestamp: Optional filter shared by every query
        progress_every: Report progress when the outstanding count is a multiple of this
        on_progress: Called with the outstanding count
        on_complete: Called with the recomputed Stats after the run
    """

    def __init__(
        self,
        session: Session,
        execute: Callable[[ResultQuery], Any],
        concurrency_limit: int = 20,
        *,
        start_timestamp: Optional[str] = None,
        progress_every: int = 100,
        on_progress: Optional[Callable[[int], None]] = None,
        on_complete: Optional[Callable[[Stats], None]] = None,
    ):
        self.session = session
        self.token = StopToken()
        self.report = RunReport()
        self.dispatcher = BoundedDispatcher(
            self._gated(execute),
            concurrency_limit,
            on_settle=lambda entry: self._report_progress(),
        )

        self._start_timestamp = start_timestamp
        self._progress_every = progress_every
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._used = False

    def _gated(self, execute):
        """Wrap execute so nothing reaches the server once the token is set."""

        async def gated(query: ResultQuery):
            if self.token.is_set:
                raise _Skipped(query.key)
            self.report.sent += 1
            return await execute(query)

        return gated

    def outstanding(self) -> int:
        """Lookups of this run not settled yet (queued or in flight)."""
        return self.dispatcher.pending_count() + self.dispatcher.in_flight_count()

    def _report_progress(self):
        count = self.outstanding()
        # Zero means the run is over, which is reported by on_complete instead
        if count and count % self._progress_every == 0:
            self.session.progress = count
            logger.debug(f"Progress: {count} outstanding")
            if self._on_progress:
                try:
                    self._on_progress(count)
                except Exception:
                    logger.exception(f"Progress callback failed at {count} outstanding")

    async def run(self) -> RunReport:
        """
        Look up every subject without a result and wait for all of them.

        Raises:
            RunInProgressError: If this session already has a run going, or
                                this orchestrator was already used
        """
        if self.session.running or self._used:
            raise RunInProgressError("A retrieval run is already in progress for this session")

        self._used = True
        self.session.running = True
        try:
            trackers = []
            # Subjects that already have a result are never looked up again
            for subject in self.session.pending_subjects():
                if self.token.is_set:
                    self.report.skipped += 1
                    continue

                query = build_query(subject, self._start_timestamp)
                future = self.dispatcher.submit(query)
                self.report.queued += 1
                trackers.append(self._track(subject, future))
                self._report_progress()

            await asyncio.gather(*trackers, return_exceptions=True)
        except BaseException:
            # Cancelled or crashed: nothing more may reach the server
            self.token.stop("run aborted")
            self.dispatcher.close()
            raise
        finally:
            self.session.running = False

        # One full recount over every subject, never incremental
        self.session.stats = calculate_stats(self.session.subjects)
        self.session.progress = 0
        self.report.stats = self.session.stats
        self.report.stopped = self.token.is_set

        logger.info(
            f"Run finished: {self.report.sent} sent, {self.report.succeeded} succeeded, "
            f"{self.report.failed} failed, {self.report.skipped} skipped"
        )
        if self._on_complete:
            self._on_complete(self.session.stats)
        return self.report

    async def _track(self, subject: Subject, future: asyncio.Future):
        try:
            payload = check_payload(await future)
        except _Skipped:
            self.report.skipped += 1
        except Exception as e:
            self.report.failed += 1
            self._record_failure(classify_error(e))
        else:
            subject.store_result(payload)
            self.report.succeeded += 1

    def _record_failure(self, error: RetrievalError):
        if isinstance(error, AuthenticationError):
            # Only the first auth failure of a run is logged
            if not self.token.stop(str(error)):
                return

        for line in error.log_lines():
            self.session.log(line, level=logging.ERROR)


async def retrieve_results(
    session: Session,
    client: ResultsClient,
    *,
    on_progress: Optional[Callable[[int], None]] = None,
    on_complete: Optional[Callable[[Stats], None]] = None,
) -> RunReport:
    """Run one retrieval pass using the client's settings."""
    settings = client.settings
    orchestrator = RetrievalOrchestrator(
        session,
        client.execute,
        settings.concurrency_limit,
        start_timestamp=settings.start_timestamp,
        progress_every=settings.progress_every,
        on_progress=on_progress,
        on_complete=on_complete,
    )
    return await orchestrator.run()
