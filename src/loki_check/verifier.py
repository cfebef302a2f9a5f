"""
Ingestion verification against Loki's range-query API.

A line written through a Loki-forwarding logger is not queryable straight away:
the push goes through the distributor and ingester first. IngestionVerifier
therefore retries the range query a bounded number of times before reporting a
backend failure, and treats "no lines" as a normal answer rather than an error.
"""

import datetime
import logging
import re
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import httpx

from loki_check.config import settings
from loki_check.errors import BackendError, BackendUnreachable, Cancelled
from loki_check.loki import build_query_url, fetch_range, format_timestamp, parse_range_response
from loki_check.schemas.logs import LokiQuery, RangeQueryResult, VerificationOutcome

logger = logging.getLogger(__name__)

# (line, needle) -> does the line count as a match?
Matcher = Callable[[str, str], bool]

_UNIX_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def contains(line: str, needle: str) -> bool:
    return needle in line


def regex_search(line: str, pattern: str) -> bool:
    return re.search(pattern, line) is not None


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class IngestionVerifier:
    """
    Query Loki for recent lines and check whether any of them matches.

    ``client`` is used as-is and never closed; without one, each call opens and
    closes its own ``httpx.Client``. ``matcher`` decides what "contains" means
    (plain substring by default, see ``regex_search`` for the alternative).
    The verifier keeps no state between calls.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        *,
        matcher: Matcher = contains,
        request_timeout: Optional[float] = None,
        now: Callable[[], datetime.datetime] = _utcnow,
    ):
        self._client = client
        self.matcher = matcher
        self.request_timeout = (
            request_timeout if request_timeout is not None else settings.request_timeout_seconds
        )
        self._now = now

    # ── Public API ───────────────────────────────────────────────────────────

    def verify(
        self,
        backend_base_url: str,
        log_selector: str,
        substring: str,
        lookback: Optional[datetime.timedelta] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        *,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> VerificationOutcome:
        """
        Query ``[now - lookback, now]`` and report whether any line contains ``substring``.

        ``retry_delay`` is in seconds. ``deadline`` is an absolute ``time.monotonic()``
        value; passing it, or setting ``cancel``, makes the call raise Cancelled
        instead of waiting out the remaining attempts.

        Raises BackendUnreachable, BackendError, MalformedResponse or Cancelled.
        """
        query = self.build_query(log_selector, lookback)
        return self.verify_query(
            backend_base_url,
            query,
            substring,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            cancel=cancel,
            deadline=deadline,
        )

    def build_query(
        self,
        log_selector: str,
        lookback: Optional[datetime.timedelta] = None,
    ) -> LokiQuery:
        if lookback is None:
            lookback = datetime.timedelta(minutes=settings.lookback_minutes)
        if lookback < datetime.timedelta(0):
            raise ValueError(f"lookback must not be negative, got {lookback}")
        end = self._now().astimezone(datetime.timezone.utc).replace(microsecond=0)
        try:
            start = end - lookback
        except OverflowError:
            raise ValueError(f"lookback {lookback} reaches past the earliest datetime") from None
        # Loki timestamps are Unix epoch based; earlier years also break the RFC3339 format.
        if start < _UNIX_EPOCH:
            raise ValueError(f"lookback {lookback} reaches before 1970-01-01T00:00:00Z")
        return LokiQuery(selector=log_selector, start=start, end=end)

    def verify_query(
        self,
        backend_base_url: str,
        query: LokiQuery,
        substring: str,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        *,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> VerificationOutcome:
        if max_attempts is None:
            max_attempts = settings.max_attempts
        if retry_delay is None:
            retry_delay = settings.retry_delay_seconds
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if retry_delay < 0:
            raise ValueError(f"retry_delay must not be negative, got {retry_delay}")

        url = build_query_url(backend_base_url, query)
        logger.info(
            "[verify] Querying Loki — selector=%r start=%s end=%s max_attempts=%d",
            query.selector,
            format_timestamp(query.start),
            format_timestamp(query.end),
            max_attempts,
        )
        result, attempts = self._query_with_retry(url, max_attempts, retry_delay, cancel, deadline)
        outcome = self.check(result, substring, attempts=attempts)
        logger.info(
            "[verify] %d line(s) scanned in %d attempt(s), matched=%s",
            outcome.total_lines_scanned,
            attempts,
            outcome.matched,
        )
        return outcome

    def check(self, result: RangeQueryResult, substring: str, attempts: int = 1) -> VerificationOutcome:
        """Apply the matcher to every line of an already-fetched result."""
        lines = result.lines()
        matched_line = next((line for line in lines if self.matcher(line, substring)), None)
        return VerificationOutcome(
            matched=matched_line is not None,
            matched_line=matched_line,
            total_lines_scanned=len(lines),
            attempts=attempts,
        )

    def wait_until_present(
        self,
        backend_base_url: str,
        log_selector: str,
        substring: str,
        *,
        timeout: float = 30.0,
        poll_interval: Optional[float] = None,
        lookback: Optional[datetime.timedelta] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> VerificationOutcome:
        """
        Re-run verify() until a line matches or ``timeout`` seconds pass.

        Returns the matching outcome, or the last unmatched one on timeout. If the
        timeout passes before any query completed, Cancelled is raised. Backend
        failures from an individual verify() propagate.
        """
        if poll_interval is None:
            poll_interval = settings.poll_interval_seconds
        give_up_at = time.monotonic() + timeout
        waiter = cancel if cancel is not None else threading.Event()

        outcome: Optional[VerificationOutcome] = None
        polls = 0
        while True:
            try:
                outcome = self.verify(
                    backend_base_url,
                    log_selector,
                    substring,
                    lookback=lookback,
                    max_attempts=max_attempts,
                    retry_delay=retry_delay,
                    cancel=cancel,
                    deadline=give_up_at,
                )
            except Cancelled:
                if outcome is None or waiter.is_set():
                    raise
                return outcome
            polls += 1

            if outcome.matched:
                logger.info("[verify] Line present after %d poll(s)", polls)
                return outcome

            remaining = give_up_at - time.monotonic()
            if remaining <= 0:
                logger.info("[verify] Gave up after %d poll(s) — %r not found", polls, substring)
                return outcome
            if waiter.wait(min(poll_interval, remaining)):
                raise Cancelled(polls)

    # ── Internals ────────────────────────────────────────────────────────────

    @contextmanager
    def _session(self) -> Iterator[httpx.Client]:
        if self._client is not None:
            yield self._client
        else:
            with httpx.Client(timeout=self.request_timeout) as client:
                yield client

    def _query_with_retry(
        self,
        url: str,
        max_attempts: int,
        retry_delay: float,
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> tuple[RangeQueryResult, int]:
        waiter = cancel if cancel is not None else threading.Event()
        last_error: Optional[httpx.TransportError] = None
        last_response: Optional[httpx.Response] = None

        with self._session() as client:
            for attempt in range(1, max_attempts + 1):
                _raise_if_cancelled(waiter, deadline, attempt - 1)

                try:
                    response = fetch_range(client, url, self._attempt_timeout(deadline))
                except httpx.TransportError as exc:
                    last_error, last_response = exc, None
                    logger.warning(
                        "[verify] Attempt %d/%d failed: %s: %s",
                        attempt, max_attempts, type(exc).__name__, exc,
                    )
                else:
                    if response.status_code == 200:
                        return parse_range_response(response.text), attempt
                    last_error, last_response = None, response
                    logger.warning(
                        "[verify] Attempt %d/%d got HTTP %d: %s",
                        attempt, max_attempts, response.status_code, response.text[:300],
                    )

                _raise_if_cancelled(waiter, deadline, attempt)
                if attempt < max_attempts:
                    delay = retry_delay
                    if deadline is not None:
                        delay = min(delay, max(deadline - time.monotonic(), 0.0))
                    if waiter.wait(delay):
                        raise Cancelled(attempt)

        if last_response is not None:
            logger.error(
                "[verify] Giving up after %d attempt(s): HTTP %d",
                max_attempts, last_response.status_code,
            )
            raise BackendError(last_response.status_code, url, max_attempts, last_response.text)

        logger.error("[verify] Giving up after %d attempt(s): Loki unreachable", max_attempts)
        raise BackendUnreachable(url, max_attempts, str(last_error)) from last_error

    def _attempt_timeout(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return self.request_timeout
        remaining = max(deadline - time.monotonic(), 0.001)
        if self.request_timeout is None:
            return remaining
        return min(self.request_timeout, remaining)


def _raise_if_cancelled(waiter: threading.Event, deadline: Optional[float], attempts: int) -> None:
    if waiter.is_set():
        raise Cancelled(attempts)
    if deadline is not None and time.monotonic() >= deadline:
        raise Cancelled(attempts, reason="deadline exceeded")
