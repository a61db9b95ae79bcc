"""Concurrent CI build-log fetcher.

For every failing check with a resolvable log URL, one worker downloads the
log as a text stream and feeds it line by line to a TaskState until the state
says stop. Workers come from a ThreadPoolExecutor whose width is the global
concurrency ceiling, and they share one requests.Session (and its connection
pool) read-only.

Failures never cross task boundaries. Whatever goes wrong inside a worker
(connect error, timeout, non-2xx status, broken stream) becomes a FetchError
on that PR's result; every other task carries on and the call itself does not
raise.

Transient transport failures are retried by urllib3 underneath the session:
exponential backoff between RETRY_BACKOFF_MIN and RETRY_BACKOFF_MAX seconds,
at most RETRY_TOTAL retries. A retry re-issues the whole request; lines
already consumed are never replayed because the response body is only read
once the request has succeeded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from autoprat_core.errors import FetchTimeout, HTTPStatusError
from autoprat_core.logs.patterns import PatternTable
from autoprat_core.logs.resolver import resolve
from autoprat_core.logs.task_state import TaskState
from autoprat_core.models import CheckInfo, CheckRef, FetchError, FetchTask, PrResult, PullRequest

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 20
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 10.0

RETRY_TOTAL = 3
RETRY_BACKOFF_MIN = 0.1
RETRY_BACKOFF_MAX = 5.0
RETRY_STATUSES = (408, 429, 500, 502, 503, 504)

# Kept-alive connections per log host.
POOL_MAXSIZE_PER_HOST = 4

STREAM_CHUNK_SIZE = 8192


class _BoundedBackoffRetry(Retry):
    """urllib3 Retry whose backoff never drops below RETRY_BACKOFF_MIN."""

    def get_backoff_time(self) -> float:
        return min(self.backoff_max, max(RETRY_BACKOFF_MIN, super().get_backoff_time()))


def build_session(pool_connections: int = DEFAULT_MAX_CONCURRENT) -> requests.Session:
    """Create the shared HTTP session with transient-failure retry mounted."""
    retry = _BoundedBackoffRetry(
        total=RETRY_TOTAL,
        backoff_factor=RETRY_BACKOFF_MIN,
        backoff_max=RETRY_BACKOFF_MAX,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=["GET"],
        raise_on_status=False,
        respect_retry_after_header=False,
    )
    adapter = HTTPAdapter(
        pool_connections=pool_connections,
        pool_maxsize=POOL_MAXSIZE_PER_HOST,
        max_retries=retry,
    )
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def iter_log_lines(response: requests.Response) -> Iterator[str]:
    """Yield the decoded body of ``response`` one line at a time.

    Lines end at "\\n" only, with one trailing "\\r" removed, wherever the
    chunk boundaries fall. Unlike Response.iter_lines(), form feeds, U+2028
    and other str.splitlines() separators stay inside the line.
    """
    pending = ""
    for chunk in response.iter_content(chunk_size=STREAM_CHUNK_SIZE, decode_unicode=True):
        pending += chunk
        *lines, pending = pending.split("\n")
        for line in lines:
            yield line.removesuffix("\r")
    if pending:
        yield pending.removesuffix("\r")


@dataclass(frozen=True)
class FetchOutcome:
    """Final result of one FetchTask: a TaskState or an error, never both."""

    task: FetchTask
    state: TaskState | None = None
    error: Exception | None = None

    def __post_init__(self):
        if (self.state is None) == (self.error is None):
            raise ValueError("FetchOutcome needs exactly one of state or error")

    @property
    def ok(self) -> bool:
        return self.error is None


class LogFetcher:
    """Fetches error lines from the CI logs of failing checks.

    ``is_failing`` decides which checks are worth a download (default:
    CheckInfo.is_failed). ``session`` lets callers share or fake the HTTP
    session; when omitted one is built lazily on the first download and
    closed by close().
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        *,
        session: requests.Session | None = None,
        patterns: PatternTable | None = None,
        is_failing: Callable[[CheckInfo], bool] | None = None,
        prow_hosts: Iterable[str] = (),
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        if timeout <= 0 or connect_timeout <= 0:
            raise ValueError("timeouts must be positive")

        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._session = session
        self._owns_session = session is None
        self._patterns = patterns if patterns is not None else PatternTable.default()
        self._is_failing = is_failing or CheckInfo.is_failed
        self._prow_hosts = tuple(prow_hosts)

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = build_session(self.max_concurrent)
        return self._session

    def close(self) -> None:
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> LogFetcher:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def collect_tasks(self, prs: Iterable[PullRequest]) -> list[FetchTask]:
        """One FetchTask per failing check whose URL resolves to a raw log."""
        tasks = []
        for pr in prs:
            for check in pr.checks:
                if not check.url or not self._is_failing(check):
                    continue
                log_url = resolve(check.url, self._prow_hosts)
                if log_url is None:
                    logger.debug("No fetchable log for PR %d check %r: %s", pr.number, check.name, check.url)
                    continue
                ref = CheckRef(pr_number=pr.number, check_name=check.name, check_url=check.url)
                tasks.append(FetchTask(pr_number=pr.number, check=ref, log_url=log_url))
        return tasks

    def fetch_logs_for_prs(self, prs: Sequence[PullRequest]) -> list[PrResult]:
        """Fetch error logs for ``prs``; one PrResult per PR, in input order."""
        results = {pr.number: PrResult(pr=pr) for pr in prs}

        tasks = self.collect_tasks(prs)
        if tasks:
            session = self.session
            workers = min(self.max_concurrent, len(tasks))
            logger.debug(
                "Fetching %d log(s) with %d worker(s), %d error patterns", len(tasks), workers, len(self._patterns)
            )
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="log-fetch") as executor:
                futures = [executor.submit(self._run_task, session, task) for task in tasks]
                for future in as_completed(futures):
                    outcome = future.result()
                    self._record(results[outcome.task.pr_number], outcome)

        return [results[pr.number] for pr in prs]

    # ------------------------------------------------------------------ #
    # Worker side                                                          #
    # ------------------------------------------------------------------ #

    def _run_task(self, session: requests.Session, task: FetchTask) -> FetchOutcome:
        try:
            state = self._stream_log(session, task)
        except Exception as e:
            logger.debug("Log fetch failed for PR %d check %r: %s", task.pr_number, task.check.check_name, e)
            return FetchOutcome(task=task, error=e)
        return FetchOutcome(task=task, state=state)

    def _stream_log(self, session: requests.Session, task: FetchTask) -> TaskState:
        url = str(task.log_url)
        deadline = time.monotonic() + self.timeout
        state = TaskState(check_name=task.check.check_name, patterns=self._patterns)

        with session.get(url, stream=True, timeout=(self.connect_timeout, self.timeout)) as response:
            if not 200 <= response.status_code < 300:
                raise HTTPStatusError(response.status_code, url)
            # Raw logs are usually served as text/plain without a charset.
            if response.encoding is None or "charset" not in response.headers.get("Content-Type", ""):
                response.encoding = "utf-8"
            for line in iter_log_lines(response):
                if not state.consume(line):
                    break
                if time.monotonic() > deadline:
                    raise FetchTimeout(f"gave up reading {url} after {self.timeout:g}s")

        return state

    # ------------------------------------------------------------------ #
    # Aggregation (consumer thread only)                                   #
    # ------------------------------------------------------------------ #

    def _record(self, result: PrResult, outcome: FetchOutcome) -> None:
        task = outcome.task
        if not outcome.ok:
            result.fetch_errors.append(
                FetchError(
                    pr_number=task.pr_number,
                    check_name=task.check.check_name,
                    check_url=task.check.check_url,
                    log_url=task.log_url,
                    error=outcome.error,
                )
            )
            return

        state = outcome.state
        if state.pattern_matches:
            logger.debug(
                "Error pattern match statistics: pr=%d check=%r total_errors=%d total_lines=%d patterns=%s",
                task.pr_number,
                state.check_name,
                state.error_count,
                state.line_count,
                dict(state.pattern_matches),
            )
        if state.error_lines:
            result.logs[state.check_name] = state.error_lines
