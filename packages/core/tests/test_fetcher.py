"""Tests for the concurrent log fetcher.

The HTTP session is replaced by an in-memory fake so no test touches the
network. FakeResponse mimics the small part of requests.Response the fetcher
uses: status_code, headers, encoding, iter_content() and the context manager.
Line splitting is also exercised against real requests.Response objects.
"""

from __future__ import annotations

import io
import logging
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests
from urllib3.util.retry import RequestHistory

from autoprat_core.errors import FetchTimeout, HTTPStatusError
from autoprat_core.logs.fetcher import (
    RETRY_BACKOFF_MAX,
    RETRY_BACKOFF_MIN,
    RETRY_TOTAL,
    FetchOutcome,
    LogFetcher,
    build_session,
    iter_log_lines,
)
from autoprat_core.logs.task_state import TRUNCATION_MARKER
from autoprat_core.models import CheckInfo, PullRequest

STORAGE = "https://storage.googleapis.com"


class FakeResponse:
    """Serves ``body`` one line per chunk, newline included."""

    def __init__(self, status_code=200, body="", content_type="text/plain", fail_after=None, on_close=None):
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}
        self.encoding = None
        self.chunks_read = 0
        self._chunks = body.splitlines(keepends=True)
        self._fail_after = fail_after
        self._on_close = on_close

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        if self._on_close:
            self._on_close()
        return False

    def iter_content(self, chunk_size=1, decode_unicode=False):
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead")
            self.chunks_read += 1
            yield chunk


def real_response(payload: bytes, content_type="text/plain"):
    """A real requests.Response over ``payload``, with the encoding the adapter would set."""
    response = requests.Response()
    response.status_code = 200
    response.headers["Content-Type"] = content_type
    response.raw = io.BytesIO(payload)
    response.encoding = requests.utils.get_encoding_from_headers(response.headers)
    return response


class FakeSession:
    """Maps URL -> FakeResponse (or an exception to raise)."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append((url, kwargs))
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


def failing_check(name, path):
    return CheckInfo(name=name, conclusion="failure", status="completed", url=f"{STORAGE}/{path}")


def make_pr(number, checks):
    return PullRequest(
        repo="org/repo",
        number=number,
        title=f"PR {number}",
        url=f"https://github.com/org/repo/pull/{number}",
        checks=checks,
    )


class TestCollectTasks:
    def test_only_failing_checks_with_resolvable_urls(self):
        pr = make_pr(
            1,
            [
                failing_check("unit", "b/unit/build-log.txt"),
                CheckInfo(name="lint", conclusion="success", url=f"{STORAGE}/b/lint/build-log.txt"),
                CheckInfo(name="gha", conclusion="failure", url="https://github.com/org/repo/actions/runs/1"),
                CheckInfo(name="bot", state="failure", url="https://github.com/org/repo/pull/1#issuecomment-9"),
                CheckInfo(name="no-url", conclusion="failure"),
            ],
        )
        tasks = LogFetcher(session=MagicMock()).collect_tasks([pr])
        assert [t.check.check_name for t in tasks] == ["unit"]
        assert str(tasks[0].log_url) == f"{STORAGE}/b/unit/build-log.txt"
        assert tasks[0].check.check_url == f"{STORAGE}/b/unit/build-log.txt"

    def test_prow_check_becomes_task(self):
        pr = make_pr(
            7, [CheckInfo(name="e2e", state="error", url="https://prow.ci.example/view/gs/bucket/job/123")]
        )
        tasks = LogFetcher(session=MagicMock()).collect_tasks([pr])
        assert str(tasks[0].log_url) == f"{STORAGE}/bucket/job/123/build-log.txt"

    def test_custom_failing_predicate(self):
        pr = make_pr(1, [CheckInfo(name="tide", state="pending", url=f"{STORAGE}/b/tide/log.txt")])
        fetcher = LogFetcher(session=MagicMock(), is_failing=lambda check: check.state == "pending")
        assert len(fetcher.collect_tasks([pr])) == 1


class TestFetchLogsForPrs:
    def test_extracts_error_lines(self):
        pr = make_pr(1, [failing_check("unit", "b/unit")])
        session = FakeSession({f"{STORAGE}/b/unit": FakeResponse(body="INFO starting\nERROR: build failed\nINFO done\n")})

        [result] = LogFetcher(session=session).fetch_logs_for_prs([pr])

        assert result.pr is pr
        assert result.logs == {"unit": ["ERROR: build failed"]}
        assert result.fetch_errors == []

    def test_request_uses_stream_and_both_timeouts(self):
        pr = make_pr(1, [failing_check("unit", "b/unit")])
        session = FakeSession({f"{STORAGE}/b/unit": FakeResponse(body="error: x")})

        LogFetcher(timeout=12.0, connect_timeout=3.0, session=session).fetch_logs_for_prs([pr])

        [(url, kwargs)] = session.calls
        assert url == f"{STORAGE}/b/unit"
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == (3.0, 12.0)

    def test_defaults_to_utf8_without_charset(self):
        response = FakeResponse(body="error: x")
        pr = make_pr(1, [failing_check("unit", "b/unit")])
        LogFetcher(session=FakeSession({f"{STORAGE}/b/unit": response})).fetch_logs_for_prs([pr])
        assert response.encoding == "utf-8"

    def test_clean_log_populates_nothing(self):
        pr = make_pr(1, [failing_check("unit", "b/unit")])
        session = FakeSession({f"{STORAGE}/b/unit": FakeResponse(body="INFO all good\n")})

        [result] = LogFetcher(session=session).fetch_logs_for_prs([pr])

        assert result.logs == {}
        assert result.fetch_errors == []

    def test_stops_reading_after_error_cap(self):
        response = FakeResponse(body="panic: boom\n" * 25)
        pr = make_pr(1, [failing_check("unit", "b/unit")])

        [result] = LogFetcher(session=FakeSession({f"{STORAGE}/b/unit": response})).fetch_logs_for_prs([pr])

        lines = result.logs["unit"]
        assert len(lines) == 21
        assert lines[-1] == TRUNCATION_MARKER
        assert response.chunks_read == 20

    def test_no_tasks_means_no_network(self):
        session = MagicMock()
        prs = [
            make_pr(1, []),
            make_pr(2, [CheckInfo(name="lint", conclusion="success", url=f"{STORAGE}/b/lint")]),
            make_pr(3, [CheckInfo(name="bot", state="failure", url="https://github.com/o/r/pull/3#issuecomment-1")]),
        ]

        results = LogFetcher(session=session).fetch_logs_for_prs(prs)

        assert [r.pr.number for r in results] == [1, 2, 3]
        assert all(r.logs == {} and r.fetch_errors == [] for r in results)
        session.get.assert_not_called()

    def test_no_tasks_does_not_build_a_session(self):
        fetcher = LogFetcher()
        fetcher.fetch_logs_for_prs([make_pr(1, [])])
        assert fetcher._session is None

    def test_issue_comment_check_absent_from_results(self):
        pr = make_pr(
            1,
            [
                failing_check("unit", "b/unit"),
                CheckInfo(name="bot", state="failure", url="https://github.com/o/r/pull/1#issuecomment-1"),
            ],
        )
        session = FakeSession({f"{STORAGE}/b/unit": FakeResponse(body="error: x")})

        [result] = LogFetcher(session=session).fetch_logs_for_prs([pr])

        assert "bot" not in result.logs
        assert all(e.check_name != "bot" for e in result.fetch_errors)
        assert len(session.calls) == 1

    def test_results_follow_input_order(self):
        prs = [make_pr(n, [failing_check(f"c{n}", f"b/{n}")]) for n in (5, 3, 9, 1)]
        session = FakeSession({f"{STORAGE}/b/{n}": FakeResponse(body=f"error: {n}") for n in (5, 3, 9, 1)})

        results = LogFetcher(max_concurrent=4, session=session).fetch_logs_for_prs(prs)

        assert [r.pr.number for r in results] == [5, 3, 9, 1]
        assert [r.logs for r in results] == [{"c5": ["error: 5"]}, {"c3": ["error: 3"]}, {"c9": ["error: 9"]}, {"c1": ["error: 1"]}]

    def test_pattern_statistics_logged_at_debug(self, caplog):
        pr = make_pr(4, [failing_check("unit", "b/unit")])
        session = FakeSession({f"{STORAGE}/b/unit": FakeResponse(body="panic: a\nINFO x\npanic: b\n")})

        with caplog.at_level(logging.DEBUG, logger="autoprat_core.logs.fetcher"):
            LogFetcher(session=session).fetch_logs_for_prs([pr])

        [message] = [r.getMessage() for r in caplog.records if "pattern match statistics" in r.getMessage()]
        assert "pr=4" in message
        assert "total_errors=2" in message
        assert "total_lines=3" in message
        assert "'panic-keyword': 2" in message

    def test_multiple_checks_on_one_pr(self):
        pr = make_pr(1, [failing_check("unit", "b/unit"), failing_check("e2e", "b/e2e")])
        session = FakeSession(
            {
                f"{STORAGE}/b/unit": FakeResponse(body="error: unit"),
                f"{STORAGE}/b/e2e": FakeResponse(body="fatal: e2e"),
            }
        )

        [result] = LogFetcher(session=session).fetch_logs_for_prs([pr])

        assert result.logs == {"unit": ["error: unit"], "e2e": ["fatal: e2e"]}


class TestLineSplitting:
    @pytest.fixture
    def small_chunks(self, mocker):
        mocker.patch("autoprat_core.logs.fetcher.STREAM_CHUNK_SIZE", 512)

    def _run(self, payload: bytes, content_type="text/plain"):
        pr = make_pr(1, [failing_check("unit", "b/unit")])
        fetcher = LogFetcher(session=MagicMock())
        [task] = fetcher.collect_tasks([pr])
        session = FakeSession({f"{STORAGE}/b/unit": real_response(payload, content_type)})
        return fetcher._run_task(session, task)

    def test_crlf_across_chunk_boundary_is_one_line_end(self, small_chunks):
        outcome = self._run(("a" * 511 + "\r\n").encode() * 3)
        assert outcome.ok
        assert outcome.state.line_count == 3

    def test_form_feed_does_not_split_a_line(self, small_chunks):
        outcome = self._run(b"step\x0cERROR: real failure in step\n")
        assert outcome.state.line_count == 1
        assert outcome.state.error_lines == ["step\x0cERROR: real failure in step"]

    def test_unicode_line_separators_stay_inside_the_line(self):
        outcome = self._run("fatal: one still one\x85and one\n".encode())
        assert outcome.state.line_count == 1
        assert outcome.state.error_lines == ["fatal: one still one\x85and one"]

    def test_multibyte_character_split_across_chunks(self, small_chunks):
        # "\u00e9" starts on byte 511, so its two bytes land in different chunks.
        outcome = self._run(("y" * 300 + "\n" + "x" * 210 + "\u00e9 error: caf\u00e9\n").encode())
        assert outcome.state.line_count == 2
        assert outcome.state.error_lines == ["x" * 210 + "\u00e9 error: caf\u00e9"]

    def test_declared_charset_is_used(self):
        outcome = self._run("error: Grüße\n".encode("latin-1"), content_type="text/plain; charset=ISO-8859-1")
        assert outcome.state.error_lines == ["error: Grüße"]

    def test_iter_log_lines_handles_missing_final_newline(self):
        response = real_response(b"one\r\ntwo\n\nthree")
        response.encoding = "utf-8"
        assert list(iter_log_lines(response)) == ["one", "two", "", "three"]

    def test_bare_carriage_return_kept_mid_line(self):
        response = real_response(b"progress 10%\rprogress 100%\n")
        response.encoding = "utf-8"
        assert list(iter_log_lines(response)) == ["progress 10%\rprogress 100%"]


class TestFailureIsolation:
    def test_one_http_error_does_not_affect_others(self):
        prs = [make_pr(n, [failing_check(f"c{n}", f"b/{n}")]) for n in range(1, 6)]
        responses = {f"{STORAGE}/b/{n}": FakeResponse(body=f"error: {n}") for n in range(1, 6)}
        responses[f"{STORAGE}/b/3"] = FakeResponse(status_code=404)

        results = LogFetcher(session=FakeSession(responses)).fetch_logs_for_prs(prs)

        errors = [e for r in results for e in r.fetch_errors]
        assert len(errors) == 1
        [error] = errors
        assert error.pr_number == 3
        assert error.check_name == "c3"
        assert error.check_url == f"{STORAGE}/b/3"
        assert str(error.log_url) == f"{STORAGE}/b/3"
        assert isinstance(error.error, HTTPStatusError)
        assert error.error.status_code == 404
        assert "HTTP 404" in str(error)
        for r in results:
            if r.pr.number != 3:
                assert r.logs == {f"c{r.pr.number}": [f"error: {r.pr.number}"]}
        assert results[2].logs == {}

    def test_transport_error_becomes_fetch_error(self):
        pr = make_pr(1, [failing_check("unit", "b/unit"), failing_check("e2e", "b/e2e")])
        session = FakeSession(
            {
                f"{STORAGE}/b/unit": requests.exceptions.ConnectionError("Max retries exceeded"),
                f"{STORAGE}/b/e2e": FakeResponse(body="error: e2e"),
            }
        )

        [result] = LogFetcher(session=session).fetch_logs_for_prs([pr])

        assert result.logs == {"e2e": ["error: e2e"]}
        assert len(result.fetch_errors) == 1
        assert isinstance(result.fetch_errors[0].error, requests.exceptions.ConnectionError)

    def test_broken_stream_discards_partial_lines(self):
        pr = make_pr(1, [failing_check("unit", "b/unit")])
        response = FakeResponse(body="error: one\nerror: two\nerror: three\n", fail_after=2)

        [result] = LogFetcher(session=FakeSession({f"{STORAGE}/b/unit": response})).fetch_logs_for_prs([pr])

        assert result.logs == {}
        assert len(result.fetch_errors) == 1
        assert isinstance(result.fetch_errors[0].error, requests.exceptions.ChunkedEncodingError)

    def test_overall_deadline_becomes_fetch_timeout(self, mocker):
        pr = make_pr(1, [failing_check("unit", "b/unit")])
        fetcher = LogFetcher(timeout=30.0, session=MagicMock())
        [task] = fetcher.collect_tasks([pr])
        session = FakeSession({f"{STORAGE}/b/unit": FakeResponse(body="error: one\nerror: two\nerror: three\n")})
        # deadline computed at t=0; first line read at t=1, second at t=100.
        clock = mocker.patch("autoprat_core.logs.fetcher.time")
        clock.monotonic.side_effect = [0.0, 1.0, 100.0]

        outcome = fetcher._run_task(session, task)

        assert not outcome.ok
        assert isinstance(outcome.error, FetchTimeout)
        assert outcome.state is None


class TestConcurrency:
    def test_in_flight_requests_never_exceed_limit(self):
        limit = 3
        lock = threading.Lock()
        in_flight = 0
        peak = 0

        def closed():
            nonlocal in_flight
            with lock:
                in_flight -= 1

        class TrackingSession:
            def get(self, url, **kwargs):
                nonlocal in_flight, peak
                with lock:
                    in_flight += 1
                    peak = max(peak, in_flight)
                time.sleep(0.02)
                return FakeResponse(body="error: x", on_close=closed)

        prs = [make_pr(n, [failing_check("unit", f"b/{n}")]) for n in range(12)]

        results = LogFetcher(max_concurrent=limit, session=TrackingSession()).fetch_logs_for_prs(prs)

        assert 1 <= peak <= limit
        assert all(r.logs == {"unit": ["error: x"]} for r in results)


class TestConstruction:
    @pytest.mark.parametrize("kwargs", [{"max_concurrent": 0}, {"timeout": 0}, {"connect_timeout": -1}])
    def test_invalid_settings_rejected(self, kwargs):
        with pytest.raises(ValueError):
            LogFetcher(**kwargs)

    def test_close_only_closes_owned_session(self):
        shared = MagicMock()
        LogFetcher(session=shared).close()
        shared.close.assert_not_called()

    def test_context_manager_closes_built_session(self, mocker):
        built = MagicMock()
        mocker.patch("autoprat_core.logs.fetcher.build_session", return_value=built)
        with LogFetcher() as fetcher:
            assert fetcher.session is built
        built.close.assert_called_once()


class TestFetchOutcome:
    def test_requires_exactly_one_of_state_or_error(self):
        task = MagicMock()
        with pytest.raises(ValueError):
            FetchOutcome(task=task)
        with pytest.raises(ValueError):
            FetchOutcome(task=task, state=MagicMock(), error=RuntimeError("x"))
        assert FetchOutcome(task=task, error=RuntimeError("x")).ok is False


class TestBuildSession:
    def _retry(self):
        return build_session().get_adapter(f"{STORAGE}/x").max_retries

    def test_retry_policy(self):
        retry = self._retry()
        assert retry.total == RETRY_TOTAL
        assert retry.backoff_max == RETRY_BACKOFF_MAX
        assert 503 in retry.status_forcelist
        assert 404 not in retry.status_forcelist
        assert "GET" in retry.allowed_methods
        assert retry.raise_on_status is False

    def test_backoff_has_a_floor(self):
        assert self._retry().get_backoff_time() == RETRY_BACKOFF_MIN

    def test_backoff_has_a_ceiling(self):
        history = tuple(RequestHistory("GET", "/x", None, 503, None) for _ in range(10))
        retry = self._retry().new(history=history)
        assert retry.get_backoff_time() == RETRY_BACKOFF_MAX
