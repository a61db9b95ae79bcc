"""Exceptions raised while fetching CI build logs.

Every one of these is caught inside a log-fetch worker and recorded as a
FetchError on the owning PrResult. None of them escape fetch_logs_for_prs().
"""

from __future__ import annotations


class LogFetchError(Exception):
    """Base class for failures scoped to a single log download."""


class HTTPStatusError(LogFetchError):
    """The log host answered with a non-success status."""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} from {url}")
        self.status_code = status_code
        self.url = url


class FetchTimeout(LogFetchError):
    """The overall per-request deadline expired while streaming the body."""


class InvalidLogURL(ValueError):
    """A string that is not an absolute http(s) URL was offered as a log URL."""
