"""Pull request, check and log-fetch data models.

PullRequest and CheckInfo are produced by the GitHub layer (or built by hand
in tests) and are read-only inputs to the log fetcher. The remaining types are
created fresh for each fetch_logs_for_prs() call and handed to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlsplit

from autoprat_core.errors import InvalidLogURL

# Check-run conclusions and status-context states that count as a failing check.
FAILING_CONCLUSIONS = frozenset({"failure", "cancelled", "timed_out"})
FAILING_STATES = frozenset({"failure", "error"})


@dataclass(frozen=True)
class CheckInfo:
    """A single CI check attached to a pull request.

    Check runs carry ``status`` and ``conclusion``; legacy status contexts
    carry ``state`` only. All values are lowercase GitHub strings.
    """

    name: str
    conclusion: str | None = None
    status: str | None = None
    state: str | None = None
    url: str | None = None

    def is_failed(self) -> bool:
        return self.conclusion in FAILING_CONCLUSIONS or self.state in FAILING_STATES

    @property
    def is_status_context(self) -> bool:
        return self.conclusion is None and self.status is None and self.state is not None


@dataclass(frozen=True)
class CommentInfo:
    """An issue comment on a pull request, used to throttle repeated bot commands."""

    body: str
    created_at: datetime


@dataclass
class PullRequest:
    repo: str
    number: int
    title: str
    url: str
    author: str = ""
    labels: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    checks: list[CheckInfo] = field(default_factory=list)
    comments: list[CommentInfo] = field(default_factory=list)


@dataclass(frozen=True)
class CheckRef:
    """Identifies a CI check: which PR, which check, and where it points."""

    pr_number: int
    check_name: str
    check_url: str

    def __post_init__(self):
        if not self.check_name:
            raise ValueError("check name must not be empty")


@dataclass(frozen=True)
class LogURL:
    """An http(s) URL pointing at a raw, directly fetchable build log.

    Build one with LogURL.parse(); the resolver is the only caller.
    """

    value: str

    @classmethod
    def parse(cls, raw: str) -> LogURL:
        try:
            parts = urlsplit(raw)
        except ValueError as e:
            raise InvalidLogURL(f"not a URL: {raw!r}") from e
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise InvalidLogURL(f"not an absolute http(s) URL: {raw!r}")
        return cls(raw)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FetchTask:
    pr_number: int
    check: CheckRef
    log_url: LogURL


@dataclass
class FetchError:
    """A failed log download with enough context to report it as-is."""

    pr_number: int
    check_name: str
    check_url: str
    log_url: LogURL
    error: Exception

    def __str__(self) -> str:
        return f"PR {self.pr_number} check '{self.check_name}' ({self.check_url}): {self.log_url} -> {self.error}"


@dataclass
class PrResult:
    """Error logs and fetch failures gathered for one pull request."""

    pr: PullRequest
    logs: dict[str, list[str]] = field(default_factory=dict)
    fetch_errors: list[FetchError] = field(default_factory=list)
