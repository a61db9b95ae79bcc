"""Pull request filters.

Every filter is a predicate over a PullRequest. PrFilters combines the ones a
caller asked for; a PR is kept only when all of them hold.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from autoprat_core.models import PullRequest

APPROVED = "approved"
LGTM = "lgtm"
NEEDS_OK_TO_TEST = "needs-ok-to-test"

BOT_SUFFIX = "[bot]"


def has_label(pr: PullRequest, label: str) -> bool:
    return label in pr.labels


def needs_approve(pr: PullRequest) -> bool:
    return not has_label(pr, APPROVED)


def needs_lgtm(pr: PullRequest) -> bool:
    return not has_label(pr, LGTM)


def needs_ok_to_test(pr: PullRequest) -> bool:
    return has_label(pr, NEEDS_OK_TO_TEST)


def has_failing_ci(pr: PullRequest) -> bool:
    return any(check.is_failed() for check in pr.checks)


def has_failing_check(pr: PullRequest, check_name: str) -> bool:
    """True if a check named exactly ``check_name`` is failing."""
    return any(check.name == check_name and check.is_failed() for check in pr.checks)


def matches_labels(pr: PullRequest, labels: Iterable[str]) -> bool:
    """Every label must be present; a ``-name`` entry must be absent instead."""
    for label in labels:
        if label.startswith("-"):
            if has_label(pr, label[1:]):
                return False
        elif not has_label(pr, label):
            return False
    return True


def author_search_name(login: str) -> str:
    """The name GitHub search uses for ``login``: ``app/<name>`` for bot accounts."""
    if login.endswith(BOT_SUFFIX):
        return f"app/{login[: -len(BOT_SUFFIX)]}"
    return login


def matches_author(pr: PullRequest, author: str) -> bool:
    """Exact author match that also accepts bot accounts by their short name.

    ``dependabot``, ``dependabot[bot]`` and ``app/dependabot`` all select PRs
    opened by ``dependabot[bot]``.
    """
    login = pr.author
    search_name = author_search_name(login)
    return (
        login == author
        or search_name == author
        or (login.startswith(f"{author}[") and login.endswith("]"))
        or search_name == f"app/{author}"
    )


def title_contains(pr: PullRequest, text: str) -> bool:
    return text in pr.title


@dataclass(frozen=True)
class PrFilters:
    needs_approve: bool = False
    needs_lgtm: bool = False
    needs_ok_to_test: bool = False
    failing_ci: bool = False
    author: str | None = None
    labels: tuple[str, ...] = ()
    failing_checks: tuple[str, ...] = ()
    title: str | None = None

    def matches(self, pr: PullRequest) -> bool:
        if self.needs_approve and not needs_approve(pr):
            return False
        if self.needs_lgtm and not needs_lgtm(pr):
            return False
        if self.needs_ok_to_test and not needs_ok_to_test(pr):
            return False
        if self.failing_ci and not has_failing_ci(pr):
            return False
        if self.author and not matches_author(pr, self.author):
            return False
        if not matches_labels(pr, self.labels):
            return False
        if not all(has_failing_check(pr, name) for name in self.failing_checks):
            return False
        if self.title and not title_contains(pr, self.title):
            return False
        return True

    def apply(self, prs: Sequence[PullRequest]) -> list[PullRequest]:
        return [pr for pr in prs if self.matches(pr)]
