"""Bulk bot actions on pull requests.

An Action is a Prow-style bot command (``/approve``, ``/lgtm``...) or a
custom comment, guarded by a predicate so it is only planned for PRs that
need it. plan_actions() turns PRs and actions into PlannedActions, which can
be printed as ``gh`` commands or posted through the GitHub API.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from autoprat_core import filters
from autoprat_core.models import CommentInfo, PullRequest

logger = logging.getLogger(__name__)

_THROTTLE_RE = re.compile(r"^(\d+)([smh]?)$")
_THROTTLE_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "": "minutes"}


def _always(pr: PullRequest) -> bool:
    return True


@dataclass(frozen=True)
class Action:
    """A command to run against a PR. ``comment`` is None for close."""

    name: str
    comment: str | None
    only_if: Callable[[PullRequest], bool] = _always


APPROVE = Action("approve", "/approve", only_if=filters.needs_approve)
LGTM = Action("lgtm", "/lgtm", only_if=filters.needs_lgtm)
OK_TO_TEST = Action("ok-to-test", "/ok-to-test", only_if=filters.needs_ok_to_test)
RETEST = Action("retest", "/retest")
CLOSE = Action("close", None)


def comment_action(text: str) -> Action:
    return Action("comment", text)


def select_actions(
    approve: bool = False,
    lgtm: bool = False,
    ok_to_test: bool = False,
    retest: bool = False,
    comments: Iterable[str] = (),
    close: bool = False,
) -> list[Action]:
    """Requested actions in execution order: bot commands, custom comments, close."""
    flags = ((approve, APPROVE), (lgtm, LGTM), (ok_to_test, OK_TO_TEST), (retest, RETEST))
    selected = [action for enabled, action in flags if enabled]
    selected.extend(comment_action(text) for text in comments)
    if close:
        selected.append(CLOSE)
    return selected


def parse_throttle(value: str) -> timedelta:
    """Parse ``30s``, ``5m``, ``2h`` or a bare number of minutes."""
    match = _THROTTLE_RE.match(value.strip())
    if not match:
        raise ValueError(
            f"Invalid throttle format '{value}'. Supported formats: unitless number (minutes), '30s', '5m', '2h'"
        )
    amount, unit = match.groups()
    return timedelta(**{_THROTTLE_UNITS[unit]: int(amount)})


def _aware(moment: datetime) -> datetime:
    # PyGithub returns naive UTC datetimes in older releases.
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def recently_posted(body: str, comments: Iterable[CommentInfo], window: timedelta, now: datetime) -> bool:
    """True if a comment with the same text was posted within ``window`` of ``now``."""
    cutoff = _aware(now) - window
    text = body.strip()
    return any(_aware(c.created_at) > cutoff and c.body.strip() == text for c in comments)


@dataclass(frozen=True)
class PlannedAction:
    repo: str
    pr_number: int
    action: Action

    @property
    def comment(self) -> str | None:
        return self.action.comment

    @property
    def command(self) -> str:
        """The equivalent ``gh`` CLI command."""
        if self.comment is None:
            return f"gh pr close {self.pr_number} --repo {self.repo}"
        return f'gh pr comment {self.pr_number} --repo {self.repo} --body "{self.comment}"'


def plan_actions(
    prs: Sequence[PullRequest],
    actions: Sequence[Action],
    throttle: timedelta | None = None,
    now: datetime | None = None,
) -> list[PlannedAction]:
    """Plan ``actions`` for each PR, in PR order then action order.

    An action is skipped when its guard rejects the PR, or when ``throttle``
    is set and the same comment appears among the PR's recent comments.
    """
    now = now or datetime.now(timezone.utc)
    planned = []
    for pr in prs:
        for action in actions:
            if not action.only_if(pr):
                logger.debug("Skipping %s on PR %d: not applicable", action.name, pr.number)
                continue
            if (
                throttle is not None
                and action.comment is not None
                and recently_posted(action.comment, pr.comments, throttle, now)
            ):
                logger.debug("Skipping %s on PR %d: posted within the last %s", action.name, pr.number, throttle)
                continue
            planned.append(PlannedAction(repo=pr.repo, pr_number=pr.number, action=action))
    return planned
