"""Helpers shared by the list and logs commands."""

from __future__ import annotations

import functools

import click
from github import GithubException

from autoprat_core.filters import PrFilters
from autoprat_core.gh.pull_request import fetch_pull_requests, get_repo
from autoprat_core.models import PullRequest


def _require_token(config: dict) -> str:
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    return token


def open_repo(config: dict, repo: str):
    """Return the PyGithub repository, turning GitHub failures into ClickExceptions."""
    token = _require_token(config)
    try:
        return get_repo(repo, token=token)
    except GithubException as e:
        raise click.ClickException(f"GitHub request for {repo} failed: {e}") from e


def load_pull_requests(
    config: dict, repo: str, pr_numbers: tuple[int, ...], include_comments: bool = False
) -> list[PullRequest]:
    """Fetch PR records for ``repo``, turning GitHub failures into ClickExceptions."""
    this_repo = open_repo(config, repo)
    try:
        return fetch_pull_requests(repo, this_repo, list(pr_numbers) or None, include_comments=include_comments)
    except GithubException as e:
        raise click.ClickException(f"GitHub request for {repo} failed: {e}") from e


_FILTER_OPTIONS = [
    click.option("--needs-approve", is_flag=True, help="Missing the 'approved' label."),
    click.option("--needs-lgtm", is_flag=True, help="Missing the 'lgtm' label."),
    click.option("--needs-ok-to-test", is_flag=True, help="Has the 'needs-ok-to-test' label."),
    click.option("--failing-ci", "--failing", "failing_ci", is_flag=True, help="Has at least one failing check."),
    click.option("--author", "-a", default=None, metavar="USERNAME", help="Exact author match (bots by short name)."),
    click.option(
        "--label", "labels", multiple=True, metavar="NAME", help="Has label (prefix with - to negate, repeatable)."
    ),
    click.option(
        "--failing-check", "failing_checks", multiple=True, metavar="NAME", help="Named check is failing (repeatable)."
    ),
    click.option("--title", "-t", default=None, help="Title contains TEXT (case-sensitive)."),
]


def filter_options(f):
    """Add the PR filter flags to a command and pass them on as one ``filters`` argument."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        filters = PrFilters(
            needs_approve=kwargs.pop("needs_approve"),
            needs_lgtm=kwargs.pop("needs_lgtm"),
            needs_ok_to_test=kwargs.pop("needs_ok_to_test"),
            failing_ci=kwargs.pop("failing_ci"),
            author=kwargs.pop("author"),
            labels=tuple(kwargs.pop("labels")),
            failing_checks=tuple(kwargs.pop("failing_checks")),
            title=kwargs.pop("title"),
        )
        return f(*args, filters=filters, **kwargs)

    for option in reversed(_FILTER_OPTIONS):
        wrapper = option(wrapper)
    return wrapper
