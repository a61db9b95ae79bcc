from __future__ import annotations

from github import Auth, Github

from autoprat_core.models import CheckInfo, CommentInfo, PullRequest

_UNKNOWN_CHECK = "Unknown Check"
_UNKNOWN_STATUS = "Unknown Status"


def get_repo(repo_name: str, token: str):
    return Github(auth=Auth.Token(token)).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_pull_requests(repo, state: str = "open"):
    return repo.get_pulls(state=state)


def get_checks(repo, pr) -> list[CheckInfo]:
    """Return check runs and legacy status contexts for the PR's head commit."""
    commit = repo.get_commit(pr.head.sha)
    checks = [
        CheckInfo(
            name=run.name or _UNKNOWN_CHECK,
            conclusion=run.conclusion,
            status=run.status,
            url=run.details_url or run.html_url,
        )
        for run in commit.get_check_runs()
    ]
    checks.extend(
        CheckInfo(
            name=status.context or _UNKNOWN_STATUS,
            state=status.state,
            url=status.target_url,
        )
        for status in commit.get_combined_status().statuses
    )
    return checks


def get_comments(pr) -> list[CommentInfo]:
    return [CommentInfo(body=c.body or "", created_at=c.created_at) for c in pr.get_issue_comments()]


def to_pull_request(repo_name: str, repo, pr, include_comments: bool = False) -> PullRequest:
    """Convert a PyGithub pull request into a PullRequest record with its checks.

    Issue comments cost one extra API call per PR and are only read when
    ``include_comments`` is set.
    """
    return PullRequest(
        repo=repo_name,
        number=pr.number,
        title=pr.title or "",
        url=pr.html_url,
        author=pr.user.login if pr.user else "",
        labels=[label.name for label in pr.labels],
        created_at=pr.created_at,
        checks=get_checks(repo, pr),
        comments=get_comments(pr) if include_comments else [],
    )


def fetch_pull_requests(
    repo_name: str, repo, numbers: list[int] | None = None, include_comments: bool = False
) -> list[PullRequest]:
    """Fetch the given PRs (or every open PR) as PullRequest records, in order."""
    pulls = [get_pull(repo, n) for n in numbers] if numbers else list(get_pull_requests(repo))
    return [to_pull_request(repo_name, repo, pr, include_comments) for pr in pulls]


def post_comment(repo, pr_number: int, body: str):
    return get_pull(repo, pr_number).create_issue_comment(body)


def close_pull(repo, pr_number: int) -> None:
    get_pull(repo, pr_number).edit(state="closed")
