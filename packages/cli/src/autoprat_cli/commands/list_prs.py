"""list command: show pull requests with their CI status, and optionally act on them."""

from __future__ import annotations

import logging

import click
from github import GithubException
from rich.console import Console
from rich.markup import escape

from autoprat_cli.commands._shared import filter_options, load_pull_requests, open_repo
from autoprat_cli.render import build_pr_table
from autoprat_core.actions import parse_throttle, plan_actions, select_actions
from autoprat_core.gh.pull_request import close_pull, post_comment

logger = logging.getLogger(__name__)

console = Console()


def _post(config: dict, repo: str, planned) -> None:
    this_repo = open_repo(config, repo)
    failed = 0
    for item in planned:
        try:
            if item.comment is None:
                close_pull(this_repo, item.pr_number)
            else:
                post_comment(this_repo, item.pr_number, item.comment)
        except GithubException as e:
            failed += 1
            logger.debug("%s failed", item.command, exc_info=True)
            console.print(f"[red]✗ {escape(item.command)}: {escape(str(e))}[/red]")
            continue
        console.print(f"[green]✓ {escape(item.command)}[/green]")

    if failed:
        raise click.ClickException(f"{failed} of {len(planned)} action(s) failed.")


@click.command("list")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_numbers", type=int, multiple=True, help="Pull request number (repeatable). Default: all open PRs.")
@filter_options
@click.option("--approve", is_flag=True, help="Comment /approve on PRs without the 'approved' label.")
@click.option("--lgtm", is_flag=True, help="Comment /lgtm on PRs without the 'lgtm' label.")
@click.option("--ok-to-test", is_flag=True, help="Comment /ok-to-test on PRs with the 'needs-ok-to-test' label.")
@click.option("--retest", is_flag=True, help="Comment /retest.")
@click.option("--comment", "-c", "comments", multiple=True, metavar="TEXT", help="Post a custom comment (repeatable).")
@click.option("--close", is_flag=True, help="Close the PRs.")
@click.option(
    "--throttle",
    default=None,
    metavar="DURATION",
    help="Skip a comment already posted within DURATION (30s, 5m, 2h; a bare number means minutes).",
)
@click.option("--post", is_flag=True, help="Perform the actions through the GitHub API instead of printing gh commands.")
@click.pass_context
def list_cmd(
    ctx,
    repo: str,
    pr_numbers: tuple[int, ...],
    filters,
    approve: bool,
    lgtm: bool,
    ok_to_test: bool,
    retest: bool,
    comments: tuple[str, ...],
    close: bool,
    throttle: str | None,
    post: bool,
):
    """List pull requests and summarise their CI checks.

    With action flags, print the matching `gh` commands for the selected PRs
    instead (or run them with --post). Bot commands are only issued where
    they apply, e.g. /lgtm is skipped on PRs that already carry the label.
    """
    config = ctx.obj["config"]
    ignore_pending = config.get("ignore_pending_status_contexts", True)

    try:
        window = parse_throttle(throttle) if throttle is not None else None
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    actions = select_actions(approve, lgtm, ok_to_test, retest, comments, close)

    if window is not None:
        prs = load_pull_requests(config, repo, pr_numbers, include_comments=True)
    else:
        prs = load_pull_requests(config, repo, pr_numbers)
    prs = filters.apply(prs)

    if not actions:
        if not prs:
            console.print("[yellow]No matching pull requests found.[/yellow]")
            return
        console.print(build_pr_table(prs, ignore_pending))
        return

    planned = plan_actions(prs, actions, throttle=window)
    if not planned:
        console.print("[yellow]No actions to perform.[/yellow]")
        return

    if post:
        _post(config, repo, planned)
    else:
        for item in planned:
            click.echo(item.command)
