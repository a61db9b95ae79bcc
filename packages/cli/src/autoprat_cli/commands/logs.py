"""logs command: extract error lines from the CI logs of failing checks."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

from autoprat_cli.commands._shared import filter_options, load_pull_requests
from autoprat_cli.render import build_pr_tree
from autoprat_core.config import validate_config
from autoprat_core.logs.fetcher import LogFetcher
from autoprat_core.logs.patterns import PatternTable

console = Console()


@click.command("logs")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_numbers", type=int, multiple=True, help="Pull request number (repeatable). Default: all open PRs.")
@filter_options
@click.option("--concurrency", type=int, default=None, help="Max simultaneous log downloads. Overrides config file.")
@click.option("--timeout", "request_timeout", type=float, default=None, help="Per-request timeout in seconds.")
@click.option("--connect-timeout", type=float, default=None, help="Connection timeout in seconds.")
@click.pass_context
def logs_cmd(
    ctx,
    repo: str,
    pr_numbers: tuple[int, ...],
    filters,
    concurrency: int | None,
    request_timeout: float | None,
    connect_timeout: float | None,
):
    """Show error lines from the CI logs of failing checks.

    Logs are fetched for checks whose URL points at a raw log or a Prow job
    view. Checks on other providers are listed without logs. A download that
    fails is reported as a warning and does not hide the other results.
    """
    config = dict(ctx.obj["config"])
    overrides = {"concurrency": concurrency, "request_timeout": request_timeout, "connect_timeout": connect_timeout}
    config.update({k: v for k, v in overrides.items() if v is not None})

    try:
        validate_config(config)
        patterns = PatternTable.default(config.get("error_patterns"))
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    prs = filters.apply(load_pull_requests(config, repo, pr_numbers))
    if not prs:
        console.print("[yellow]No matching pull requests found.[/yellow]")
        return

    with LogFetcher(
        max_concurrent=config["concurrency"],
        timeout=float(config["request_timeout"]),
        connect_timeout=float(config["connect_timeout"]),
        patterns=patterns,
        prow_hosts=config.get("prow_hosts") or (),
    ) as fetcher:
        results = fetcher.fetch_logs_for_prs(prs)

    ignore_pending = config.get("ignore_pending_status_contexts", True)
    for result in results:
        console.print(build_pr_tree(result, ignore_pending))
        for fetch_error in result.fetch_errors:
            console.print(f"[yellow]Warning: could not fetch log: {escape(str(fetch_error))}[/yellow]")
        console.print()
