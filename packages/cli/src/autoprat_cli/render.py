"""rich renderables for pull request tables and check trees."""

from __future__ import annotations

from datetime import datetime, timezone

from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from autoprat_core.ci_status import FAILURE, PENDING, SUCCESS, format_ci_status, summarize_checks
from autoprat_core.models import CheckInfo, PrResult, PullRequest

_STATUS_STYLE = {FAILURE: "red", PENDING: "yellow", SUCCESS: "green"}

# Group order in the check tree.
_GROUPS = ("FAILURE", "PENDING", "SUCCESS")
_GROUP_STYLE = {"FAILURE": "red", "PENDING": "yellow", "SUCCESS": "green"}


def format_age(created_at: datetime | None, now: datetime | None = None) -> str:
    """Compact relative age: 45s, 12m, 5h, 3d."""
    if created_at is None:
        return ""
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    seconds = max(0, int((now - created_at).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def check_group(check: CheckInfo) -> str:
    if check.is_failed():
        return "FAILURE"
    if check.conclusion == "success" or check.state == "success":
        return "SUCCESS"
    return "PENDING"


def build_pr_table(prs: list[PullRequest], ignore_pending_status_contexts: bool = True) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", no_wrap=True)
    table.add_column("CI", no_wrap=True)
    table.add_column("Author", no_wrap=True)
    table.add_column("Age", justify="right", no_wrap=True)
    table.add_column("Title")

    for pr in prs:
        summary = summarize_checks(pr.checks, ignore_pending_status_contexts)
        style = _STATUS_STYLE.get(summary.status, "white")
        table.add_row(
            f"#{pr.number}",
            f"[{style}]{escape(format_ci_status(summary))}[/{style}]",
            escape(pr.author),
            format_age(pr.created_at),
            escape(pr.title),
        )
    return table


def build_pr_tree(result: PrResult, ignore_pending_status_contexts: bool = True) -> Tree:
    """PR heading, then checks grouped by outcome, with error lines under failures."""
    pr = result.pr
    summary = summarize_checks(pr.checks, ignore_pending_status_contexts)
    tree = Tree(f"[bold]#{pr.number}[/bold] {escape(pr.title)}  [dim]{escape(format_ci_status(summary))}[/dim]")
    tree.add(f"[dim]{escape(pr.url)}[/dim]")

    checks_node = tree.add("Checks")
    if not pr.checks:
        checks_node.add("None")
        return tree

    grouped: dict[str, list[CheckInfo]] = {}
    for check in pr.checks:
        grouped.setdefault(check_group(check), []).append(check)

    for group in _GROUPS:
        checks = grouped.get(group)
        if not checks:
            continue
        style = _GROUP_STYLE[group]
        group_node = checks_node.add(f"[{style}]{group}[/{style}] ({len(checks)})")
        for check in checks:
            check_node = group_node.add(escape(check.name))
            if check.url:
                check_node.add(f"URL: {escape(check.url)}")
            error_lines = result.logs.get(check.name) if group == "FAILURE" else None
            for line in error_lines or []:
                check_node.add(f"[red]{escape(line)}[/red]")

    return tree
