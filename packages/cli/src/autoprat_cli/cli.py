"""CLI entry point for autoprat.

Commands:
  list  : table of pull requests with their CI status
  logs  : error lines extracted from the CI logs of failing checks
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from autoprat_cli.commands.list_prs import list_cmd
from autoprat_cli.commands.logs import logs_cmd


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # urllib3 logs every retry and pooled connection at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.INFO if verbose else logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("autoprat"),
    prog_name="autoprat",
)
@click.option(
    "--config",
    "config_path",
    default=".autoprat.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="AUTOPRAT_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output (including pattern match statistics).")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Find pull requests of interest and pull error lines out of their failing CI logs."""
    from autoprat_cli.auth import resolve_github_token
    from autoprat_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    token = resolve_github_token()
    if token:
        config["github_token"] = token

    ctx.obj["config"] = config


main.add_command(list_cmd)
main.add_command(logs_cmd)
