"""GitHub token resolution with gh CLI fallback.

Resolution order (stops at first success):
  1. GITHUB_TOKEN environment variable
  2. `gh auth token` (GitHub CLI session, after `gh auth login`)

The token is only used for GitHub API calls that list pull requests and their
checks. CI log hosts are fetched anonymously.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

_GH_TIMEOUT_SECONDS = 5


def resolve_github_token() -> str | None:
    """Return a GitHub token or None if no source is available.

    Never raises; callers turn None into a UsageError.
    """
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=_GH_TIMEOUT_SECONDS,
        )
    except FileNotFoundError:
        logger.debug("gh CLI not installed; no fallback token.")
        return None
    except subprocess.TimeoutExpired:
        logger.debug("`gh auth token` timed out after %ds.", _GH_TIMEOUT_SECONDS)
        return None

    if result.returncode == 0 and result.stdout.strip():
        logger.debug("Resolved GitHub token via gh CLI session.")
        return result.stdout.strip()
    return None
