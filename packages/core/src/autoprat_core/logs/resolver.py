"""Map a check's provider URL to a raw build-log URL.

This is an allow-list, not a guesser. A URL that matches none of the rules
below is simply not fetched; that is never reported as an error.

    https://prow.<host>/view/gs/<path>   -> https://storage.googleapis.com/<path>/build-log.txt
    https://github.com/.../actions/runs/ -> None (needs an authenticated API)
    anything containing "raw", or on
    storage.googleapis.com               -> unchanged
    anything with #issuecomment          -> None
    anything else                        -> None
"""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlsplit

from autoprat_core.errors import InvalidLogURL
from autoprat_core.models import LogURL

STORAGE_HOST = "storage.googleapis.com"
_PROW_VIEW_PREFIX = "/view/gs"


def _is_prow_host(host: str, extra_hosts: Iterable[str]) -> bool:
    return host.startswith("prow.") or host in extra_hosts


def _to_log_url(raw: str) -> LogURL | None:
    try:
        return LogURL.parse(raw)
    except InvalidLogURL:
        return None


def resolve(check_url: str | None, prow_hosts: Iterable[str] = ()) -> LogURL | None:
    """Return the raw log URL for ``check_url``, or None if it can't be fetched.

    ``prow_hosts`` names additional Prow front ends whose hostname does not
    start with ``prow.``.
    """
    if not check_url:
        return None
    try:
        parts = urlsplit(check_url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return None

    if _is_prow_host(host, prow_hosts) and "/view/gs/" in parts.path:
        bucket_path = parts.path.replace(_PROW_VIEW_PREFIX, "", 1).rstrip("/")
        return _to_log_url(f"https://{STORAGE_HOST}{bucket_path}/build-log.txt")

    if host == "github.com" and "/actions/runs/" in parts.path:
        return None

    if "raw" in check_url or host == STORAGE_HOST:
        return _to_log_url(check_url)

    # Comment permalinks (#issuecomment-...) and unknown providers.
    return None
