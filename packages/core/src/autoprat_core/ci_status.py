"""Roll a PR's checks up into a single CI status."""

from __future__ import annotations

from dataclasses import dataclass

from autoprat_core.models import CheckInfo

SUCCESS = "success"
FAILURE = "failure"
PENDING = "pending"
UNKNOWN = "unknown"

_QUEUED_RUN_STATUSES = {"queued", "waiting", "requested"}
_ACTIVE_RUN_STATUSES = {"in_progress", "pending"}


@dataclass
class CiSummary:
    queued: int = 0
    in_progress: int = 0
    pending: int = 0
    failed: int = 0
    cancelled: int = 0
    success: int = 0
    total: int = 0
    status: str = UNKNOWN

    @property
    def outstanding(self) -> int:
        return self.queued + self.in_progress + self.pending

    @property
    def completed(self) -> int:
        return self.success + self.failed + self.cancelled


def summarize_checks(checks: list[CheckInfo], ignore_pending_status_contexts: bool = True) -> CiSummary:
    """Count checks by outcome and derive the overall status.

    A status context that is still pending (tide and similar merge bots)
    usually gates merging rather than reporting CI, so by default it is left
    out of both the counts and the total.
    """
    summary = CiSummary()
    if not checks:
        return summary

    ignored = 0
    for check in checks:
        if check.status in _QUEUED_RUN_STATUSES:
            summary.queued += 1
            continue
        if check.status in _ACTIVE_RUN_STATUSES:
            summary.in_progress += 1
            continue

        if check.conclusion == "cancelled":
            summary.cancelled += 1
        elif check.conclusion in ("failure", "timed_out") or check.state in ("failure", "error"):
            summary.failed += 1
        elif check.conclusion == "success" or check.state == "success":
            summary.success += 1
        elif check.conclusion is None and check.state == "pending":
            if ignore_pending_status_contexts:
                ignored += 1
            else:
                summary.pending += 1
        elif check.conclusion == "action_required":
            summary.pending += 1
        elif check.status is None:
            summary.pending += 1

    summary.total = len(checks) - ignored

    if summary.outstanding:
        summary.status = PENDING
    elif summary.failed or summary.cancelled:
        summary.status = FAILURE
    elif summary.success:
        summary.status = SUCCESS
    return summary


def format_ci_status(summary: CiSummary) -> str:
    if summary.total == 0:
        return "Unknown"

    if summary.outstanding:
        parts = [f"S:{summary.success}", f"F:{summary.failed}"]
        if summary.cancelled:
            parts.append(f"C:{summary.cancelled}")
        if summary.in_progress:
            parts.append(f"X:{summary.in_progress}")
        if summary.queued:
            parts.append(f"Q:{summary.queued}")
        if summary.pending:
            parts.append(f"P:{summary.pending}")
        return f"{' '.join(parts)} ({summary.completed}/{summary.total})"

    if summary.status == FAILURE:
        bad = summary.failed + summary.cancelled
        if bad == summary.total:
            if summary.cancelled:
                return f"F:{summary.failed} C:{summary.cancelled}"
            return f"Failed ({summary.failed})"
        if summary.cancelled:
            return f"F:{summary.failed} C:{summary.cancelled} ({bad}/{summary.total})"
        return f"Failed: {summary.failed}/{summary.total}"

    if summary.status == SUCCESS:
        return "Success"
    return "Unknown"
