from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional

from django.utils import timezone

from .constants import (
    AUDIT_FIELD_STATUS,
    COLLECTED_STATUSES,
    PAID,
    PAID_PENDING_APPROVAL,
    PARTIALLY_PAID,
    PTP_FUTURE,
    PTP_NONE,
    PTP_OVERDUE,
    PTP_TODAY,
    PTP_TOMORROW,
    STATUSES,
    UNPAID,
)
from .filters import ptp_bucket

_PTP_COLUMNS = {
    PTP_OVERDUE: "overdue",
    PTP_TODAY: "today",
    PTP_TOMORROW: "tomorrow",
    PTP_FUTURE: "future",
    PTP_NONE: "no_ptp_set",
}

_PAYMENT_COLUMNS = {
    UNPAID: "unpaid",
    PARTIALLY_PAID: "partially_paid",
    PAID_PENDING_APPROVAL: "paid_pending_approval",
    PAID: "paid",
}


def status_counts(rows: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    counts = {"total": 0}
    counts.update({status: 0 for status in STATUSES})
    for row in rows:
        counts["total"] += 1
        status = row.get("status") or UNPAID
        counts[status] = counts.get(status, 0) + 1
    return counts


def _rm_name(row) -> str:
    return row.get("collection_rm") or row.get("rm_name") or "Unknown RM"


def _group_by_branch(rows, empty_stats, column_for, counts_key: Optional[str] = None) -> List[Dict[str, Any]]:
    """Per-branch totals and per-RM rows; ``counts_key`` nests the column counts under that key."""
    branches: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        branch_name = row.get("branch_name") or "Unknown Branch"
        rm_name = _rm_name(row)
        branch = branches.setdefault(
            branch_name,
            {"branch_name": branch_name, "total_stats": empty_stats(branch_name, branch_name), "rm_stats": {}},
        )
        rm_stats = branch["rm_stats"].setdefault(rm_name, empty_stats(rm_name, branch_name))
        column = column_for(row)
        for stats in (branch["total_stats"], rm_stats):
            stats["total"] += 1
            (stats[counts_key] if counts_key else stats)[column] += 1

    result = []
    for branch in branches.values():
        rm_stats = sorted(branch["rm_stats"].values(), key=lambda stats: stats["total"], reverse=True)
        result.append({**branch, "rm_stats": rm_stats})
    result.sort(key=lambda branch: branch["total_stats"]["total"], reverse=True)
    return result


def branch_ptp_stats(rows: Iterable[Mapping[str, Any]], today: Optional[date] = None) -> List[Dict[str, Any]]:
    """PTP buckets per branch and RM, leaving out applications already paid."""

    def empty(name, branch_name):
        stats = {"rm_name": name, "branch_name": branch_name, "total": 0}
        stats.update({column: 0 for column in _PTP_COLUMNS.values()})
        return stats

    def column_for(row):
        bucket = row.get("ptp_bucket") or ptp_bucket(row.get("ptp_date"), today)
        return _PTP_COLUMNS[bucket]

    unpaid = [row for row in rows if row.get("status") != PAID]
    return _group_by_branch(unpaid, empty, column_for)


def branch_payment_stats(rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    def empty(name, branch_name):
        stats = {"rm_name": name, "branch_name": branch_name, "total": 0, "others": 0}
        stats.update({column: 0 for column in _PAYMENT_COLUMNS.values()})
        return stats

    def column_for(row):
        return _PAYMENT_COLUMNS.get(row.get("status") or UNPAID, "others")

    return _group_by_branch(rows, empty, column_for)


def collection_summary(rows: Iterable[Mapping[str, Any]], audit_logs: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """Status changes to a collected status per local day, by branch and RM.

    Only "Status" audit rows whose new value is a collected status and
    whose application is in ``rows`` are counted.
    """
    by_id = {row["applicant_id"]: row for row in rows}
    collected = [
        {**by_id[log["application_id"]], "day": timezone.localtime(log["created_at"]).date().isoformat()}
        for log in audit_logs
        if log.get("application_id") in by_id
        and log.get("field") == AUDIT_FIELD_STATUS
        and log.get("new_value") in COLLECTED_STATUSES
    ]
    dates = sorted({row["day"] for row in collected})

    def empty(name, branch_name):
        return {"rm_name": name, "branch_name": branch_name, "total": 0, "daily_counts": dict.fromkeys(dates, 0)}

    return {
        "dates": dates,
        "branches": _group_by_branch(collected, empty, lambda row: row["day"], counts_key="daily_counts"),
    }
