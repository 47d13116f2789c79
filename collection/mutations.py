"""User actions on an application.

Each action validates its input before writing anything and reports the
outcome as a boolean: ``False`` for rejected input, an unknown application
or a failed write. History is never rewritten; every change is a new row,
and status/PTP changes also append an audit log entry. The rows of one
action are written in a single transaction.

Marking an application "Paid" needs a reviewer: the field status becomes
"Paid (Pending Approval)" and a pending status change request is opened.
``review_status_change`` approves or rejects it.
"""
import logging
from datetime import date
from typing import Any, Dict, Optional

from django.utils import timezone

from .constants import (
    APPROVED,
    AUDIT_FIELD_PTP,
    AUDIT_FIELD_STATUS,
    AUDIT_FIELD_STATUS_REJECTED,
    PAID,
    PAID_PENDING_APPROVAL,
    PENDING,
    REJECTED,
    STATUSES,
    UNPAID,
)
from .datasource import DataSourceError, Write
from .resolvers import latest_by, parse_contact_type
from .utils import is_valid_period, month_range, parse_date, period_demand_date

logger = logging.getLogger(__name__)

NEEDS_APPROVAL = (PAID, PAID_PENDING_APPROVAL)


def _valid_id(application_id) -> bool:
    return isinstance(application_id, str) and bool(application_id.strip())


async def _application_exists(source, application_id: str) -> bool:
    rows = await source.select("applications", filters={"applicant_id": application_id}, fields=["id"], limit=1)
    return bool(rows)


async def _latest(source, table: str, application_id: str, period: str, extra: Optional[Dict[str, Any]] = None, timestamp_field: str = "created_at"):
    filters = {"application_id": application_id, "demand_date__range": month_range(period)}
    filters.update(extra or {})
    rows = await source.select(table, filters=filters, order=[f"-{timestamp_field}", "id"])
    return latest_by(rows, lambda row: row["application_id"], timestamp_field).get(application_id)


def _audit(application_id, field, previous, new, demand_date, user_id) -> Write:
    return Write(
        "audit_logs",
        {
            "application_id": application_id,
            "field": field,
            "previous_value": previous,
            "new_value": new,
            "demand_date": demand_date,
            "user_id": user_id,
        },
    )


def _field_status(application_id, status, demand_date, user_id, amount_collected=None) -> Write:
    return Write(
        "field_status",
        {
            "application_id": application_id,
            "status": status,
            "amount_collected": amount_collected,
            "demand_date": demand_date,
            "user_id": user_id,
        },
    )


async def update_field_status(
    source, application_id: str, status: str, period: str, user_id=None, amount_collected=None, request_reason=None
) -> bool:
    if not _valid_id(application_id) or not is_valid_period(period) or status not in STATUSES:
        logger.warning("Rejected status update %r/%r/%r", application_id, status, period)
        return False
    demand_date = period_demand_date(period)
    try:
        if not await _application_exists(source, application_id):
            logger.warning("Status update for unknown application %s", application_id)
            return False
        previous = await _latest(source, "field_status", application_id, period)
        previous_status = previous["status"] if previous else None

        if status in NEEDS_APPROVAL:
            pending = await source.select(
                "status_change_requests",
                filters={
                    "application_id": application_id,
                    "demand_date__range": month_range(period),
                    "approval_status": PENDING,
                },
                fields=["id"],
                limit=1,
            )
            if pending:
                logger.warning("Payment of %s for %s is already waiting for approval", application_id, period)
                return False
            writes = [
                _field_status(application_id, PAID_PENDING_APPROVAL, demand_date, user_id, amount_collected),
                Write(
                    "status_change_requests",
                    {
                        "application_id": application_id,
                        "demand_date": demand_date,
                        "current_status": previous_status or UNPAID,
                        "requested_status": PAID,
                        "request_reason": request_reason,
                        "requested_by_id": user_id,
                    },
                ),
                _audit(application_id, AUDIT_FIELD_STATUS, previous_status, PAID_PENDING_APPROVAL, demand_date, user_id),
            ]
            status = PAID_PENDING_APPROVAL
        else:
            writes = [
                _field_status(application_id, status, demand_date, user_id, amount_collected),
                _audit(application_id, AUDIT_FIELD_STATUS, previous_status, status, demand_date, user_id),
            ]
        await source.write_all(writes)
    except DataSourceError:
        logger.exception("Could not update status for %s", application_id)
        return False
    logger.info("Status of %s for %s set to %s", application_id, period, status)
    return True


async def review_status_change(source, request_id, decision: str, reviewer_id=None, comment: Optional[str] = None) -> bool:
    """Approve or reject a pending request; anything but a pending request is refused."""
    if decision not in (APPROVED, REJECTED):
        logger.warning("Rejected review decision %r for request %r", decision, request_id)
        return False
    try:
        rows = await source.select("status_change_requests", filters={"id": request_id}, limit=1)
        if not rows:
            logger.warning("Review of unknown status change request %r", request_id)
            return False
        request = rows[0]
        if request["approval_status"] != PENDING:
            logger.warning("Status change request %s was already %s", request_id, request["approval_status"])
            return False

        application_id = request["application_id"]
        demand_date = request["demand_date"]
        current = request["current_status"] or UNPAID
        writes = [
            Write(
                "status_change_requests",
                {
                    "id": request_id,
                    "approval_status": decision,
                    "reviewed_by_id": reviewer_id,
                    "reviewed_at": timezone.now(),
                    "review_comments": comment,
                },
                conflict_key=("id",),
            )
        ]
        if decision == APPROVED:
            writes += [
                _field_status(application_id, request["requested_status"], demand_date, reviewer_id),
                _audit(application_id, AUDIT_FIELD_STATUS, current, request["requested_status"], demand_date, reviewer_id),
            ]
        else:
            writes += [
                _field_status(application_id, current, demand_date, reviewer_id),
                _audit(
                    application_id,
                    AUDIT_FIELD_STATUS_REJECTED,
                    current,
                    f"Rejected: {request['requested_status']}",
                    demand_date,
                    reviewer_id,
                ),
            ]
        await source.write_all(writes)
    except DataSourceError:
        logger.exception("Could not review status change request %s", request_id)
        return False
    logger.info("Status change request %s %s", request_id, decision)
    return True


async def set_ptp_date(source, application_id: str, ptp_date, period: str, user_id=None) -> bool:
    """Record a PTP date; ``None`` clears it."""
    if not _valid_id(application_id) or not is_valid_period(period):
        logger.warning("Rejected PTP update %r/%r", application_id, period)
        return False
    value: Optional[date] = None
    if ptp_date not in (None, ""):
        value = parse_date(ptp_date)
        if value is None:
            logger.warning("Rejected malformed PTP date %r for %s", ptp_date, application_id)
            return False
    demand_date = period_demand_date(period)
    try:
        if not await _application_exists(source, application_id):
            logger.warning("PTP update for unknown application %s", application_id)
            return False
        previous = await _latest(source, "ptp_dates", application_id, period)
        previous_value = previous.get("ptp_date") if previous else None
        await source.write_all(
            [
                Write(
                    "ptp_dates",
                    {
                        "application_id": application_id,
                        "ptp_date": value,
                        "demand_date": demand_date,
                        "user_id": user_id,
                    },
                ),
                _audit(
                    application_id,
                    AUDIT_FIELD_PTP,
                    previous_value.isoformat() if previous_value else None,
                    value.isoformat() if value else None,
                    demand_date,
                    user_id,
                ),
            ]
        )
    except DataSourceError:
        logger.exception("Could not set PTP date for %s", application_id)
        return False
    logger.info("PTP of %s for %s set to %s", application_id, period, value)
    return True


async def log_call(source, application_id: str, contact_type: str, status: str, period: str, user_id=None) -> bool:
    if not _valid_id(application_id) or not is_valid_period(period) or not (status or "").strip():
        logger.warning("Rejected calling status %r/%r/%r", application_id, contact_type, period)
        return False
    contact_type = parse_contact_type(contact_type)
    if contact_type is None:
        logger.warning("Rejected calling status with unknown contact type for %s", application_id)
        return False
    demand_date = period_demand_date(period)
    try:
        if not await _application_exists(source, application_id):
            logger.warning("Calling status for unknown application %s", application_id)
            return False
        previous = await _latest(
            source,
            "contact_calling_status",
            application_id,
            period,
            extra={"contact_type": contact_type},
            timestamp_field="updated_at",
        )
        await source.write_all(
            [
                Write(
                    "contact_calling_status",
                    {
                        "application_id": application_id,
                        "contact_type": contact_type,
                        "demand_date": demand_date,
                        "status": status.strip(),
                        "user_id": user_id,
                        "updated_at": timezone.now(),
                    },
                    conflict_key=("application_id", "contact_type", "demand_date"),
                ),
                Write(
                    "calling_logs",
                    {
                        "application_id": application_id,
                        "contact_type": contact_type,
                        "previous_status": previous["status"] if previous else None,
                        "new_status": status.strip(),
                        "demand_date": demand_date,
                        "user_id": user_id,
                    },
                ),
            ]
        )
    except DataSourceError:
        logger.exception("Could not log call for %s", application_id)
        return False
    return True


async def add_comment(source, application_id: str, content: str, period: str, user_id=None) -> bool:
    if not _valid_id(application_id) or not is_valid_period(period) or not (content or "").strip():
        logger.warning("Rejected comment for %r/%r", application_id, period)
        return False
    try:
        if not await _application_exists(source, application_id):
            logger.warning("Comment for unknown application %s", application_id)
            return False
        await source.insert(
            "comments",
            {
                "application_id": application_id,
                "content": content.strip(),
                "demand_date": period_demand_date(period),
                "user_id": user_id,
            },
        )
    except DataSourceError:
        logger.exception("Could not add comment for %s", application_id)
        return False
    return True
