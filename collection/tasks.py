import logging
from decimal import Decimal, InvalidOperation
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from celery import shared_task
from django.conf import settings
from django.db import transaction

from .constants import CONTACT_TYPES, STATUSES, UNPAID
from .models import Application, CollectionRecord
from .utils import normalize_period, period_demand_date

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"applicant_id", "applicant_name", "branch_name"}
TEXT_COLUMNS = (
    "applicant_mobile",
    "applicant_address",
    "co_applicant_name",
    "co_applicant_mobile",
    "guarantor_name",
    "guarantor_mobile",
    "reference_name",
    "reference_mobile",
    "team_lead",
    "rm_name",
    "collection_rm",
    "dealer_name",
    "lender_name",
    "repayment",
    "vehicle_status",
)
AMOUNT_COLUMNS = ("loan_amount", "emi_amount", "principle_due", "interest_due", "amount_collected")

EXPORT_COLUMNS = [
    ("applicant_id", "Application ID"),
    ("applicant_name", "Applicant Name"),
    ("branch_name", "Branch"),
    ("team_lead", "Team Lead"),
    ("rm_name", "RM"),
    ("collection_rm", "Collection RM"),
    ("dealer_name", "Dealer"),
    ("lender_name", "Lender"),
    ("emi_amount", "EMI Amount"),
    ("principle_due", "Principal Due"),
    ("interest_due", "Interest Due"),
    ("demand_date", "Demand Date"),
    ("status", "Status"),
    ("ptp_date", "PTP Date"),
    ("ptp_bucket", "PTP Bucket"),
]


def _data_dir() -> Path:
    return Path(getattr(settings, "DATA_DIR", settings.BASE_DIR / "data"))


def _load_excel(filename: str) -> pd.DataFrame:
    path = Path(filename)
    if not path.is_absolute():
        path = _data_dir() / filename
    if not path.exists():
        logger.error("File not found: %s", path)
        return pd.DataFrame()
    df = pd.read_excel(path)
    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    return df


def _text(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def _amount(value) -> Optional[Decimal]:
    if value is None or pd.isna(value):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _date(value):
    if value is None or pd.isna(value):
        return None
    return pd.to_datetime(value).date()


def _demand_date(row):
    """Demand date column, or the 5th of a "demand_month" such as "Jun-25"."""
    value = _date(row.get("demand_date"))
    if value is None:
        period = normalize_period(_text(row.get("demand_month")))
        value = period_demand_date(period) if period else None
    return value


def _application_from_row(row) -> Application:
    lms_status = _text(row.get("lms_status"))
    bounce = row.get("last_month_bounce")
    fields: Dict[str, Any] = {
        "applicant_id": _text(row["applicant_id"]),
        "applicant_name": _text(row["applicant_name"]),
        "branch_name": _text(row["branch_name"]),
        "demand_date": _demand_date(row),
        "disbursement_date": _date(row.get("disbursement_date")),
        "lms_status": lms_status if lms_status in STATUSES else UNPAID,
        "last_month_bounce": None if bounce is None or pd.isna(bounce) else int(bounce),
    }
    for column in TEXT_COLUMNS:
        fields[column] = _text(row.get(column))
    for column in AMOUNT_COLUMNS:
        fields[column] = _amount(row.get(column))
    fields["emi_amount"] = fields["emi_amount"] or Decimal("0")
    # blank=True text columns are NOT NULL
    for column in ("team_lead", "rm_name", "dealer_name", "lender_name"):
        fields[column] = fields[column] or ""
    return Application(**fields)


def _collection_from_application(app: Application) -> CollectionRecord:
    return CollectionRecord(
        application_id=app.applicant_id,
        demand_date=app.demand_date,
        lms_status=app.lms_status,
        emi_amount=app.emi_amount,
        amount_collected=app.amount_collected,
        team_lead=app.team_lead,
        rm_name=app.rm_name,
        collection_rm=app.collection_rm,
        repayment=app.repayment,
        last_month_bounce=app.last_month_bounce,
    )


@shared_task
def ingest_applications_from_excel(filename: str = "applications.xlsx") -> Dict[str, int]:
    """Import a sheet of applications.

    A new applicant id creates the application. Every row with a demand date
    creates a collection row for that month unless the applicant already has
    one, so re-importing an applicant in a later month adds only the month.
    """
    df = _load_excel(filename)
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        logger.error("Missing columns in %s: %s", filename, missing)
        return {"created": 0, "collection_created": 0, "skipped": len(df)}

    parsed: List[Application] = []
    skipped = 0
    for _, row in df.iterrows():
        if any(pd.isna(row[col]) or not str(row[col]).strip() for col in REQUIRED_COLUMNS):
            skipped += 1
            continue
        try:
            parsed.append(_application_from_row(row))
        except (TypeError, ValueError) as exc:
            skipped += 1
            logger.warning("Skipping application row due to error: %s", exc)

    ids = list({app.applicant_id for app in parsed})
    existing = set(Application.objects.filter(applicant_id__in=ids).values_list("applicant_id", flat=True))
    known_months = {
        (app_id, normalize_period(demand_date))
        for app_id, demand_date in CollectionRecord.objects.filter(
            application_id__in=ids, demand_date__isnull=False
        ).values_list("application_id", "demand_date")
    }

    new: Dict[str, Application] = {}
    records: List[CollectionRecord] = []
    for app in parsed:
        created = False
        if app.applicant_id not in existing and app.applicant_id not in new:
            new[app.applicant_id] = app
            created = True
        month = (app.applicant_id, normalize_period(app.demand_date))
        if app.demand_date is not None and month not in known_months:
            known_months.add(month)
            records.append(_collection_from_application(app))
            created = True
        if not created:
            skipped += 1

    with transaction.atomic():
        Application.objects.bulk_create(list(new.values()), ignore_conflicts=True, batch_size=500)
        CollectionRecord.objects.bulk_create(records, batch_size=500)
    logger.info(
        "Applications ingested: created=%s collection_created=%s skipped=%s", len(new), len(records), skipped
    )
    return {"created": len(new), "collection_created": len(records), "skipped": skipped}


def build_export_frame(rows: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    records: List[Dict[str, Any]] = []
    for row in rows:
        record = {title: row.get(key) for key, title in EXPORT_COLUMNS}
        calling = row.get("calling_status") or {}
        for role in CONTACT_TYPES:
            record[f"{role.replace('_', ' ').title()} Calling Status"] = calling.get(role)
        comments = row.get("recent_comments") or []
        record["Recent Comments"] = " | ".join(f"{c['user_name']}: {c['content']}" for c in comments)
        records.append(record)
    columns = [title for _, title in EXPORT_COLUMNS]
    columns += [f"{role.replace('_', ' ').title()} Calling Status" for role in CONTACT_TYPES]
    columns.append("Recent Comments")
    return pd.DataFrame.from_records(records, columns=columns)


def export_workbook(rows: Iterable[Mapping[str, Any]]) -> bytes:
    buffer = BytesIO()
    build_export_frame(rows).to_excel(buffer, index=False, sheet_name="Applications")
    return buffer.getvalue()
