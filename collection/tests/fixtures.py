from datetime import date, datetime
from decimal import Decimal

from django.utils import timezone

from collection.models import Application, CollectionRecord

PERIOD = "2025-06"
DEMAND_DATE = date(2025, 6, 5)


def aware(year, month, day, hour=10, minute=0, second=0):
    return timezone.make_aware(datetime(year, month, day, hour, minute, second))


def make_application(applicant_id, **kwargs):
    fields = {
        "applicant_name": f"Borrower {applicant_id}",
        "branch_name": "Pune",
        "team_lead": "Asha",
        "rm_name": "Ravi",
        "dealer_name": "Sai Motors",
        "lender_name": "Axis",
        "emi_amount": Decimal("4500.00"),
        "demand_date": DEMAND_DATE,
    }
    fields.update(kwargs)
    return Application.objects.create(applicant_id=applicant_id, **fields)


def make_collection(application_id, lms_status, demand_date=DEMAND_DATE, created_at=None, **kwargs):
    return CollectionRecord.objects.create(
        application_id=application_id,
        demand_date=demand_date,
        lms_status=lms_status,
        created_at=created_at or timezone.now(),
        **kwargs,
    )
