from django.conf import settings
from django.db import models
from django.utils import timezone

from .constants import APPROVAL_STATUS_CHOICES, CONTACT_TYPE_CHOICES, PENDING, STATUS_CHOICES, UNPAID


def _application_fk(related_name: str):
    return models.ForeignKey(
        "Application",
        to_field="applicant_id",
        db_column="application_id",
        related_name=related_name,
        on_delete=models.CASCADE,
    )


def _actor_fk(related_name: str):
    return models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name=related_name,
        on_delete=models.SET_NULL,
    )


class Profile(models.Model):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, related_name="profile", on_delete=models.CASCADE)
    full_name = models.CharField(max_length=200, null=True, blank=True)
    email = models.EmailField(null=True, blank=True)

    class Meta:
        db_table = "profiles"

    def __str__(self) -> str:
        return self.full_name or self.email or str(self.user_id)


class Application(models.Model):
    applicant_id = models.CharField(max_length=64, unique=True)
    applicant_name = models.CharField(max_length=200)
    applicant_mobile = models.CharField(max_length=30, null=True, blank=True)
    applicant_address = models.TextField(null=True, blank=True)
    co_applicant_name = models.CharField(max_length=200, null=True, blank=True)
    co_applicant_mobile = models.CharField(max_length=30, null=True, blank=True)
    guarantor_name = models.CharField(max_length=200, null=True, blank=True)
    guarantor_mobile = models.CharField(max_length=30, null=True, blank=True)
    reference_name = models.CharField(max_length=200, null=True, blank=True)
    reference_mobile = models.CharField(max_length=30, null=True, blank=True)

    branch_name = models.CharField(max_length=100)
    team_lead = models.CharField(max_length=100, blank=True)
    rm_name = models.CharField(max_length=100, blank=True)
    collection_rm = models.CharField(max_length=100, null=True, blank=True)
    dealer_name = models.CharField(max_length=200, blank=True)
    lender_name = models.CharField(max_length=200, blank=True)
    repayment = models.CharField(max_length=50, null=True, blank=True)
    vehicle_status = models.CharField(max_length=50, null=True, blank=True)
    last_month_bounce = models.IntegerField(null=True, blank=True)

    loan_amount = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    emi_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    principle_due = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    interest_due = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    amount_collected = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    demand_date = models.DateField(null=True, blank=True)
    disbursement_date = models.DateField(null=True, blank=True)
    lms_status = models.CharField(max_length=50, choices=STATUS_CHOICES, default=UNPAID)

    user = _actor_fk("uploaded_applications")
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "applications"

    def __str__(self) -> str:
        return f"{self.applicant_id} - {self.applicant_name}"


class CollectionRecord(models.Model):
    """LMS collection row for one application and demand month."""

    application = _application_fk("collection_records")
    demand_date = models.DateField(null=True, blank=True)
    lms_status = models.CharField(max_length=50, null=True, blank=True)
    emi_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    amount_collected = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    team_lead = models.CharField(max_length=100, null=True, blank=True)
    rm_name = models.CharField(max_length=100, null=True, blank=True)
    collection_rm = models.CharField(max_length=100, null=True, blank=True)
    repayment = models.CharField(max_length=50, null=True, blank=True)
    last_month_bounce = models.IntegerField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "collection"

    def __str__(self) -> str:
        return f"{self.application_id} / {self.demand_date}: {self.lms_status}"


class FieldStatus(models.Model):
    application = _application_fk("field_statuses")
    demand_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=50, choices=STATUS_CHOICES)
    amount_collected = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    user = _actor_fk("field_statuses")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "field_status"

    def __str__(self) -> str:
        return f"{self.application_id} / {self.demand_date}: {self.status}"


class PtpDate(models.Model):
    application = _application_fk("ptp_dates")
    demand_date = models.DateField(null=True, blank=True)
    ptp_date = models.DateField(null=True, blank=True)
    user = _actor_fk("ptp_dates")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "ptp_dates"

    def __str__(self) -> str:
        return f"{self.application_id} / {self.demand_date}: {self.ptp_date or 'cleared'}"


class ContactCallingStatus(models.Model):
    application = _application_fk("contact_calling_statuses")
    contact_type = models.CharField(max_length=20, choices=CONTACT_TYPE_CHOICES)
    demand_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=100)
    user = _actor_fk("contact_calling_statuses")
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "contact_calling_status"
        constraints = [
            models.UniqueConstraint(
                fields=["application", "contact_type", "demand_date"],
                name="uniq_contact_status_per_month",
            )
        ]

    def __str__(self) -> str:
        return f"{self.application_id} / {self.contact_type}: {self.status}"


class CallingLog(models.Model):
    application = _application_fk("calling_logs")
    contact_type = models.CharField(max_length=20, choices=CONTACT_TYPE_CHOICES)
    previous_status = models.CharField(max_length=100, null=True, blank=True)
    new_status = models.CharField(max_length=100)
    demand_date = models.DateField(null=True, blank=True)
    user = _actor_fk("calling_logs")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "calling_logs"


class Comment(models.Model):
    application = _application_fk("comments")
    content = models.TextField()
    demand_date = models.DateField(null=True, blank=True)
    user = _actor_fk("comments")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "comments"

    def __str__(self) -> str:
        return f"{self.application_id}: {self.content[:40]}"


class AuditLog(models.Model):
    """Append-only change history. Rows are never updated or deleted."""

    application = _application_fk("audit_logs")
    field = models.CharField(max_length=50)
    previous_value = models.TextField(null=True, blank=True)
    new_value = models.TextField(null=True, blank=True)
    demand_date = models.DateField(null=True, blank=True)
    user = _actor_fk("audit_logs")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "audit_logs"

    def __str__(self) -> str:
        return f"{self.application_id} {self.field}: {self.previous_value} -> {self.new_value}"


class StatusChangeRequest(models.Model):
    """A field status change waiting for a reviewer (today only "Paid")."""

    application = _application_fk("status_change_requests")
    demand_date = models.DateField(null=True, blank=True)
    current_status = models.CharField(max_length=50, null=True, blank=True)
    requested_status = models.CharField(max_length=50, choices=STATUS_CHOICES)
    request_reason = models.TextField(null=True, blank=True)
    approval_status = models.CharField(max_length=20, choices=APPROVAL_STATUS_CHOICES, default=PENDING)
    requested_by = _actor_fk("status_change_requests")
    reviewed_by = _actor_fk("reviewed_status_change_requests")
    review_comments = models.TextField(null=True, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "status_change_requests"

    def __str__(self) -> str:
        return f"{self.application_id}: {self.current_status} -> {self.requested_status} ({self.approval_status})"
