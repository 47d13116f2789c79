UNPAID = "Unpaid"
PARTIALLY_PAID = "Partially Paid"
CASH_COLLECTED = "Cash Collected from Customer"
CUSTOMER_DEPOSITED = "Customer Deposited to Bank"
PAID = "Paid"
PAID_PENDING_APPROVAL = "Paid (Pending Approval)"

STATUSES = (
    UNPAID,
    PARTIALLY_PAID,
    CASH_COLLECTED,
    CUSTOMER_DEPOSITED,
    PAID,
    PAID_PENDING_APPROVAL,
)
STATUS_CHOICES = [(s, s) for s in STATUSES]

APPLICANT = "applicant"
CO_APPLICANT = "co_applicant"
GUARANTOR = "guarantor"
REFERENCE = "reference"

CONTACT_TYPES = (APPLICANT, CO_APPLICANT, GUARANTOR, REFERENCE)
CONTACT_TYPE_CHOICES = [(c, c.replace("_", "-").title()) for c in CONTACT_TYPES]
NOT_CALLED = "Not Called"

CALLING_STATUSES = (
    "No response",
    "Customer funded the account",
    "Customer will fund on future date",
    "Spoken – no commitment",
    "Refused / unable to fund",
)

PTP_OVERDUE = "Overdue PTP"
PTP_TODAY = "Today's PTP"
PTP_TOMORROW = "Tomorrow's PTP"
PTP_FUTURE = "Future PTP"
PTP_NONE = "No PTP"

# chronological
PTP_BUCKETS = (PTP_OVERDUE, PTP_TODAY, PTP_TOMORROW, PTP_FUTURE, PTP_NONE)

VEHICLE_STATUS_NONE = "None"
COLLECTION_RM_NONE = "N/A"

# audit_logs.field values
AUDIT_FIELD_STATUS = "Status"
AUDIT_FIELD_PTP = "PTP Date"
AUDIT_FIELD_STATUS_REJECTED = "status_request_rejected"

WATCHED_TABLES = (
    "collection",
    "field_status",
    "ptp_dates",
    "contact_calling_status",
    "comments",
)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
EVENT_TYPES = (INSERT, UPDATE, DELETE)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
APPROVAL_STATUSES = (PENDING, APPROVED, REJECTED)
APPROVAL_STATUS_CHOICES = [(s, s.title()) for s in APPROVAL_STATUSES]

# field statuses whose changes count as collections made on a day
COLLECTED_STATUSES = (PAID_PENDING_APPROVAL, CASH_COLLECTED, PARTIALLY_PAID, CUSTOMER_DEPOSITED)
