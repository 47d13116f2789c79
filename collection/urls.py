from django.urls import path

from .views import (
    ApplicationExportView,
    ApplicationListView,
    AuditLogListView,
    CallingStatusView,
    CollectionSummaryAnalyticsView,
    CommentListView,
    EmiMonthsView,
    FieldStatusView,
    PaymentAnalyticsView,
    PtpAnalyticsView,
    PtpDateView,
    StatusChangeRequestListView,
    StatusChangeReviewView,
    application_changes,
)

urlpatterns = [
    path("applications/", ApplicationListView.as_view(), name="application-list"),
    path("applications/export/", ApplicationExportView.as_view(), name="application-export"),
    path("applications/changes/", application_changes, name="application-changes"),
    path("applications/<str:applicant_id>/status/", FieldStatusView.as_view(), name="field-status"),
    path("applications/<str:applicant_id>/ptp/", PtpDateView.as_view(), name="ptp-date"),
    path("applications/<str:applicant_id>/calls/", CallingStatusView.as_view(), name="calling-status"),
    path("applications/<str:applicant_id>/comments/", CommentListView.as_view(), name="comments"),
    path("applications/<str:applicant_id>/audit-logs/", AuditLogListView.as_view(), name="audit-logs"),
    path("analytics/ptp/", PtpAnalyticsView.as_view(), name="ptp-analytics"),
    path("analytics/payments/", PaymentAnalyticsView.as_view(), name="payment-analytics"),
    path("analytics/collections/", CollectionSummaryAnalyticsView.as_view(), name="collection-summary"),
    path("months/", EmiMonthsView.as_view(), name="emi-months"),
    path("status-requests/", StatusChangeRequestListView.as_view(), name="status-requests"),
    path("status-requests/<int:pk>/review/", StatusChangeReviewView.as_view(), name="status-request-review"),
]
