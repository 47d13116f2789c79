from rest_framework import serializers

from .constants import APPROVAL_STATUSES, APPROVED, CALLING_STATUSES, CONTACT_TYPES, REJECTED, STATUSES
from .models import AuditLog, Comment, StatusChangeRequest
from .profiles import resolve_display_name

MONTH_FIELD = dict(regex=r"^\d{4}-(0[1-9]|1[0-2])$", error_messages={"invalid": "Use the YYYY-MM format."})


class BoardQuerySerializer(serializers.Serializer):
    month = serializers.RegexField(**MONTH_FIELD)
    search = serializers.CharField(required=False, allow_blank=True)
    ordering = serializers.CharField(required=False, allow_blank=True)


class MonthQuerySerializer(serializers.Serializer):
    month = serializers.RegexField(**MONTH_FIELD)


class FieldStatusUpdateSerializer(serializers.Serializer):
    month = serializers.RegexField(**MONTH_FIELD)
    status = serializers.ChoiceField(choices=STATUSES)
    amount_collected = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    request_reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class PtpDateSerializer(serializers.Serializer):
    month = serializers.RegexField(**MONTH_FIELD)
    ptp_date = serializers.DateField(allow_null=True)


class CallingStatusSerializer(serializers.Serializer):
    month = serializers.RegexField(**MONTH_FIELD)
    contact_type = serializers.ChoiceField(choices=CONTACT_TYPES)
    status = serializers.ChoiceField(choices=CALLING_STATUSES)


class CommentCreateSerializer(serializers.Serializer):
    month = serializers.RegexField(**MONTH_FIELD)
    content = serializers.CharField()


def _actor_name(user) -> str:
    profile = getattr(user, "profile", None) if user is not None else None
    fallback = user.email if user is not None else None
    if profile is None:
        return resolve_display_name(None, fallback)
    return resolve_display_name({"full_name": profile.full_name, "email": profile.email}, fallback)


class _ActorMixin:
    def get_user_name(self, obj) -> str:
        return _actor_name(obj.user)


class CommentSerializer(_ActorMixin, serializers.ModelSerializer):
    application_id = serializers.CharField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)
    user_name = serializers.SerializerMethodField()

    class Meta:
        model = Comment
        fields = ["id", "application_id", "content", "demand_date", "user_id", "user_name", "created_at"]


class AuditLogSerializer(_ActorMixin, serializers.ModelSerializer):
    application_id = serializers.CharField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)
    user_name = serializers.SerializerMethodField()

    class Meta:
        model = AuditLog
        fields = ["id", "application_id", "field", "previous_value", "new_value", "demand_date", "user_id", "user_name", "created_at"]


class StatusRequestQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=APPROVAL_STATUSES, required=False)
    month = serializers.RegexField(required=False, **MONTH_FIELD)


class ReviewSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=(APPROVED, REJECTED))
    comment = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class StatusChangeRequestSerializer(serializers.ModelSerializer):
    application_id = serializers.CharField(read_only=True)
    applicant_name = serializers.CharField(source="application.applicant_name", read_only=True)
    requested_by_name = serializers.SerializerMethodField()
    reviewed_by_name = serializers.SerializerMethodField()

    class Meta:
        model = StatusChangeRequest
        fields = [
            "id",
            "application_id",
            "applicant_name",
            "demand_date",
            "current_status",
            "requested_status",
            "request_reason",
            "approval_status",
            "requested_by_name",
            "reviewed_by_name",
            "review_comments",
            "reviewed_at",
            "created_at",
        ]

    def get_requested_by_name(self, obj) -> str:
        return _actor_name(obj.requested_by)

    def get_reviewed_by_name(self, obj):
        return _actor_name(obj.reviewed_by) if obj.reviewed_by_id else None
