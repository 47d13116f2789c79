import asyncio
import json

from asgiref.sync import async_to_sync
from django.core.handlers.asgi import ASGIRequest
from django.http import HttpResponse, JsonResponse, StreamingHttpResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from . import mutations
from .analytics import branch_payment_stats, branch_ptp_stats, collection_summary
from .board import CollectionBoard, emi_months
from .constants import AUDIT_FIELD_STATUS, PENDING
from .datasource import DjangoDataSource
from .filters import DIMENSIONS
from .models import Application, AuditLog, Comment, StatusChangeRequest
from .realtime import ChangeNotificationRouter
from .serializers import (
    AuditLogSerializer,
    BoardQuerySerializer,
    CallingStatusSerializer,
    CommentCreateSerializer,
    CommentSerializer,
    FieldStatusUpdateSerializer,
    MonthQuerySerializer,
    PtpDateSerializer,
    ReviewSerializer,
    StatusChangeRequestSerializer,
    StatusRequestQuerySerializer,
)
from .tasks import export_workbook
from .utils import clean_ids, is_valid_period, month_range


def _criteria(request):
    return {
        dimension.name: request.query_params.getlist(dimension.name)
        for dimension in DIMENSIONS
        if request.query_params.getlist(dimension.name)
    }


def _user_id(request):
    return request.user.pk if request.user.is_authenticated else None


def _load_board(month, criteria=None, search=None, ordering=None):
    return async_to_sync(CollectionBoard().load)(month, criteria, search=search, ordering=ordering)


class ApplicationListView(APIView):
    def get(self, request):
        serializer = BoardQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        snapshot = _load_board(
            data["month"],
            _criteria(request),
            search=data.get("search"),
            ordering=data.get("ordering"),
        )
        return Response(
            {
                "month": snapshot.period,
                "total": snapshot.total,
                "count": len(snapshot.rows),
                "stale": snapshot.stale,
                "status_counts": snapshot.status_counts,
                "available_options": snapshot.available_options,
                "results": snapshot.rows,
            },
            status=status.HTTP_200_OK,
        )


class ApplicationExportView(APIView):
    def get(self, request):
        serializer = MonthQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        month = serializer.validated_data["month"]

        snapshot = _load_board(month, _criteria(request), search=request.query_params.get("search"))
        response = HttpResponse(
            export_workbook(snapshot.rows),
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
        response["Content-Disposition"] = f'attachment; filename="applications-{month}.xlsx"'
        return response


class _ApplicationActionView(APIView):
    serializer_class = None

    def perform(self, request, applicant_id, data) -> bool:
        raise NotImplementedError

    def post(self, request, applicant_id: str):
        if not Application.objects.filter(applicant_id=applicant_id).exists():
            return Response({"detail": "Application not found."}, status=status.HTTP_404_NOT_FOUND)
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        if not self.perform(request, applicant_id, serializer.validated_data):
            return Response({"detail": "Update could not be saved."}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"applicant_id": applicant_id, **serializer.data}, status=status.HTTP_201_CREATED)


class FieldStatusView(_ApplicationActionView):
    serializer_class = FieldStatusUpdateSerializer

    def perform(self, request, applicant_id, data):
        return async_to_sync(mutations.update_field_status)(
            DjangoDataSource(),
            applicant_id,
            data["status"],
            data["month"],
            user_id=_user_id(request),
            amount_collected=data.get("amount_collected"),
            request_reason=data.get("request_reason"),
        )


class PtpDateView(_ApplicationActionView):
    serializer_class = PtpDateSerializer

    def perform(self, request, applicant_id, data):
        return async_to_sync(mutations.set_ptp_date)(
            DjangoDataSource(), applicant_id, data["ptp_date"], data["month"], user_id=_user_id(request)
        )


class CallingStatusView(_ApplicationActionView):
    serializer_class = CallingStatusSerializer

    def perform(self, request, applicant_id, data):
        return async_to_sync(mutations.log_call)(
            DjangoDataSource(),
            applicant_id,
            data["contact_type"],
            data["status"],
            data["month"],
            user_id=_user_id(request),
        )


class CommentListView(_ApplicationActionView):
    serializer_class = CommentCreateSerializer

    def get(self, request, applicant_id: str):
        comments = Comment.objects.filter(application_id=applicant_id).select_related("user__profile")
        month = request.query_params.get("month")
        if month:
            if not is_valid_period(month):
                return Response({"detail": "Use the YYYY-MM format."}, status=status.HTTP_400_BAD_REQUEST)
            year, number = month.split("-")
            comments = comments.filter(demand_date__year=int(year), demand_date__month=int(number))
        comments = comments.order_by("-created_at", "-id")
        return Response(CommentSerializer(comments, many=True).data, status=status.HTTP_200_OK)

    def perform(self, request, applicant_id, data):
        return async_to_sync(mutations.add_comment)(
            DjangoDataSource(), applicant_id, data["content"], data["month"], user_id=_user_id(request)
        )


class AuditLogListView(APIView):
    def get(self, request, applicant_id: str):
        logs = (
            AuditLog.objects.filter(application_id=applicant_id)
            .select_related("user__profile")
            .order_by("-created_at", "-id")
        )
        field = request.query_params.get("field")
        if field:
            logs = logs.filter(field=field)
        return Response(AuditLogSerializer(logs, many=True).data, status=status.HTTP_200_OK)


class PtpAnalyticsView(APIView):
    def get(self, request):
        serializer = MonthQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        snapshot = _load_board(serializer.validated_data["month"], _criteria(request))
        return Response(branch_ptp_stats(snapshot.rows, timezone.localdate()), status=status.HTTP_200_OK)


class PaymentAnalyticsView(APIView):
    def get(self, request):
        serializer = MonthQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        snapshot = _load_board(serializer.validated_data["month"], _criteria(request))
        return Response(branch_payment_stats(snapshot.rows), status=status.HTTP_200_OK)


class CollectionSummaryAnalyticsView(APIView):
    def get(self, request):
        serializer = MonthQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        month = serializer.validated_data["month"]
        snapshot = _load_board(month, _criteria(request))
        logs = AuditLog.objects.filter(
            field=AUDIT_FIELD_STATUS,
            demand_date__range=month_range(month),
            application_id__in=snapshot.ids,
        ).values("application_id", "field", "new_value", "created_at")
        return Response(collection_summary(snapshot.rows, logs), status=status.HTTP_200_OK)


class EmiMonthsView(APIView):
    def get(self, request):
        months = async_to_sync(emi_months)(DjangoDataSource())
        return Response({"months": months, "default": months[0] if months else None}, status=status.HTTP_200_OK)


class StatusChangeRequestListView(APIView):
    def get(self, request):
        serializer = StatusRequestQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        requests = StatusChangeRequest.objects.filter(approval_status=data.get("status", PENDING)).select_related(
            "application", "requested_by__profile", "reviewed_by__profile"
        )
        if data.get("month"):
            requests = requests.filter(demand_date__range=month_range(data["month"]))
        requests = requests.order_by("-created_at", "-id")
        return Response(StatusChangeRequestSerializer(requests, many=True).data, status=status.HTTP_200_OK)


class StatusChangeReviewView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, pk: int):
        change_request = StatusChangeRequest.objects.filter(pk=pk).first()
        if change_request is None:
            return Response({"detail": "Status change request not found."}, status=status.HTTP_404_NOT_FOUND)
        if change_request.approval_status != PENDING:
            return Response(
                {"detail": f"Request was already {change_request.approval_status}."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        serializer = ReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        reviewed = async_to_sync(mutations.review_status_change)(
            DjangoDataSource(), pk, data["decision"], reviewer_id=_user_id(request), comment=data.get("comment")
        )
        if not reviewed:
            return Response({"detail": "Review could not be saved."}, status=status.HTTP_400_BAD_REQUEST)
        change_request.refresh_from_db()
        return Response(StatusChangeRequestSerializer(change_request).data, status=status.HTTP_200_OK)


async def _change_stream(month, ids):
    notices: asyncio.Queue = asyncio.Queue()
    router = ChangeNotificationRouter(DjangoDataSource(), lambda: notices.put_nowait("refresh"), visible_ids=ids)
    router.start()
    try:
        yield f"event: ready\ndata: {json.dumps({'month': month, 'watching': len(ids)})}\n\n"
        while True:
            notice = await notices.get()
            yield f"event: {notice}\ndata: {json.dumps({'month': month})}\n\n"
    finally:
        router.close()


async def application_changes(request):
    """Server-sent events telling an open dashboard to reload.

    The stream stays open until the client goes away, so it is only served
    under ASGI; a WSGI worker would be held forever and gets a 501 instead.
    """
    month = request.GET.get("month")
    if not is_valid_period(month):
        return JsonResponse({"detail": "Use the YYYY-MM format."}, status=400)
    ids = clean_ids(request.GET.get("ids", "").split(","))
    if not ids:
        return JsonResponse({"detail": "No applications to watch."}, status=400)
    if not isinstance(request, ASGIRequest):
        return JsonResponse({"detail": "The change stream needs an ASGI server."}, status=501)
    response = StreamingHttpResponse(_change_stream(month, ids), content_type="text/event-stream")
    response["Cache-Control"] = "no-cache"
    return response
