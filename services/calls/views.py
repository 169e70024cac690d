from datetime import datetime, time

import structlog
from django.conf import settings
from django.utils import timezone
from kombu.exceptions import OperationalError
from rest_framework import mixins, parsers, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from services.agents.models import Agent

from .aggregation import build_dashboard
from .exceptions import UploadFailed
from .models import CallRecord
from .serializers import (
    AssignAgentSerializer,
    CallRecordSerializer,
    CallUploadSerializer,
    DashboardQuerySerializer,
    DashboardSerializer,
)
from .stores import CALLS, DjangoRecordStore, DjangoStorageObjectStore
from .tasks import process_call_recording
from .upload import DurableUploader

logger = structlog.get_logger(__name__)


def get_uploader() -> DurableUploader:
    return DurableUploader(
        object_store=DjangoStorageObjectStore(base_url=settings.PUBLIC_BASE_URL),
        record_store=DjangoRecordStore(),
    )


def enqueue_processing(call_id):
    """
    Queue the processing task; returns a 503 response when the broker is unreachable.

    The call stays 'uploaded', so /process/ can queue it again later.
    """
    try:
        process_call_recording.delay(call_id)
    except OperationalError as e:
        logger.error("call_not_queued", call_id=call_id, error=str(e))
        return Response(
            {
                "detail": f"Call saved but could not be queued for processing: {e}. Retry via /process/.",
                "id": call_id,
            },
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return None


class CallRecordViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = CallRecordSerializer
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [
        parsers.JSONParser,
        parsers.MultiPartParser,
        parsers.FormParser,
    ]

    def get_queryset(self):
        return CallRecord.objects.select_related("agent").order_by("-created_at")

    def get_serializer_class(self):
        if self.action == "create":
            return CallUploadSerializer
        if self.action == "assign_agent":
            return AssignAgentSerializer
        return CallRecordSerializer

    def create(self, request, *args, **kwargs):
        """
        POST /api/calls/

        Uploads the recording, creates the call in 'uploaded' status and
        queues it for processing.
        """
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        upload = serializer.validated_data["file"]
        agent = serializer.validated_data.get("agent")

        try:
            result = get_uploader().upload(
                upload,
                file_name=upload.name,
                user_id=request.user.pk,
                agent_id=agent.pk if agent else None,
            )
        except UploadFailed as e:
            return Response(
                {"detail": f"Upload failed: {e}"},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        call = CallRecord.objects.get(pk=result.call_id)

        queued = enqueue_processing(call.pk)
        if queued is not None:
            return queued
        return Response(CallRecordSerializer(call).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def process(self, request, pk=None):
        """
        POST /api/calls/<id>/process/
        """
        call = self.get_object()

        if call.status != CallRecord.Status.UPLOADED:
            return Response(
                {"detail": f"Call is '{call.status}', only 'uploaded' calls can be processed."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        queued = enqueue_processing(call.pk)
        if queued is not None:
            return queued
        return Response(CallRecordSerializer(call).data, status=status.HTTP_202_ACCEPTED)

    @action(detail=True, methods=["post"], url_path="assign-agent")
    def assign_agent(self, request, pk=None):
        """
        POST /api/calls/<id>/assign-agent/

        An agent can be set once; reassignment is an admin correction.
        """
        call = self.get_object()

        if call.agent_id is not None:
            return Response(
                {"detail": "Call already has an agent."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        DjangoRecordStore().update(CALLS, call.pk, {"agent_id": serializer.validated_data["agent"].pk})
        call.refresh_from_db()
        return Response(CallRecordSerializer(call).data, status=status.HTTP_200_OK)


class DashboardView(APIView):
    """
    GET /api/dashboard/?granularity=daily|weekly|monthly&date_from=&date_to=

    Summary, trend series and agent leaderboard over completed calls.
    """

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        query = DashboardQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        tz = timezone.get_current_timezone()
        calls = CallRecord.objects.filter(status=CallRecord.Status.COMPLETED)
        if params.get("date_from"):
            calls = calls.filter(created_at__gte=datetime.combine(params["date_from"], time.min, tzinfo=tz))
        if params.get("date_to"):
            calls = calls.filter(created_at__lte=datetime.combine(params["date_to"], time.max, tzinfo=tz))

        dashboard = build_dashboard(
            calls.only("created_at", "evaluation", "agent"),
            Agent.objects.all(),
            granularity=params["granularity"],
            tz=tz,
        )
        return Response(DashboardSerializer(dashboard).data, status=status.HTTP_200_OK)
