import logging

from rest_framework import status, views
from rest_framework.exceptions import APIException
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from . import ingestion, metering
from .config import PipelineConfig
from .models import Job
from .serializers import (
    JobSerializer,
    PrepareJobSerializer,
    ProcessOneSerializer,
    UsageSummarySerializer,
)
from .tasks import prepare, prepare_job

logger = logging.getLogger(__name__)


def _error_message(exc: APIException) -> str:
    detail = exc.detail
    if isinstance(detail, dict):
        detail = next(iter(detail.values()), "")
    if isinstance(detail, list):
        detail = detail[0] if detail else ""
    return str(detail)


def _caller_id(request) -> str:
    return str(request.user.pk)


def _visible_job(request, job_id: str):
    """The job if the caller owns it (staff see every job), else None."""
    job = Job.objects.filter(job_id=job_id).first()
    if job is None:
        return None
    if request.user.is_staff or job.user_id == _caller_id(request):
        return job
    return None


class CallbackView(views.APIView):
    """
    Provider completion webhook: POST /api/callback/<provider>?job_id=...[&cb_sig=...]

    Always answers definitively: {"ok": true} for processed or skipped
    deliveries, {"error": ...} with 4xx for bad input or signature, 500 when
    processing failed (the delivery claim is released so a retry can succeed).
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request, provider):
        # Signatures cover the exact bytes received; read them before any parsing
        raw_body = request.body
        try:
            result = ingestion.handle_callback(
                provider,
                request.query_params.get("job_id"),
                raw_body,
                request.headers,
                request.query_params,
                PipelineConfig.from_settings(),
            )
        except APIException as e:
            return Response({"error": _error_message(e)}, status=e.status_code)
        except Exception:
            logger.exception("%s callback failed for %s", provider, request.query_params.get("job_id"))
            return Response({"error": "Processing failed"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response(result)


class PrepareJobView(views.APIView):
    """
    Resolve audio and dispatch an existing job to the suppliers.
    Queued through Celery (202) unless ?sync=1 asks for the dispatch outcome.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = PrepareJobSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        job = _visible_job(request, data["job_id"])
        if job is None:
            return Response({"error": "Job not found"}, status=404)
        if job.status == Job.Status.CANCELLED:
            return Response({"job_id": job.job_id, "cancelled": True})
        if job.is_terminal:
            return Response({"error": f"Job already {job.status}"}, status=409)

        # source_url is write-once; the intake flow may defer it to this call
        source_updates = {}
        if data.get("source_url") and not job.source_url:
            source_updates["source_url"] = data["source_url"]
        if data.get("source_type") and job.status == Job.Status.PENDING:
            source_updates["source_type"] = data["source_type"]
        if source_updates:
            Job.objects.filter(job_id=job.job_id).update(**source_updates)

        options = {
            "user_tier": data.get("user_tier"),
            "high_accuracy": data.get("high_accuracy"),
            "enable_diarization": data.get("enable_diarization", False),
            "preferred_language": data.get("preferred_language", ""),
            "video_prefetch": dict(data["video_prefetch"]) if data.get("video_prefetch") else None,
        }

        if request.query_params.get("sync") in ("1", "true"):
            outcome = prepare(job.job_id, inline=True, **options)
            code = 422 if outcome.get("status") == Job.Status.FAILED else 200
            return Response(outcome, status=code)

        prepare_job.delay(job.job_id, options)
        return Response({"job_id": job.job_id, "status": "queued"}, status=status.HTTP_202_ACCEPTED)


class ProcessOneView(views.APIView):
    """Pull-queue worker: claim and fully process at most one of the caller's queued jobs."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = ProcessOneSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = ingestion.process_one(
            _caller_id(request),
            PipelineConfig.from_settings(),
            job_id=ser.validated_data.get("job_id") or None,
        )
        return Response(result)


class UsageView(views.APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        summary = metering.usage_summary(_caller_id(request))
        return Response(UsageSummarySerializer(summary).data)


class JobDetailView(views.APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, job_id):
        job = _visible_job(request, job_id)
        if job is None:
            return Response({"detail": "Not found"}, status=404)
        return Response(JobSerializer(job).data)
