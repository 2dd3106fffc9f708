"""
Provider webhook ingestion and the shared finalization path.

A delivery goes: job lookup -> idempotency guard -> signature check -> parse
-> delivery claim -> normalize -> persist results -> complete -> meter. The
pull-based queue worker (``process_one``) reuses ``finalize`` after calling a
supplier synchronously.
"""

import json
import logging
from decimal import Decimal
from typing import Mapping, Optional

from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone
from rest_framework.exceptions import AuthenticationFailed, NotFound, ValidationError

from . import metering, suppliers
from .config import DEEPGRAM, REPLICATE, PipelineConfig, ProviderConfig
from .exceptions import SupplierError
from .extractors import (
    DEEPGRAM_EXTRACTORS,
    REPLICATE_EXTRACTORS,
    deepgram_duration,
    deepgram_language,
    extract,
    replicate_duration,
)
from .models import Job, QueueEntry, Result
from .refine import refine_transcript
from .segments import Transcript, infer_title, render_all, renumber
from .signing import header_signature, verify_delivery
from .strategy import resolve_strategy

logger = logging.getLogger(__name__)

PROVIDERS = (DEEPGRAM, REPLICATE)
REPLICATE_FAILED = ("failed", "canceled")


def _ok(**extra) -> dict:
    return {"ok": True, **extra}


# ---------------------------------------------------------------------------
# Verification / parsing
# ---------------------------------------------------------------------------

def verify_signature(provider: ProviderConfig, raw_body: bytes, job_id: str,
                     headers: Mapping[str, str], query: Mapping[str, str],
                     simulate: bool = False) -> Optional[str]:
    """
    Returns the channel that authenticated the delivery, or None when it was
    let through in soft mode. Raises AuthenticationFailed in strict mode.
    """
    if simulate:
        return "simulated"

    secret = provider.webhook_secret
    if not secret:
        if provider.require_signature:
            raise ImproperlyConfigured(f"{provider.name} signature required but no webhook secret is set")
        logger.warning("%s webhook secret not configured, accepting unsigned delivery for %s", provider.name, job_id)
        return None

    channel = verify_delivery(
        secret, raw_body, job_id,
        signature=header_signature(headers, provider.signature_headers),
        token=query.get("cb_sig"),
    )
    if channel:
        return channel
    if provider.require_signature:
        raise AuthenticationFailed("Invalid webhook signature")
    logger.warning("%s delivery for %s failed signature check, continuing in soft mode", provider.name, job_id)
    return None


def parse_body(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body or b"")
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Request body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def normalize(provider: str, payload: dict, job: Job) -> Transcript:
    hint = float(job.original_duration_sec or job.duration_sec or 0)
    if provider == DEEPGRAM:
        return extract(payload, DEEPGRAM_EXTRACTORS,
                       duration=deepgram_duration(payload) or hint, language=deepgram_language(payload))
    return extract(payload, REPLICATE_EXTRACTORS, duration=replicate_duration(payload) or hint)


def delivery_is_high_accuracy(provider: str, job: Job, query: Mapping[str, str]) -> bool:
    if provider != REPLICATE:
        return False
    if query.get("ha") == "1":
        return True
    if query.get("dg_missing") == "1":
        return False
    return job.high_accuracy


# ---------------------------------------------------------------------------
# Finalization (shared with the queue worker)
# ---------------------------------------------------------------------------

def close_queue_entries(job_id: str) -> None:
    QueueEntry.objects.filter(job_id=job_id, done=False).update(done=True)


def finalize(job: Job, transcript: Transcript, *, high_accuracy: bool = False) -> bool:
    """
    Persist every output format, complete the job and meter it. Returns False
    when the job left the active states before it could be completed.
    """
    renumber(transcript.segments)
    refine_transcript(transcript)

    title = job.title
    if title in Job.PLACEHOLDER_TITLES:
        title = infer_title(transcript.plain_text()) or title

    if Job.objects.is_cancelled(job.job_id):
        logger.info("Job %s cancelled before results were written", job.job_id)
        return False

    for fmt, content in render_all(transcript, title).items():
        if content:
            Result.upsert(job.job_id, fmt, content)

    duration_sec = transcript.duration_sec
    cost_minutes = metering.round3(Decimal(duration_sec) / 60)
    fields = {
        "duration_sec": duration_sec,
        "cost_minutes": cost_minutes,
        "title": title[:255],
        "completed_at": timezone.now(),
    }
    if transcript.language:
        fields["language"] = transcript.language[:16]
    if duration_sec > (job.original_duration_sec or 0):
        fields["original_duration_sec"] = duration_sec

    if not Job.objects.complete(job.job_id, **fields):
        logger.info("Job %s no longer active, not completing", job.job_id)
        return False

    metering.settle(job.user_id, cost_minutes, high_accuracy=high_accuracy, user_tier=job.user_tier or None)
    close_queue_entries(job.job_id)
    logger.info("Job %s completed: %ss, %s min, %d segments",
                job.job_id, duration_sec, cost_minutes, len(transcript.segments))
    return True


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

def handle_callback(provider: str, job_id: Optional[str], raw_body: bytes,
                    headers: Mapping[str, str], query: Mapping[str, str],
                    config: PipelineConfig) -> dict:
    if provider not in PROVIDERS:
        raise NotFound(f"Unknown provider: {provider}")
    if not job_id:
        raise ValidationError("Missing job_id")

    job = Job.objects.filter(job_id=job_id).first()
    if job is None:
        raise NotFound("Job not found")
    if job.is_terminal:
        logger.info("%s delivery for %s skipped: job already %s", provider, job_id, job.status)
        return _ok(skipped=job.status)

    verify_signature(config.provider(provider), raw_body, job_id, headers, query, config.simulate_callback)
    payload = parse_body(raw_body)

    if provider == REPLICATE:
        status = str(payload.get("status") or "").lower()
        if status in REPLICATE_FAILED:
            Job.objects.mark_failed(job_id, f"replicate_{status}")
            close_queue_entries(job_id)
            logger.warning("Replicate reported %s for %s: %s", status, job_id, payload.get("error"))
            return _ok(status=Job.Status.FAILED)
        if status and status != "succeeded":
            return _ok(skipped=status)

    if not Job.objects.claim_delivery(job_id):
        logger.info("%s delivery for %s skipped: another delivery is in flight", provider, job_id)
        return _ok(skipped="in_flight")

    try:
        transcript = normalize(provider, payload, job)
        finalize(job, transcript, high_accuracy=delivery_is_high_accuracy(provider, job, query))
    except Exception:
        Job.objects.release_delivery(job_id)
        raise
    return _ok()


# ---------------------------------------------------------------------------
# Pull queue
# ---------------------------------------------------------------------------

def claim_queue_entry(user_id: str, job_id: Optional[str] = None) -> Optional[QueueEntry]:
    """Claim the oldest unpicked entry for ``user_id``; at most one per call."""
    candidates = QueueEntry.objects.filter(user_id=user_id, done=False, picked_at__isnull=True)
    if job_id:
        candidates = candidates.filter(job_id=job_id)
    for entry in candidates.order_by("created_at", "pk")[:5]:
        now = timezone.now()
        if QueueEntry.objects.filter(pk=entry.pk, picked_at__isnull=True).update(picked_at=now):
            entry.picked_at = now
            return entry
    return None


def transcribe_now(job: Job, config: PipelineConfig) -> tuple[Transcript, bool]:
    """Synchronous supplier call for the queue worker; returns (transcript, high_accuracy)."""
    audio_url = job.processed_url or job.source_url
    strategy = resolve_strategy(job.high_accuracy, config.supplier_a_allowed,
                                config.supplier_b_allowed, bool(audio_url))
    if strategy.use_a:
        payload = suppliers.transcribe_deepgram(config.deepgram, audio_url, language=job.language)
        return normalize(DEEPGRAM, payload, job), False
    if strategy.calls_b:
        payload = suppliers.transcribe_replicate(config.replicate, audio_url)
        return normalize(REPLICATE, payload, job), strategy.use_b
    raise SupplierError("No supplier available for this job", code="no_supplier_available")


def process_one(user_id: str, config: PipelineConfig, job_id: Optional[str] = None) -> dict:
    entry = claim_queue_entry(user_id, job_id)
    if entry is None:
        return {"processed": 0}

    job = Job.objects.get(job_id=entry.job_id)
    if job.is_terminal:
        close_queue_entries(job.job_id)
        return {"processed": 0, "job_id": job.job_id, "status": job.status}

    Job.objects.mark_processing(job.job_id)
    try:
        transcript, high_accuracy = transcribe_now(job, config)
        finalize(job, transcript, high_accuracy=high_accuracy)
    except Exception as e:
        logger.exception("Queue processing failed for %s", job.job_id)
        Job.objects.mark_failed(job.job_id, getattr(e, "code", "processing_failed"))
        close_queue_entries(job.job_id)
        return {"processed": 1, "job_id": job.job_id, "status": Job.Status.FAILED, "error": str(e)[:300]}

    job.refresh_from_db()
    return {"processed": 1, "job_id": job.job_id, "status": job.status}
