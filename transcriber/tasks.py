import logging
from typing import Optional

from celery import chord, group, shared_task

from . import audio, dispatch
from .config import PipelineConfig
from .exceptions import AudioResolutionError
from .metering import is_paid_tier
from .models import Job, QueueEntry
from .strategy import resolve_strategy

logger = logging.getLogger(__name__)


def fan_out(job_id: str, tasks: list[dispatch.DispatchTask]):
    """Submit every task in parallel; settle_dispatch runs once all have returned."""
    Job.objects.mark_processing(job_id)
    header = group(submit_to_supplier.s(job_id, t.as_dict()) for t in tasks)
    return chord(header)(settle_dispatch.s(job_id))


def prepare(job_id: str, *, user_tier: Optional[str] = None, high_accuracy: Optional[bool] = None,
            enable_diarization: bool = False, preferred_language: str = "",
            video_prefetch: Optional[dict] = None, inline: bool = False) -> dict:
    """
    Resolve audio, pick suppliers and dispatch. With ``inline`` the submissions
    run in this process and the returned status reflects their settlement.
    """
    config = PipelineConfig.from_settings()
    job = Job.objects.filter(job_id=job_id).first()
    if job is None:
        return {"job_id": job_id, "status": "missing"}
    if job.status == Job.Status.CANCELLED:
        return {"job_id": job_id, "status": Job.Status.CANCELLED, "cancelled": True}
    if job.is_terminal:
        return {"job_id": job_id, "status": job.status}

    updates = {}
    if user_tier:
        updates["user_tier"] = user_tier
    if high_accuracy is not None:
        updates["high_accuracy"] = bool(high_accuracy)
    if preferred_language:
        updates["language"] = preferred_language[:16]
    if updates:
        Job.objects.filter(job_id=job_id).update(**updates)
        job.refresh_from_db()

    try:
        resolution = audio.resolve(job, config, prefetch=audio.VideoPrefetch.from_dict(video_prefetch))
    except AudioResolutionError as e:
        logger.warning("Audio resolution failed for %s: %s", job_id, e)
        Job.objects.mark_failed(job_id, Job.MANUAL_UPLOAD_REQUIRED)
        return {"job_id": job_id, "status": Job.Status.FAILED, "error": Job.MANUAL_UPLOAD_REQUIRED}

    if config.queue_fallback:
        QueueEntry.objects.get_or_create(
            job_id=job_id, done=False, defaults={"user_id": job.user_id, "tier": job.user_tier}
        )
        logger.info("Job %s parked in the pull queue", job_id)
        return {"job_id": job_id, "status": Job.Status.PENDING, "queued": True}

    strategy = resolve_strategy(
        force_high_accuracy=job.high_accuracy,
        supplier_a_allowed=config.supplier_a_allowed,
        supplier_b_allowed=config.supplier_b_allowed,
        has_resolved_audio=bool(resolution.processed_url),
    )
    tasks = dispatch.plan(
        job, strategy, config, resolution.processed_url,
        diarize=enable_diarization and is_paid_tier(job.user_tier),
        language=preferred_language,
    )
    if tasks == dispatch.CANCELLED:
        return {"job_id": job_id, "status": Job.Status.CANCELLED, "cancelled": True}
    if not tasks:
        Job.objects.mark_failed(job_id, "no_supplier_available")
        return {"job_id": job_id, "status": Job.Status.FAILED, "error": "no_supplier_available"}

    providers = [t.provider for t in tasks]
    if inline:
        Job.objects.mark_processing(job_id)
        status = dispatch.settle(job_id, [dispatch.submit(job_id, t, config) for t in tasks])
        return {"job_id": job_id, "status": status, "providers": providers}

    fan_out(job_id, tasks)
    return {"job_id": job_id, "status": Job.Status.PROCESSING, "providers": providers}


@shared_task
def prepare_job(job_id: str, options: Optional[dict] = None) -> dict:
    return prepare(job_id, **(options or {}))


@shared_task
def submit_to_supplier(job_id: str, task: dict) -> bool:
    return dispatch.submit(job_id, dispatch.DispatchTask(**task), PipelineConfig.from_settings())


@shared_task
def settle_dispatch(outcomes: list, job_id: str) -> str:
    return dispatch.settle(job_id, outcomes)
