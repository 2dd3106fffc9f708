"""
Supplier fan-out.

``plan`` turns a strategy into per-provider submissions (each carrying a
signed callback URL), ``submit`` performs one of them and ``settle`` decides
the job's fate once every submission has returned.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Union
from urllib.parse import urlencode

from django.urls import reverse

from . import suppliers
from .config import DEEPGRAM, REPLICATE, PipelineConfig
from .exceptions import SupplierError
from .models import Job
from .signing import callback_token
from .strategy import SupplierStrategy

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
ALL_DISPATCH_FAILED = "all_dispatch_failed"


@dataclass(frozen=True)
class DispatchTask:
    provider: str
    audio_url: str
    callback_url: str
    diarize: bool = False
    language: str = ""

    def as_dict(self) -> dict:
        return asdict(self)


def build_callback_url(config: PipelineConfig, provider: str, job_id: str, **extra) -> str:
    """
    Absolute callback URL for ``provider``. When a webhook secret exists the
    URL carries ``cb_sig`` (HMAC over the job id) as a second auth channel.
    """
    path = reverse("transcriber:callback", kwargs={"provider": provider})
    params = {"job_id": job_id}
    params.update({k: v for k, v in extra.items() if v})
    secret = config.provider(provider).webhook_secret
    if secret:
        params["cb_sig"] = callback_token(secret, job_id)
    return f"{config.callback_base_url}{path}?{urlencode(params)}"


def plan(job: Job, strategy: SupplierStrategy, config: PipelineConfig, audio_url: str, *,
         diarize: bool = False, language: str = "") -> Union[list[DispatchTask], str]:
    """
    Submissions for ``strategy``; returns CANCELLED as soon as the job is seen
    cancelled. Status is re-read before each provider is added.
    """
    tasks = []
    if strategy.use_a:
        if Job.objects.is_cancelled(job.job_id):
            return CANCELLED
        tasks.append(DispatchTask(
            provider=DEEPGRAM,
            audio_url=audio_url,
            callback_url=build_callback_url(config, DEEPGRAM, job.job_id),
            diarize=diarize,
            language=language,
        ))
    if strategy.calls_b:
        if Job.objects.is_cancelled(job.job_id):
            return CANCELLED
        # ha=1: forced high accuracy; dg_missing=1: standard job that fell back to B
        marker = {"ha": "1"} if strategy.use_b else {"dg_missing": "1"}
        tasks.append(DispatchTask(
            provider=REPLICATE,
            audio_url=audio_url,
            callback_url=build_callback_url(config, REPLICATE, job.job_id, **marker),
        ))
    logger.info(
        "Dispatch plan for %s: use_a=%s use_b=%s fallback_to_b=%s -> %s",
        job.job_id, strategy.use_a, strategy.use_b, strategy.fallback_to_b, [t.provider for t in tasks],
    )
    return tasks


def submit(job_id: str, task: DispatchTask, config: PipelineConfig) -> bool:
    """One provider submission. Never raises; False means this target failed."""
    if Job.objects.is_cancelled(job_id):
        logger.info("Job %s cancelled, skipping %s submission", job_id, task.provider)
        return False

    provider = config.provider(task.provider)
    try:
        if task.provider == DEEPGRAM:
            suppliers.submit_deepgram(
                provider, task.audio_url, task.callback_url,
                diarize=task.diarize, language=task.language, timeout=config.timeout_seconds,
            )
        else:
            suppliers.submit_replicate(provider, task.audio_url, task.callback_url, timeout=config.timeout_seconds)
    except SupplierError as e:
        logger.warning("%s submission for job %s failed: %s", task.provider, job_id, e)
        return False
    except Exception:
        logger.exception("%s submission for job %s raised", task.provider, job_id)
        return False

    logger.info("%s submission for job %s accepted", task.provider, job_id)
    return True


def settle(job_id: str, outcomes: Iterable[bool]) -> str:
    """
    Resolve a finished fan-out. Any accepted submission leaves the job in
    processing, awaiting its webhook; none accepted fails it.
    """
    outcomes = list(outcomes)
    if any(outcomes):
        logger.info("Job %s: %d/%d submissions accepted", job_id, sum(1 for o in outcomes if o), len(outcomes))
        return Job.Status.PROCESSING
    if Job.objects.mark_failed(job_id, ALL_DISPATCH_FAILED):
        logger.warning("Job %s failed: every supplier submission failed", job_id)
        return Job.Status.FAILED
    return Job.objects.filter(job_id=job_id).values_list("status", flat=True).first() or Job.Status.FAILED
