"""
Audio resolution: turn a job's ``source_url`` into a URL every supplier can
fetch, reusing a previously processed asset when one exists.

Order of preference:
  1. the source already is a processed asset -> pass through (free tier gets a
     preview clip);
  2. a completed job with the same source identity -> reuse its asset;
  3. an uploaded asset announced by the intake flow (video prefetch hint);
  4. download, optionally clip, upload to the bucket.
"""

import logging
import math
import mimetypes
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from . import media, s3
from .config import PipelineConfig
from .exceptions import AudioResolutionError, MediaToolError
from .metering import is_paid_tier
from .models import Job
from .utils import audio_key, extract_video_id, is_processed_asset, source_identity, standard_variant

logger = logging.getLogger(__name__)


@dataclass
class VideoPrefetch:
    link: str = ""
    title: str = ""
    duration: Optional[float] = None
    is_uploaded_asset: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["VideoPrefetch"]:
        if not isinstance(data, dict):
            return None
        duration = data.get("duration")
        prefetch = cls(
            link=str(data.get("link") or ""),
            title=str(data.get("title") or ""),
            duration=float(duration) if isinstance(duration, (int, float)) else None,
            is_uploaded_asset=bool(data.get("isUploadedAsset") or data.get("is_uploaded_asset")),
        )
        return prefetch if (prefetch.link or prefetch.title or prefetch.duration) else None


@dataclass
class AudioResolution:
    processed_url: str
    title: str = ""
    duration_seconds: Optional[int] = None
    from_cache: bool = False
    identity_key: str = ""
    clipped: bool = False   # preview clips never enter the reuse cache


def find_reusable(identity_key: str) -> Optional[Job]:
    """
    Newest completed job with a processed asset for this identity. A
    high-accuracy key falls back to the standard variant; never the reverse.
    """
    candidates = (
        Job.objects.filter(status=Job.Status.COMPLETED)
        .exclude(processed_url="")
        .order_by("-created_at", "-pk")
    )
    hit = candidates.filter(source_identity_key=identity_key).first()
    fallback = standard_variant(identity_key)
    if hit is None and fallback != identity_key:
        hit = candidates.filter(source_identity_key=fallback).first()
    return hit


def _ceil(value) -> Optional[int]:
    if value is None:
        return None
    return int(math.ceil(float(value)))


def _suffix_for(url: str) -> str:
    return Path(urlparse(url).path).suffix.lower()


def _work_dir(job_id: str) -> Path:
    return Path(settings.MEDIA_WORK_DIR) / job_id


def _store(local: Path, job_id: str) -> str:
    content_type, _ = mimetypes.guess_type(local.name)
    return s3.upload_file(str(local), audio_key(job_id, local.suffix or ".mp3"), content_type=content_type)


def clip_for_preview(url: str, job_id: str, seconds: int) -> str:
    """Upload the first ``seconds`` of an already processed asset; returns the clip URL."""
    workdir = _work_dir(job_id) / "preview"
    try:
        local = media.download_url(url, workdir, _suffix_for(url))
        return _store(media.clip_audio(local, seconds, workdir), job_id)
    finally:
        shutil.rmtree(workdir, ignore_errors=True)


def fetch_and_store(job: Job, config: PipelineConfig, prefetch: Optional[VideoPrefetch] = None) -> AudioResolution:
    source = job.source_url
    title = prefetch.title if prefetch else ""
    duration = prefetch.duration if prefetch else None
    workdir = _work_dir(job.job_id)
    try:
        if prefetch and prefetch.link:
            local = media.download_url(prefetch.link, workdir, _suffix_for(prefetch.link))
        elif extract_video_id(source) and job.source_type == Job.SourceType.LINKED_VIDEO:
            meta = media.fetch_video_metadata(source)
            title = title or str(meta.get("title") or "")
            duration = duration or meta.get("duration")
            local = media.download_video_audio(source, workdir)
        else:
            local = media.download_url(source, workdir, _suffix_for(source))

        if not duration:
            duration = media.probe_duration(str(local))
        clipped = False
        if not is_paid_tier(job.user_tier) and duration and duration > config.free_preview_seconds:
            local = media.clip_audio(local, config.free_preview_seconds, workdir)
            clipped = True

        url = _store(local, job.job_id)
    finally:
        shutil.rmtree(workdir, ignore_errors=True)

    logger.info("Stored audio for job %s at %s", job.job_id, url)
    return AudioResolution(processed_url=url, title=title, duration_seconds=_ceil(duration), clipped=clipped)


def _resolve(job: Job, config: PipelineConfig, high_accuracy: bool,
             prefetch: Optional[VideoPrefetch]) -> AudioResolution:
    source = job.source_url

    if is_processed_asset(source, config.processed_url_markers):
        url = source
        duration = None
        if not is_paid_tier(job.user_tier):
            try:
                duration = media.probe_duration(source)
                # unknown length is clipped too
                if not duration or duration > config.free_preview_seconds:
                    url = clip_for_preview(source, job.job_id, config.free_preview_seconds)
            except (MediaToolError, BotoCoreError, ClientError) as e:
                logger.warning("Preview clip failed for job %s, using full asset: %s", job.job_id, e)
        return AudioResolution(processed_url=url, duration_seconds=_ceil(duration or None))

    identity_key = source_identity(source, high_accuracy)
    cached = find_reusable(identity_key)
    if cached is not None:
        logger.info("Reusing audio of job %s for job %s (%s)", cached.job_id, job.job_id, identity_key)
        title = "" if cached.title in Job.PLACEHOLDER_TITLES else cached.title
        return AudioResolution(
            processed_url=cached.processed_url,
            title=title,
            duration_seconds=cached.original_duration_sec or cached.duration_sec,
            from_cache=True,
            identity_key=identity_key,
        )

    if prefetch and prefetch.link and prefetch.is_uploaded_asset:
        return AudioResolution(
            processed_url=prefetch.link,
            title=prefetch.title,
            duration_seconds=_ceil(prefetch.duration),
            identity_key=identity_key,
        )

    try:
        resolution = fetch_and_store(job, config, prefetch)
    except (MediaToolError, BotoCoreError, ClientError) as e:
        raise AudioResolutionError(f"Could not resolve audio for {job.job_id}: {e}")
    if not resolution.clipped:
        resolution.identity_key = identity_key
    return resolution


def resolve(job: Job, config: PipelineConfig, *, high_accuracy: Optional[bool] = None,
            prefetch: Optional[VideoPrefetch] = None) -> AudioResolution:
    """
    Resolve and persist the supplier-reachable audio URL for ``job``.

    Raises AudioResolutionError when nothing reachable could be produced; the
    caller marks the job failed with the manual-upload marker.
    """
    if high_accuracy is None:
        high_accuracy = job.high_accuracy
    resolution = _resolve(job, config, high_accuracy, prefetch)
    if not resolution.processed_url:
        raise AudioResolutionError(f"No audio URL for {job.job_id}")

    fields = {}
    if resolution.identity_key:
        fields["source_identity_key"] = resolution.identity_key
    if resolution.title and job.title in Job.PLACEHOLDER_TITLES:
        fields["title"] = resolution.title[:255]
    if resolution.duration_seconds and resolution.duration_seconds > (job.original_duration_sec or 0):
        fields["original_duration_sec"] = resolution.duration_seconds
    Job.objects.set_processed_url(job.job_id, resolution.processed_url, **fields)
    return resolution
