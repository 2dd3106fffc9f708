import hashlib
import re
from typing import Iterable, Optional
from uuid import uuid4

_VIDEO_ID_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?(?:.*&)?v=)([A-Za-z0-9_-]+)"),
    re.compile(r"(?:youtu\.be/)([A-Za-z0-9_-]+)"),
    re.compile(r"(?:youtube\.com/(?:embed|shorts|live|v)/)([A-Za-z0-9_-]+)"),
)
_BARE_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")

HA_SUFFIX = ":ha1"
STANDARD_SUFFIX = ":ha0"


def extract_video_id(url: str) -> Optional[str]:
    """Video id from a YouTube link, or the input itself when it is a bare 11-character id."""
    if not url:
        return None
    url = url.strip()
    for pattern in _VIDEO_ID_PATTERNS:
        m = pattern.search(url)
        if m:
            return m.group(1)
    if _BARE_ID.match(url):
        return url
    return None


def variant_suffix(high_accuracy: bool) -> str:
    return HA_SUFFIX if high_accuracy else STANDARD_SUFFIX


def source_identity(source_url: str, high_accuracy: bool) -> str:
    """
    Reuse-cache key: external video id (or sha1 of the URL for other sources)
    plus the accuracy variant suffix.
    """
    base = extract_video_id(source_url) or hashlib.sha1(source_url.strip().encode("utf-8")).hexdigest()
    return f"{base}{variant_suffix(high_accuracy)}"


def standard_variant(identity_key: str) -> str:
    if identity_key.endswith(HA_SUFFIX):
        return identity_key[: -len(HA_SUFFIX)] + STANDARD_SUFFIX
    return identity_key


def is_processed_asset(url: str, markers: Iterable[str]) -> bool:
    """True when the URL already points at audio we (or the uploader) stored."""
    return bool(url) and any(m and m in url for m in markers)


def audio_key(job_id: str, suffix: str = ".mp3") -> str:
    return f"audio/{job_id}/{uuid4().hex}{suffix}"
