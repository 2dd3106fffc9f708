"""
Shell-outs used to turn a user-supplied link into a supplier-reachable file:
yt-dlp for linked videos, a streamed HTTP GET for direct URLs, ffmpeg for
free-tier preview clips and ffprobe for durations.
"""

import json
import logging
import subprocess
from pathlib import Path

import requests
from django.conf import settings

from .exceptions import MediaToolError

logger = logging.getLogger(__name__)


def _run(cmd: list[str], *, timeout: int | None = None) -> subprocess.CompletedProcess:
    timeout = timeout or settings.MEDIA_TOOL_TIMEOUT_SECONDS
    try:
        return subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout)
    except subprocess.CalledProcessError as e:
        err = e.stderr.decode("utf-8", errors="ignore") if e.stderr else str(e)
        raise MediaToolError(f"{cmd[0]} failed (rc={e.returncode}): {err[:300]}")
    except subprocess.TimeoutExpired:
        raise MediaToolError(f"{cmd[0]} timed out after {timeout}s", code="media_tool_timeout")
    except FileNotFoundError:
        raise MediaToolError(f"{cmd[0]} is not installed", code="media_tool_missing")


def fetch_video_metadata(video_url: str) -> dict:
    """yt-dlp --dump-json; returns at least 'id', 'title' and 'duration'."""
    result = _run(["yt-dlp", "--dump-json", "--no-playlist", "--skip-download", video_url], timeout=60)
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise MediaToolError(f"Failed to parse yt-dlp JSON: {e}")


def download_video_audio(video_url: str, output_dir: Path) -> Path:
    """Download the audio-only stream of a linked video as mp3."""
    output_dir.mkdir(parents=True, exist_ok=True)
    _run([
        "yt-dlp",
        "--no-playlist",
        "-f", "bestaudio/best",
        "-x", "--audio-format", "mp3",
        "-o", str(output_dir / "source.%(ext)s"),
        video_url,
    ])
    found = sorted(output_dir.glob("source.*"))
    if not found:
        raise MediaToolError("No audio file found after download")
    logger.info("Downloaded audio: %s", found[0])
    return found[0]


def download_url(url: str, output_dir: Path, suffix: str = "") -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    dest = output_dir / f"source{suffix or '.bin'}"
    try:
        with requests.get(url, stream=True, timeout=30) as resp:
            resp.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in resp.iter_content(chunk_size=1024 * 256):
                    f.write(chunk)
    except requests.RequestException as e:
        raise MediaToolError(f"Download of {url} failed: {e}", code="download_failed")
    return dest


def clip_audio(input_path: Path, seconds: int, output_dir: Path) -> Path:
    """First ``seconds`` of the input as 128k mp3 (free-tier preview)."""
    output_dir.mkdir(parents=True, exist_ok=True)
    out = output_dir / f"clip_{seconds}s.mp3"
    _run([
        "ffmpeg",
        "-y",
        "-i", str(input_path),
        "-t", str(seconds),
        "-vn",
        "-c:a", "libmp3lame",
        "-b:a", "128k",
        str(out),
    ])
    return out


def probe_duration(path_or_url: str) -> float:
    """Duration in seconds via ffprobe (accepts local paths and URLs)."""
    result = _run([
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path_or_url),
    ], timeout=60)
    try:
        return float(result.stdout.decode("utf-8").strip() or 0)
    except ValueError:
        return 0.0
