"""
Shared transcript shapes and the output formats derived from them.

Every provider payload is normalized into a ``Transcript`` before anything is
persisted, so the txt/json/srt/vtt/md renderers only ever see one shape.
"""

import json
import math
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional


class PayloadShape(Enum):
    """Which part of a provider payload the segments were built from."""

    PARAGRAPHS = "paragraphs"
    SEGMENTS = "segments"
    WORDS = "words"
    FLAT = "flat"
    EMPTY = "empty"


@dataclass
class Segment:
    """A single time-stamped stretch of transcript text (seconds)."""

    start: float
    end: float
    text: str
    id: int = 0
    speaker: Optional[str] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        if data["speaker"] is None:
            data.pop("speaker")
        return data


@dataclass
class Transcript:
    text: str
    segments: list[Segment] = field(default_factory=list)
    language: str = ""
    duration: float = 0.0
    shape: PayloadShape = PayloadShape.EMPTY

    @property
    def last_end(self) -> float:
        return self.segments[-1].end if self.segments else 0.0

    @property
    def duration_sec(self) -> int:
        return int(math.ceil(self.last_end or self.duration or 0))

    def plain_text(self) -> str:
        if self.text:
            return self.text.strip()
        return "\n".join(s.text.strip() for s in self.segments if s.text.strip())


def renumber(segments: list[Segment]) -> list[Segment]:
    for idx, seg in enumerate(segments):
        seg.id = idx
    return segments


# -----------------------------------------------------
# Punctuation tidy-up shared by caption renderers
# -----------------------------------------------------
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.!?,:;])")
_SENTENCE_GAP = re.compile(r"([.!?])\s*([A-Z])")
_CLAUSE_GAP = re.compile(r"([,:;])\s*([a-zA-Z])")
_CJK_PUNCT = re.compile(r"\s*([。！？，；：])\s*")
_CJK_SENTENCE_GAP = re.compile(r"([。！？])\s*([A-Za-z\u4e00-\u9fff])")
_MULTI_SPACE = re.compile(r"\s+")


def tidy_punctuation(text: str) -> str:
    text = _SPACE_BEFORE_PUNCT.sub(r"\1", text)
    text = _SENTENCE_GAP.sub(r"\1 \2", text)
    text = _CLAUSE_GAP.sub(r"\1 \2", text)
    text = _CJK_PUNCT.sub(r"\1", text)
    text = _CJK_SENTENCE_GAP.sub(r"\1 \2", text)
    text = _MULTI_SPACE.sub(" ", text).strip()
    if text[:1].islower() and text[:1].isascii():
        text = text[0].upper() + text[1:]
    return text


# -----------------------------------------------------
# Timestamps
# -----------------------------------------------------
def srt_timestamp(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    total_ms = int(round(seconds * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def vtt_timestamp(seconds: float) -> str:
    return srt_timestamp(seconds).replace(",", ".")


def clock(seconds: float) -> str:
    """MM:SS, or H:MM:SS past the hour."""
    seconds = int(max(0.0, float(seconds)))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


# -----------------------------------------------------
# Renderers
# -----------------------------------------------------
def to_txt(transcript: Transcript) -> str:
    return transcript.plain_text()


def to_json(transcript: Transcript) -> str:
    return json.dumps([s.as_dict() for s in transcript.segments], ensure_ascii=False)


def to_srt(transcript: Transcript) -> str:
    blocks = []
    for idx, seg in enumerate(transcript.segments, start=1):
        blocks.append(
            f"{idx}\n{srt_timestamp(seg.start)} --> {srt_timestamp(seg.end)}\n{tidy_punctuation(seg.text)}\n"
        )
    return "\n".join(blocks)


def to_vtt(transcript: Transcript) -> str:
    if not transcript.segments:
        return ""
    blocks = [
        f"{vtt_timestamp(seg.start)} --> {vtt_timestamp(seg.end)}\n{tidy_punctuation(seg.text)}\n"
        for seg in transcript.segments
    ]
    return "WEBVTT\n\n" + "\n".join(blocks)


def to_markdown(transcript: Transcript, title: str = "") -> str:
    lines = []
    if title:
        lines.append(f"# {title}\n")
    lines.append("## Transcription\n")
    lines.append(f"**Language:** {transcript.language or 'unknown'}")
    lines.append(f"**Duration:** {transcript.duration_sec}s\n")
    lines.append("### Content\n")
    if transcript.segments:
        for seg in transcript.segments:
            lines.append(f"**[{clock(seg.start)}]** {tidy_punctuation(seg.text)}\n")
    else:
        lines.append(tidy_punctuation(transcript.text))
    return "\n".join(lines).rstrip() + "\n"


def render_all(transcript: Transcript, title: str = "") -> dict[str, str]:
    """Every output format keyed by its Result format name."""
    return {
        "txt": to_txt(transcript),
        "json": to_json(transcript),
        "srt": to_srt(transcript),
        "vtt": to_vtt(transcript),
        "md": to_markdown(transcript, title),
    }


# -----------------------------------------------------
# Title inference
# -----------------------------------------------------
TITLE_WORDS = 8
TITLE_MAX_CHARS = 100


def infer_title(text: str) -> str:
    words = text.split()
    if not words:
        return ""
    title = " ".join(words[:TITLE_WORDS])
    if len(words) > TITLE_WORDS:
        title += "..."
    if len(title) > TITLE_MAX_CHARS:
        title = title[: TITLE_MAX_CHARS - 3] + "..."
    return title
