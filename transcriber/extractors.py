"""
Provider payload normalization.

Webhook bodies are loosely typed JSON with several optional nesting paths.
Each extractor recognizes exactly one shape and returns ``None`` when the
payload is not that shape; ``extract`` walks a provider's extractors in
priority order and keeps the first result that produced segments. The flat
transcript extractor always produces a segment when any text exists, so it
goes last.
"""

import logging
import re
from typing import Callable, Optional

from .segments import PayloadShape, Segment, Transcript, renumber

logger = logging.getLogger(__name__)

WORDS_PER_SEGMENT = 15
_SENTENCE_END = re.compile(r"[.!?。！？]$")

Extractor = Callable[[dict, float], Optional[Transcript]]


def _num(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _first(seq):
    if isinstance(seq, list) and seq:
        return seq[0] if isinstance(seq[0], dict) else {}
    return {}


# -----------------------------------------------------
# Deepgram (supplier A)
# -----------------------------------------------------
def _dg_channel(payload: dict) -> dict:
    return _first((payload.get("results") or {}).get("channels"))


def _dg_alternative(payload: dict) -> dict:
    return _first(_dg_channel(payload).get("alternatives"))


def deepgram_language(payload: dict) -> str:
    channel = _dg_channel(payload)
    alt = _dg_alternative(payload)
    languages = alt.get("languages") or []
    return (
        channel.get("detected_language")
        or (languages[0] if languages else "")
        or (payload.get("metadata") or {}).get("language")
        or ""
    )


def deepgram_duration(payload: dict) -> float:
    return _num((payload.get("metadata") or {}).get("duration"))


def deepgram_text(payload: dict) -> str:
    text = _dg_alternative(payload).get("transcript")
    if isinstance(text, str) and text.strip():
        return text.strip()
    text = payload.get("transcript")
    return text.strip() if isinstance(text, str) else ""


def from_paragraphs(payload: dict, duration: float) -> Optional[Transcript]:
    paragraphs = ((_dg_alternative(payload).get("paragraphs") or {}).get("paragraphs")) or []
    if not isinstance(paragraphs, list) or not paragraphs:
        return None
    segments = []
    for para in paragraphs:
        for sentence in para.get("sentences") or []:
            text = str(sentence.get("text") or "").strip()
            if not text:
                continue
            segments.append(Segment(start=_num(sentence.get("start")), end=_num(sentence.get("end")), text=text))
    if not segments:
        return None
    return Transcript(
        text=deepgram_text(payload),
        segments=renumber(segments),
        language=deepgram_language(payload),
        duration=duration,
        shape=PayloadShape.PARAGRAPHS,
    )


def group_words(words: list[dict], max_words: int = WORDS_PER_SEGMENT) -> list[Segment]:
    """Close a segment at sentence-ending punctuation or after ``max_words`` words."""
    segments = []
    buf: list[str] = []
    start = end = 0.0
    for word in words:
        token = str(word.get("punctuated_word") or word.get("word") or "").strip()
        if not token:
            continue
        if not buf:
            start = _num(word.get("start"))
        buf.append(token)
        end = _num(word.get("end"), start)
        if _SENTENCE_END.search(token) or len(buf) >= max_words:
            segments.append(Segment(start=start, end=end, text=" ".join(buf)))
            buf = []
    if buf:
        segments.append(Segment(start=start, end=end, text=" ".join(buf)))
    return renumber(segments)


def from_words(payload: dict, duration: float) -> Optional[Transcript]:
    words = _dg_alternative(payload).get("words") or []
    if not isinstance(words, list) or not words:
        return None
    segments = group_words(words)
    if not segments:
        return None
    return Transcript(
        text=deepgram_text(payload),
        segments=segments,
        language=deepgram_language(payload),
        duration=duration,
        shape=PayloadShape.WORDS,
    )


def _segments_from_list(items) -> list[Segment]:
    if not isinstance(items, list):
        return []
    segments = []
    for item in items:
        if not isinstance(item, dict):
            continue
        text = str(item.get("text") or "").strip()
        if not text:
            continue
        segments.append(
            Segment(
                start=_num(item.get("start")),
                end=_num(item.get("end")),
                text=text,
                speaker=item.get("speaker"),
            )
        )
    return renumber(segments)


def from_top_level_segments(payload: dict, duration: float) -> Optional[Transcript]:
    segments = _segments_from_list(payload.get("segments"))
    if not segments:
        return None
    return Transcript(
        text=deepgram_text(payload),
        segments=segments,
        language=deepgram_language(payload),
        duration=duration,
        shape=PayloadShape.SEGMENTS,
    )


def flat_transcript(text: str, language: str, duration: float) -> Optional[Transcript]:
    text = (text or "").strip()
    if not text:
        return None
    return Transcript(
        text=text,
        segments=[Segment(start=0.0, end=max(0.0, duration), text=text)],
        language=language,
        duration=duration,
        shape=PayloadShape.FLAT,
    )


def from_deepgram_flat(payload: dict, duration: float) -> Optional[Transcript]:
    return flat_transcript(deepgram_text(payload), deepgram_language(payload), duration)


DEEPGRAM_EXTRACTORS: tuple[Extractor, ...] = (
    from_paragraphs,
    from_words,
    from_top_level_segments,
    from_deepgram_flat,
)


# -----------------------------------------------------
# Replicate Whisper (supplier B)
# -----------------------------------------------------
def replicate_output(payload: dict) -> dict:
    out = payload.get("output") or {}
    if isinstance(out, dict) and isinstance(out.get("output"), dict):
        out = out["output"]
    return out if isinstance(out, dict) else {}


def replicate_duration(payload: dict) -> float:
    outer = payload.get("output")
    outer_duration = outer.get("duration") if isinstance(outer, dict) else None
    return _num(replicate_output(payload).get("duration")) or _num(outer_duration)


def from_replicate_segments(payload: dict, duration: float) -> Optional[Transcript]:
    out = replicate_output(payload)
    segments = _segments_from_list(out.get("segments"))
    if not segments:
        return None
    text = out.get("transcription")
    return Transcript(
        text=text.strip() if isinstance(text, str) else "",
        segments=segments,
        language=str(out.get("detected_language") or ""),
        duration=duration,
        shape=PayloadShape.SEGMENTS,
    )


def from_replicate_flat(payload: dict, duration: float) -> Optional[Transcript]:
    out = replicate_output(payload)
    text = out.get("transcription")
    return flat_transcript(
        text if isinstance(text, str) else "", str(out.get("detected_language") or ""), duration
    )


REPLICATE_EXTRACTORS: tuple[Extractor, ...] = (
    from_replicate_segments,
    from_replicate_flat,
)


def extract(payload: dict, extractors: tuple[Extractor, ...], duration: float = 0.0,
            language: str = "") -> Transcript:
    """
    Run ``extractors`` in order and return the first transcript with segments.

    ``duration`` is the best known media length; it bounds the synthesized
    segment of a flat transcript. An unrecognized payload yields an empty
    transcript rather than an error.
    """
    for extractor in extractors:
        transcript = extractor(payload, duration)
        if transcript is not None and transcript.segments:
            if not transcript.language:
                transcript.language = language
            logger.info("Extracted %d segments via %s", len(transcript.segments), transcript.shape.value)
            return transcript
    logger.warning("No transcript content recognized in payload keys=%s", sorted(payload)[:10])
    return Transcript(text="", language=language, duration=duration, shape=PayloadShape.EMPTY)
