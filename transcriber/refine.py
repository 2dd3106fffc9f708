"""
Local spacing/punctuation normalization for Chinese transcripts.

Providers return CJK text with ASCII punctuation and stray spaces between
characters. The pass only runs when the detected language is Chinese and the
text is dominated by CJK characters; anything else passes through untouched.
"""

import logging
import re

from .segments import Segment, Transcript

logger = logging.getLogger(__name__)

_CJK = re.compile(r"[\u4e00-\u9fff]")
_LATIN = re.compile(r"[A-Za-z]")

_ASCII_TO_CJK = [
    (re.compile(r"([\u4e00-\u9fff])\s*,\s*"), r"\1，"),
    (re.compile(r"([\u4e00-\u9fff])\s*\.\s*"), r"\1。"),
    (re.compile(r"([\u4e00-\u9fff])\s*;\s*"), r"\1；"),
    (re.compile(r"([\u4e00-\u9fff])\s*:\s*"), r"\1："),
    (re.compile(r"([\u4e00-\u9fff])\s*!\s*"), r"\1！"),
    (re.compile(r"([\u4e00-\u9fff])\s*\?\s*"), r"\1？"),
]

_CONNECTORS = re.compile(
    r"([\u4e00-\u9fff])\s*(因为|由于|如果|虽然|但是|然而|不过|而且|另外|其次|最后|所以|因此|那么|然后|此外|比如|例如)"
)
_QUESTION_PARTICLE = re.compile(r"(吗|呢|吧)(?![。！？])")
_SENTENCE_END = re.compile(r"([。！？…]|[”’）】]|[.!?])$")

# Seconds of speech/silence that suggest a sentence or clause boundary
PERIOD_MIN_DURATION = 3.2
PERIOD_MIN_GAP = 1.0
COMMA_MIN_DURATION = 1.6
COMMA_MIN_GAP = 0.6


def is_chinese(language: str, text: str) -> bool:
    if "zh" not in (language or "").lower() or not text:
        return False
    cjk = len(_CJK.findall(text))
    latin = len(_LATIN.findall(text))
    letters = cjk + latin
    ratio_ok = (cjk / letters) >= 0.05 if letters else False
    return (ratio_ok or cjk >= 30) and cjk > latin * 1.2


def punctuate(text: str) -> str:
    if not text:
        return text
    t = re.sub(r"[\t\r\f]+", " ", text).replace("\u00a0", " ")
    t = re.sub(r"\s{2,}", " ", t)
    t = re.sub(r"(\d)\s+(?=\d)", r"\1", t)
    t = re.sub(r"([\u4e00-\u9fff])\s+(?=[\u4e00-\u9fff])", r"\1", t)
    t = re.sub(r"([\u4e00-\u9fff])([A-Za-z0-9])", r"\1 \2", t)
    t = re.sub(r"([A-Za-z0-9])([\u4e00-\u9fff])", r"\1 \2", t)
    for pattern, repl in _ASCII_TO_CJK:
        t = pattern.sub(repl, t)
    t = re.sub(r'"([^"]+)"', r"“\1”", t)
    t = re.sub(r"'([^']+)'", r"‘\1’", t)
    t = t.replace("(", "（").replace(")", "）")
    t = re.sub(r"([，。！？])\1+", r"\1", t)
    t = re.sub(r"\s*([，。！？；：、“”‘’（）])\s*", r"\1", t)
    return t.strip()


def _heuristic_punctuate(text: str) -> str:
    t = _CONNECTORS.sub(r"\1，\2", text)
    t = _QUESTION_PARTICLE.sub(r"\1？", t)
    return punctuate(t)


def _close_segment(seg: Segment, nxt: Segment | None, text: str) -> str:
    if _SENTENCE_END.search(text) or not _CJK.search(text):
        return text
    if re.search(r"[吗呢吧]$", text):
        return text + "？"
    duration = seg.end - seg.start
    gap = (nxt.start - seg.end) if nxt is not None else 0.0
    if duration >= PERIOD_MIN_DURATION or gap >= PERIOD_MIN_GAP:
        return text + "。"
    if duration >= COMMA_MIN_DURATION or gap >= COMMA_MIN_GAP:
        return text + "，"
    return text


def refine_transcript(transcript: Transcript) -> Transcript:
    """Normalize a Chinese transcript in place; returns it for chaining."""
    joined = transcript.text or "".join(s.text for s in transcript.segments)
    if not is_chinese(transcript.language, joined):
        return transcript

    changed = 0
    segments = transcript.segments
    for idx, seg in enumerate(segments):
        original = seg.text.strip()
        text = punctuate(original)
        if _CJK.search(text) and not re.search(r"[。！？]", text):
            text = _heuristic_punctuate(text)
        text = _close_segment(seg, segments[idx + 1] if idx + 1 < len(segments) else None, text)
        if text != original:
            seg.text = text
            changed += 1

    if segments:
        transcript.text = "".join(s.text.strip() for s in segments)
    else:
        transcript.text = punctuate(transcript.text)
    logger.info("Chinese refinement changed %d of %d segments", changed, len(segments))
    return transcript
