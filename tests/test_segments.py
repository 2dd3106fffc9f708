import json

from transcriber.segments import (
    PayloadShape,
    Segment,
    Transcript,
    infer_title,
    render_all,
    srt_timestamp,
    to_markdown,
    to_srt,
    to_vtt,
    vtt_timestamp,
)


def _transcript():
    return Transcript(
        text="",
        segments=[
            Segment(start=0.0, end=2.5, text="hello there.", id=0),
            Segment(start=2.5, end=61.25, text="General Kenobi.", id=1, speaker="1"),
        ],
        language="en",
        shape=PayloadShape.PARAGRAPHS,
    )


def test_timestamps():
    assert srt_timestamp(3723.5) == "01:02:03,500"
    assert vtt_timestamp(0.0421) == "00:00:00.042"
    assert srt_timestamp(-4) == "00:00:00,000"


def test_duration_is_ceil_of_last_segment_end():
    assert _transcript().duration_sec == 62


def test_txt_joins_segment_texts_when_no_flat_text():
    out = render_all(_transcript())
    assert out["txt"] == "hello there.\nGeneral Kenobi."


def test_json_keeps_speaker_only_when_known():
    data = json.loads(render_all(_transcript())["json"])
    assert data[0] == {"start": 0.0, "end": 2.5, "text": "hello there.", "id": 0}
    assert data[1]["speaker"] == "1"


def test_srt_and_vtt_blocks():
    srt = to_srt(_transcript())
    assert srt.startswith("1\n00:00:00,000 --> 00:00:02,500\nHello there.\n")
    assert "2\n00:00:02,500 --> 00:01:01,250\nGeneral Kenobi.\n" in srt

    vtt = to_vtt(_transcript())
    assert vtt.startswith("WEBVTT\n\n00:00:00.000 --> 00:00:02.500\n")


def test_vtt_is_empty_without_segments():
    assert to_vtt(Transcript(text="")) == ""


def test_markdown_has_title_and_clock_marks():
    md = to_markdown(_transcript(), "Star Wars")
    assert md.startswith("# Star Wars\n")
    assert "**[00:02]** General Kenobi." in md
    assert "**Duration:** 62s" in md


def test_infer_title():
    assert infer_title("Hello world.") == "Hello world."
    assert infer_title("one two three four five six seven eight nine ten") == (
        "one two three four five six seven eight..."
    )
    long_words = " ".join(["x" * 30] * 8)
    title = infer_title(long_words)
    assert len(title) == 100
    assert title.endswith("...")
    assert infer_title("   ") == ""
