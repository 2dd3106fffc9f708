from transcriber.extractors import (
    DEEPGRAM_EXTRACTORS,
    REPLICATE_EXTRACTORS,
    extract,
    group_words,
)
from transcriber.segments import PayloadShape


def _dg(alternative: dict, **extra) -> dict:
    payload = {"results": {"channels": [{"alternatives": [alternative]}]}}
    payload.update(extra)
    return payload


def _words(n: int, start: float = 0.0) -> list[dict]:
    return [{"word": f"w{i}", "start": start + i, "end": start + i + 0.5} for i in range(n)]


def test_paragraphs_take_priority_over_words():
    payload = _dg({
        "transcript": "Hi. Bye.",
        "words": _words(4),
        "paragraphs": {"paragraphs": [{"sentences": [
            {"text": "Hi.", "start": 0.0, "end": 1.0},
            {"text": "Bye.", "start": 1.2, "end": 2.0},
        ]}]},
    })
    t = extract(payload, DEEPGRAM_EXTRACTORS)
    assert t.shape is PayloadShape.PARAGRAPHS
    assert [s.text for s in t.segments] == ["Hi.", "Bye."]
    assert [s.id for s in t.segments] == [0, 1]


def test_words_grouped_every_fifteen():
    t = extract(_dg({"words": _words(20)}), DEEPGRAM_EXTRACTORS)
    assert t.shape is PayloadShape.WORDS
    assert len(t.segments) == 2
    assert len(t.segments[0].text.split()) == 15
    assert t.segments[1].start == 15.0
    assert t.segments[1].end == 19.5


def test_words_grouped_at_sentence_punctuation():
    words = [
        {"word": "hello", "punctuated_word": "Hello", "start": 0.0, "end": 0.4},
        {"word": "world", "punctuated_word": "world.", "start": 0.5, "end": 0.9},
        {"word": "again", "punctuated_word": "Again", "start": 1.5, "end": 2.0},
    ]
    segments = group_words(words)
    assert [s.text for s in segments] == ["Hello world.", "Again"]
    assert (segments[0].start, segments[0].end) == (0.0, 0.9)


def test_flat_transcript_yields_single_full_length_segment():
    t = extract({"transcript": "Hello world."}, DEEPGRAM_EXTRACTORS, duration=12.0)
    assert t.shape is PayloadShape.FLAT
    assert len(t.segments) == 1
    seg = t.segments[0]
    assert (seg.start, seg.end, seg.text) == (0.0, 12.0, "Hello world.")


def test_deepgram_language_and_top_level_segments():
    payload = {
        "results": {"channels": [{"detected_language": "de", "alternatives": [{"transcript": ""}]}]},
        "segments": [{"start": 0, "end": 3, "text": "Hallo", "speaker": 0}],
    }
    t = extract(payload, DEEPGRAM_EXTRACTORS)
    assert t.shape is PayloadShape.SEGMENTS
    assert t.language == "de"
    assert t.segments[0].speaker == 0


def test_replicate_nested_output_segments():
    payload = {
        "status": "succeeded",
        "output": {"output": {
            "transcription": "Bonjour tout le monde",
            "detected_language": "fr",
            "segments": [{"start": 0.0, "end": 1.5, "text": " Bonjour"}, {"start": 1.5, "end": 3.0, "text": "tout le monde"}],
        }},
    }
    t = extract(payload, REPLICATE_EXTRACTORS)
    assert t.shape is PayloadShape.SEGMENTS
    assert t.language == "fr"
    assert t.text == "Bonjour tout le monde"
    assert t.segments[0].text == "Bonjour"


def test_replicate_flat_transcription():
    t = extract({"output": {"transcription": "just text"}}, REPLICATE_EXTRACTORS, duration=4.0)
    assert t.shape is PayloadShape.FLAT
    assert t.segments[0].end == 4.0


def test_unrecognized_payload_is_empty_not_error():
    t = extract({"unexpected": True}, DEEPGRAM_EXTRACTORS, duration=3.0, language="en")
    assert t.shape is PayloadShape.EMPTY
    assert t.segments == []
    assert t.language == "en"
