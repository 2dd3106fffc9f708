from transcriber.refine import is_chinese, punctuate, refine_transcript
from transcriber.segments import Segment, Transcript


def test_is_chinese_requires_language_and_script():
    assert is_chinese("zh", "你好世界")
    assert is_chinese("zh-CN", "你好世界")
    assert not is_chinese("en", "你好世界")
    assert not is_chinese("zh", "hello world this is english")


def test_punctuate_respaces_and_localizes():
    assert punctuate("你好 世界 , 今天 天气 很好") == "你好世界，今天天气很好"
    assert punctuate("我有 3 个 apple") == "我有 3 个 apple"


def test_refine_closes_long_segments_with_full_stop():
    t = Transcript(
        text="",
        segments=[Segment(start=0.0, end=4.0, text="你好 世界 , 今天 天气 很好")],
        language="zh",
    )
    refine_transcript(t)
    assert t.segments[0].text == "你好世界，今天天气很好。"
    assert t.text == "你好世界，今天天气很好。"


def test_refine_passes_other_languages_through():
    seg = Segment(start=0.0, end=4.0, text="hello , world")
    t = Transcript(text="hello , world", segments=[seg], language="en")
    refine_transcript(t)
    assert seg.text == "hello , world"
    assert t.text == "hello , world"
