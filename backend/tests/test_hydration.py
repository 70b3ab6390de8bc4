"""
Tests for transcript normalisation and quote -> segment hydration.
"""
from reelmark.schemas.schemas import Topic, TopicQuote
from reelmark.services.topics.hydration import (
    format_timestamp,
    format_transcript_for_prompt,
    hydrate_topics_with_transcript,
    normalize_transcript,
    parse_timestamp,
    parse_timestamp_range,
    resolve_citations,
    resolve_quote,
    topic_key,
)

from conftest import make_transcript


def test_normalize_transcript_sorts_and_cleans():
    raw = [
        {"text": "  second\n line ", "start": 5, "duration": 2},
        "garbage",
        {"text": "first", "start": -3, "duration": None},
        {"text": "tie", "start": 5, "duration": 1},
    ]
    segments = normalize_transcript(raw)
    assert [s.text for s in segments] == ["first", "second line", "tie"]
    assert segments[0].start == 0.0
    assert segments[0].duration == 0.0


def test_parse_timestamps():
    assert parse_timestamp("1:02:03") == 3723
    assert parse_timestamp("02:03") == 123
    assert parse_timestamp("[00:45]") == 45
    assert parse_timestamp(12.5) == 12.5
    assert parse_timestamp("soon") is None
    assert parse_timestamp(-1) is None
    assert parse_timestamp_range("[01:05-01:40]") == (65, 100)
    assert parse_timestamp_range("01:40 - 01:05") == (65, 100)
    assert parse_timestamp_range("00:30") == (30, 30)


def test_format_timestamp():
    assert format_timestamp(65) == "01:05"
    assert format_timestamp(3725) == "1:02:05"


def test_topic_key_is_stable_and_bounded():
    a = topic_key(TopicQuote(timestamp=" 00:09 ", text="The  First thing"))
    b = topic_key({"timestamp": "00:09", "text": "the first thing"})
    assert a == b == "00:09|the first thing"
    assert len(topic_key({"timestamp": "0", "text": "x" * 900})) == 500
    assert topic_key(None) is None


def test_resolve_exact_quote_spans_segments():
    transcript = make_transcript()
    seg = resolve_quote(transcript, "flour and water. Feed the starter")
    assert seg.start_segment_idx == 2
    assert seg.end_segment_idx == 3
    assert seg.start == 9.0
    assert seg.end == 21.0


def test_resolve_uses_prefix_when_tail_is_paraphrased():
    transcript = make_transcript()
    seg = resolve_quote(
        transcript,
        "Feed the starter every twelve hours at room temperature, or it will go hungry",
    )
    assert seg is not None
    assert seg.start_segment_idx == 3


def test_resolve_falls_back_to_timestamp_range():
    transcript = make_transcript()
    seg = resolve_quote(transcript, "words that never appear", "[00:21-00:25]")
    assert seg.start == 21.0
    assert seg.start_segment_idx == 4


def test_resolve_unknown_quote_without_timestamp():
    assert resolve_quote(make_transcript(), "words that never appear") is None


def test_hydrate_drops_unresolvable_topics_and_keeps_numeric_segments():
    transcript = make_transcript()
    raw = [
        {"title": "Ingredients", "quote": {"timestamp": "00:09", "text": "The first thing you need is flour and water"}},
        {"title": "Ghost", "quote": {"timestamp": "99:00", "text": "not in the video"}},
        {"id": "stored", "title": "Stored", "segments": [{"start": 4, "end": 9, "text": "Today"}]},
    ]
    topics = hydrate_topics_with_transcript(raw, transcript)

    assert [t.title for t in topics] == ["Ingredients", "Stored"]
    assert all(isinstance(t, Topic) for t in topics)
    assert topics[0].id == "topic-0"
    assert topics[0].segments[0].start == 9.0
    assert topics[0].duration == 6.0
    assert topics[1].id == "stored"
    assert topics[1].duration == 5.0


def test_hydration_picks_occurrence_nearest_the_timestamp():
    transcript = normalize_transcript([
        {"text": "say it again", "start": 0, "duration": 2},
        {"text": "something else", "start": 2, "duration": 2},
        {"text": "say it again", "start": 40, "duration": 2},
    ])
    [topic] = hydrate_topics_with_transcript(
        [{"title": "Echo", "quote": {"timestamp": "00:41", "text": "say it again"}}], transcript,
    )
    assert topic.segments[0].start == 40


def test_resolve_citations():
    citations = resolve_citations(
        [{"number": 1, "text": "it should double in size"}, {"number": 2, "text": "nope"}],
        make_transcript(),
    )
    assert len(citations) == 1
    assert citations[0].number == 1
    assert citations[0].start == 21.0


def test_format_transcript_for_prompt_truncates():
    text = format_transcript_for_prompt(make_transcript(), max_chars=60)
    assert text.startswith("[00:00] Welcome back to the channel everyone")
    assert "[00:26]" not in text


def test_topic_key_ignores_non_mapping_quotes():
    assert topic_key("The first thing you need") is None
    assert topic_key(["00:09", "text"]) is None


def test_hydrate_tolerates_malformed_model_output():
    transcript = make_transcript()
    raw = [
        {"title": "Bare string quote", "quote": "The first thing you need is flour and water"},
        {"title": "Bad index", "segments": [{"start": 4, "end": 9, "startSegmentIdx": "first"}]},
        {"title": "Loose fields", "segments": "00:04-00:09"},
        {
            "title": "Kept",
            "quote": {"timestamp": "00:21", "text": 42},
            "keywords": "starter, flour",
            "isCitationReel": "yes",
        },
    ]
    [topic] = hydrate_topics_with_transcript(raw, transcript)

    assert topic.title == "Kept"
    assert topic.segments[0].start == 21.0
    assert topic.keywords is None
    assert topic.is_citation_reel is None


def test_citation_numbers_fall_back_to_position():
    citations = resolve_citations(
        [
            {"number": "one", "text": "Feed the starter every twelve hours"},
            {"number": None, "text": "it should double in size"},
            {"number": "3", "text": "ready to bake"},
        ],
        make_transcript(),
    )
    assert [c.number for c in citations] == [1, 2, 3]
