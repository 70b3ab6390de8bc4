"""
Playback commands — one frozen dataclass per kind of request a view can
make of the player. ``PlaybackCommand`` is the union the controller accepts.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple, Union

from reelmark.schemas.schemas import Citation, Topic, TopicSegment

CITATION_REEL_TITLE = "Cited clips"
CITATION_REEL_DESCRIPTION = "Plays every clip cited in the AI answer"


@dataclass(frozen=True)
class Seek:
    time: float


@dataclass(frozen=True)
class PlayTopic:
    topic: Topic
    auto_play: bool = True


@dataclass(frozen=True)
class PlaySegment:
    segment: TopicSegment


@dataclass(frozen=True)
class PlayCitations:
    citations: Tuple[Citation, ...]
    auto_play: bool = True


@dataclass(frozen=True)
class PlayAll:
    auto_play: bool = True


@dataclass(frozen=True)
class Play:
    pass


@dataclass(frozen=True)
class Pause:
    pass


PlaybackCommand = Union[Seek, PlayTopic, PlaySegment, PlayCitations, PlayAll, Play, Pause]


def build_citation_reel(citations: Sequence[Citation], reel_id: str = "citation-reel") -> Topic:
    """A synthetic topic whose segments are the cited clips, in citation order."""
    segments = [
        TopicSegment(
            start=c.start,
            end=c.end,
            text=c.text,
            start_segment_idx=c.start_segment_idx,
            end_segment_idx=c.end_segment_idx,
            start_char_offset=c.start_char_offset,
            end_char_offset=c.end_char_offset,
        )
        for c in citations
    ]
    return Topic(
        id=reel_id,
        title=CITATION_REEL_TITLE,
        description=CITATION_REEL_DESCRIPTION,
        duration=sum(max(c.end - c.start, 0.0) for c in citations),
        segments=segments,
        is_citation_reel=True,
        auto_play=True,
    )
