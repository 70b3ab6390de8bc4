"""
Topic hydration — binds model output to the transcript.

The model answers with quotes and loose timestamps; the UI needs numeric
``start``/``end`` plus segment indices and character offsets so it can seek
and highlight. Everything here is pure and synchronous.

Matching strategy for a quote:
  1. exact match of the normalised quote in the normalised transcript text
  2. match of the quote's leading words (models often paraphrase the tail)
  3. the quote's ``[mm:ss-mm:ss]`` range, snapped to transcript segments
A topic for which all three fail is dropped.
"""
from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from reelmark.schemas.schemas import Citation, Topic, TopicQuote, TopicSegment, TranscriptSegment

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s']", re.UNICODE)
_RANGE_SPLIT = re.compile(r"\s*(?:-|–|—|to)\s*")

PREFIX_WORDS = 8
MAX_TOPIC_KEY_CHARS = 500


# ═══════════════════════════════════════════════════════════════════════
# Normalisation
# ═══════════════════════════════════════════════════════════════════════

def normalize_whitespace(text: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def _match_form(text: str) -> str:
    return normalize_whitespace(_PUNCTUATION.sub(" ", text.lower()))


def _as_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number > 0 else 0.0


def normalize_transcript(raw: Iterable[Any]) -> List[TranscriptSegment]:
    """Coerce arbitrary transcript-like input into ordered ``TranscriptSegment``s."""
    segments: List[TranscriptSegment] = []
    for item in raw or []:
        if isinstance(item, TranscriptSegment):
            item = item.model_dump()
        if not isinstance(item, dict):
            continue
        segments.append(TranscriptSegment(
            text=normalize_whitespace(str(item.get("text") or "")),
            start=_as_float(item.get("start")),
            duration=_as_float(item.get("duration")),
        ))
    # sorted() is stable, equal starts keep their input order
    return sorted(segments, key=lambda s: s.start)


# ═══════════════════════════════════════════════════════════════════════
# Timestamps
# ═══════════════════════════════════════════════════════════════════════

def parse_timestamp(value: Any) -> Optional[float]:
    """``"1:02:03"`` / ``"02:03"`` / ``"123"`` / ``123.5`` -> seconds."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    if not isinstance(value, str):
        return None
    cleaned = value.strip().strip("[]()").strip()
    if not cleaned:
        return None
    parts = cleaned.split(":")
    if len(parts) > 3:
        return None
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        return None
    if any(n < 0 for n in numbers):
        return None
    seconds = 0.0
    for n in numbers:
        seconds = seconds * 60 + n
    return seconds


def parse_timestamp_range(value: Any) -> Optional[Tuple[float, float]]:
    """``"[01:05-01:40]"`` -> ``(65.0, 100.0)``; a single stamp gives a zero-length range."""
    if not isinstance(value, str):
        single = parse_timestamp(value)
        return (single, single) if single is not None else None
    cleaned = value.strip().strip("[]()").strip()
    pieces = [p for p in _RANGE_SPLIT.split(cleaned, maxsplit=1) if p]
    if not pieces:
        return None
    start = parse_timestamp(pieces[0])
    if start is None:
        return None
    end = parse_timestamp(pieces[1]) if len(pieces) > 1 else start
    if end is None:
        return None
    return (start, end) if end >= start else (end, start)


def format_timestamp(seconds: float) -> str:
    total = int(max(seconds, 0))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def topic_key(quote: Union[TopicQuote, Dict[str, Any], None]) -> Optional[str]:
    """Stable identity of a topic: ``"<timestamp>|<normalised quote text>"``."""
    if isinstance(quote, TopicQuote):
        timestamp, text = quote.timestamp, quote.text
    elif isinstance(quote, dict):
        timestamp, text = quote.get("timestamp"), quote.get("text")
    else:
        return None
    if not timestamp and not text:
        return None
    key = f"{normalize_whitespace(str(timestamp or ''))}|{normalize_whitespace(str(text or '')).lower()}"
    return key[:MAX_TOPIC_KEY_CHARS]


# ═══════════════════════════════════════════════════════════════════════
# Quote resolution
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class _TranscriptIndex:
    """Concatenated match-form transcript with a map back to segments."""

    transcript: Sequence[TranscriptSegment]
    text: str
    seg_starts: List[int]        # offset of each segment in ``text``
    seg_forms: List[str]         # match-form text of each segment

    @classmethod
    def build(cls, transcript: Sequence[TranscriptSegment]) -> "_TranscriptIndex":
        seg_starts, seg_forms, pieces = [], [], []
        cursor = 0
        for seg in transcript:
            form = _match_form(seg.text)
            seg_starts.append(cursor)
            seg_forms.append(form)
            pieces.append(form)
            cursor += len(form) + 1
        return cls(transcript, " ".join(pieces), seg_starts, seg_forms)

    def segment_at(self, offset: int) -> int:
        return max(bisect.bisect_right(self.seg_starts, offset) - 1, 0)

    def span(self, begin: int, end: int) -> TopicSegment:
        first = self.segment_at(begin)
        last = self.segment_at(max(end - 1, begin))
        first_seg, last_seg = self.transcript[first], self.transcript[last]
        return TopicSegment(
            start=first_seg.start,
            end=max(last_seg.end, first_seg.start),
            text=" ".join(s.text for s in self.transcript[first:last + 1]),
            start_segment_idx=first,
            end_segment_idx=last,
            start_char_offset=begin - self.seg_starts[first],
            end_char_offset=min(end - self.seg_starts[last], len(self.seg_forms[last])),
        )

    def find(self, quote: str, near: Optional[float] = None) -> Optional[TopicSegment]:
        needle = _match_form(quote)
        if not needle or not self.text:
            return None
        hit = self._locate(needle, near)
        if hit is None:
            words = needle.split(" ")
            if len(words) > PREFIX_WORDS:
                prefix = " ".join(words[:PREFIX_WORDS])
                begin = self._locate(prefix, near)
                if begin is not None:
                    return self.span(begin, min(begin + len(needle), len(self.text)))
            return None
        return self.span(hit, hit + len(needle))

    def _locate(self, needle: str, near: Optional[float]) -> Optional[int]:
        hits = []
        pos = self.text.find(needle)
        while pos != -1:
            hits.append(pos)
            pos = self.text.find(needle, pos + 1)
        if not hits:
            return None
        if near is None or len(hits) == 1:
            return hits[0]
        return min(hits, key=lambda h: abs(self.transcript[self.segment_at(h)].start - near))

    def snap(self, start: float, end: float) -> Optional[TopicSegment]:
        """Segment span overlapping ``[start, end]``."""
        if not self.transcript:
            return None
        last_end = self.transcript[-1].end
        if start > last_end:
            return None
        idx = [
            i for i, s in enumerate(self.transcript)
            if (s.end > start or s.start == start) and s.start <= max(end, start)
        ]
        if not idx:
            return None
        first, last = idx[0], idx[-1]
        return TopicSegment(
            start=max(start, self.transcript[first].start),
            end=min(max(end, start), last_end) if end > start else self.transcript[last].end,
            text=" ".join(s.text for s in self.transcript[first:last + 1]),
            start_segment_idx=first,
            end_segment_idx=last,
            start_char_offset=0,
            end_char_offset=len(self.seg_forms[last]),
        )


def resolve_quote(
    transcript: Sequence[TranscriptSegment],
    text: Optional[str],
    timestamp: Any = None,
    index: Optional[_TranscriptIndex] = None,
) -> Optional[TopicSegment]:
    """Locate a quote in the transcript, falling back to its timestamp range."""
    index = index or _TranscriptIndex.build(transcript)
    bounds = parse_timestamp_range(timestamp) if timestamp is not None else None
    if isinstance(text, str) and text:
        found = index.find(text, near=bounds[0] if bounds else None)
        if found is not None:
            return found
    if bounds is not None:
        return index.snap(*bounds)
    return None


# ═══════════════════════════════════════════════════════════════════════
# Topics & citations
# ═══════════════════════════════════════════════════════════════════════

def _raw_dict(item: Any) -> Optional[Dict[str, Any]]:
    if isinstance(item, Topic):
        return item.model_dump()
    if isinstance(item, dict):
        return item
    return None


def _numeric_segments(raw_segments: Any) -> List[TopicSegment]:
    segments = []
    if not isinstance(raw_segments, (list, tuple)):
        return segments
    for seg in raw_segments:
        if isinstance(seg, TopicSegment):
            segments.append(seg)
            continue
        if not isinstance(seg, dict):
            continue
        start = parse_timestamp(seg.get("start"))
        end = parse_timestamp(seg.get("end"))
        if start is None or end is None:
            continue
        try:
            segments.append(TopicSegment.model_validate({**seg, "start": start, "end": max(end, start)}))
        except ValidationError:
            logger.debug(f"Skipping malformed segment {seg!r}")
    return segments


def _keywords(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    words = [normalize_whitespace(str(w)) for w in value if isinstance(w, (str, int, float))]
    return [w for w in words if w] or None


def _flag(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _citation_number(value: Any, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def hydrate_topics_with_transcript(
    raw_topics: Iterable[Any],
    transcript: Sequence[TranscriptSegment],
) -> List[Topic]:
    """Turn stored or generated topics into playable ``Topic`` objects.

    Topics that already carry numeric segments (e.g. from the cache) keep
    them. Others are resolved from their quote; unresolvable ones are dropped.
    """
    index = _TranscriptIndex.build(transcript)
    hydrated: List[Topic] = []

    for position, item in enumerate(raw_topics or []):
        raw = _raw_dict(item)
        if raw is None:
            continue

        quote = raw.get("quote") if isinstance(raw.get("quote"), dict) else None
        segments = _numeric_segments(raw.get("segments"))
        if not segments and quote:
            resolved = resolve_quote(transcript, quote.get("text"), quote.get("timestamp"), index)
            if resolved is not None:
                segments = [resolved]
        if not segments:
            logger.debug(f"Dropping topic {raw.get('title')!r}: quote not found in transcript")
            continue

        duration = sum(max(s.end - s.start, 0.0) for s in segments)
        hydrated.append(Topic(
            id=str(raw.get("id") or f"topic-{position}"),
            title=normalize_whitespace(str(raw.get("title") or f"Highlight {position + 1}")),
            description=normalize_whitespace(str(raw.get("description") or "")),
            duration=round(duration, 3),
            segments=segments,
            quote=TopicQuote(
                timestamp=str(quote.get("timestamp") or format_timestamp(segments[0].start)),
                text=str(quote.get("text") or ""),
            ) if quote else None,
            keywords=_keywords(raw.get("keywords")),
            is_citation_reel=_flag(raw.get("is_citation_reel", raw.get("isCitationReel"))),
            auto_play=_flag(raw.get("auto_play", raw.get("autoPlay"))),
        ))

    return hydrated


def resolve_citations(
    raw_citations: Iterable[Any],
    transcript: Sequence[TranscriptSegment],
) -> List[Citation]:
    """Ground chat citations (``{number, text, timestamp?}``) in the transcript."""
    index = _TranscriptIndex.build(transcript)
    citations: List[Citation] = []
    for position, raw in enumerate(raw_citations or []):
        if not isinstance(raw, dict):
            continue
        segment = resolve_quote(transcript, raw.get("text"), raw.get("timestamp"), index)
        if segment is None:
            continue
        citations.append(Citation(
            number=_citation_number(raw.get("number"), position + 1),
            text=str(raw.get("text") or segment.text),
            start=segment.start,
            end=segment.end,
            start_segment_idx=segment.start_segment_idx,
            end_segment_idx=segment.end_segment_idx,
            start_char_offset=segment.start_char_offset,
            end_char_offset=segment.end_char_offset,
        ))
    return citations


def format_transcript_for_prompt(transcript: Sequence[TranscriptSegment], max_chars: Optional[int] = None) -> str:
    """``[mm:ss] text`` lines, truncated to ``max_chars``."""
    lines = []
    used = 0
    for seg in transcript:
        line = f"[{format_timestamp(seg.start)}] {seg.text}"
        if max_chars is not None and used + len(line) > max_chars:
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(lines)
