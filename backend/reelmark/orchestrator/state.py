"""
Page state for one analysis view.

``PageState`` is the coarse lifecycle; ``AnalysisViewState`` holds everything
a view renders. A new video gets a fresh ``AnalysisViewState`` so work still
running for the previous video writes into an orphaned object.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from reelmark.schemas.schemas import Topic, TopicCandidate, TranscriptSegment

DEFAULT_CANDIDATES_KEY = "__default"


class PageState(str, Enum):
    IDLE = "IDLE"
    ANALYZING_NEW = "ANALYZING_NEW"
    LOADING_CACHED = "LOADING_CACHED"


@dataclass
class AnalysisViewState:
    video_id: Optional[str] = None
    platform: Optional[str] = None
    video_info: Optional[Dict[str, Any]] = None
    transcript: List[TranscriptSegment] = field(default_factory=list)

    # ── Topics & themes ──
    topics: List[Topic] = field(default_factory=list)
    base_topics: List[Topic] = field(default_factory=list)
    selected_topic: Optional[Topic] = None
    themes: List[str] = field(default_factory=list)
    selected_theme: Optional[str] = None
    theme_topics: Dict[str, List[Topic]] = field(default_factory=dict)
    theme_candidates: Dict[str, List[TopicCandidate]] = field(default_factory=dict)
    used_topic_keys: Set[str] = field(default_factory=set)
    is_loading_theme_topics: bool = False
    theme_error: Optional[str] = None

    # ── Summary & questions ──
    summary: Optional[Any] = None
    summary_error: Optional[str] = None
    is_generating_summary: bool = False
    suggested_questions: Optional[List[str]] = None

    # ── Errors, limits, persistence ──
    error: Optional[str] = None
    is_rate_limit_error: bool = False
    auth_redirect: bool = False
    limit_message: Optional[str] = None
    rate_limit: Optional[Dict[str, Any]] = None
    save_warning: Optional[str] = None
    from_cache: bool = False
