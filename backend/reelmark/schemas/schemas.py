"""
Reelmark API Schemas — Pydantic v2 models for request/response validation.

Wire format is camelCase; Python attributes are snake_case.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self, **kwargs) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, **kwargs)


class TopicGenerationMode(str, Enum):
    SMART = "smart"
    FAST = "fast"


# ═══════════════════════════════════════════════════════════════════════
# Core content
# ═══════════════════════════════════════════════════════════════════════

class VideoInfo(CamelModel):
    video_id: str
    title: str
    author: str
    thumbnail: str = ""
    duration: Optional[float] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class TranscriptSegment(CamelModel):
    text: str
    start: float = Field(0.0, ge=0)
    duration: float = Field(0.0, ge=0)

    @property
    def end(self) -> float:
        return self.start + self.duration


class TopicSegment(CamelModel):
    start: float
    end: float
    text: str = ""
    start_segment_idx: Optional[int] = None
    end_segment_idx: Optional[int] = None
    start_char_offset: Optional[int] = None
    end_char_offset: Optional[int] = None


class TopicQuote(CamelModel):
    timestamp: str
    text: str


class Topic(CamelModel):
    id: str
    title: str
    description: str = ""
    duration: float = 0.0
    segments: List[TopicSegment] = []
    quote: Optional[TopicQuote] = None
    keywords: Optional[List[str]] = None
    is_citation_reel: Optional[bool] = None
    auto_play: Optional[bool] = None


class TopicCandidate(CamelModel):
    key: str
    title: str
    quote: TopicQuote


class Citation(CamelModel):
    number: int = 0
    text: str = ""
    start: float
    end: float
    start_segment_idx: Optional[int] = None
    end_segment_idx: Optional[int] = None
    start_char_offset: Optional[int] = None
    end_char_offset: Optional[int] = None


class ChatMessage(CamelModel):
    role: str
    content: str


# ═══════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════

class UrlRequest(CamelModel):
    url: Optional[str] = None


class VideoAnalysisRequest(CamelModel):
    video_id: str = Field(..., min_length=1)
    platform: Optional[str] = None
    video_info: Optional[VideoInfo] = None
    transcript: List[TranscriptSegment] = Field(..., min_length=1)
    model: Optional[str] = None
    theme: Optional[str] = None
    exclude_topic_keys: List[str] = []
    include_candidate_pool: bool = False
    mode: TopicGenerationMode = TopicGenerationMode.SMART


class SummaryRequest(CamelModel):
    transcript: List[TranscriptSegment] = Field(..., min_length=1)
    video_info: Optional[VideoInfo] = None
    video_id: Optional[str] = None


class SuggestedQuestionsRequest(CamelModel):
    transcript: List[TranscriptSegment] = Field(..., min_length=1)
    topics: List[Topic] = []
    video_title: Optional[str] = None
    count: Optional[int] = Field(None, ge=1, le=10)


class SaveAnalysisRequest(CamelModel):
    video_id: str = Field(..., min_length=1)
    platform: Optional[str] = None
    video_info: VideoInfo
    transcript: List[TranscriptSegment] = Field(..., min_length=1)
    topics: Optional[List[Topic]] = None
    summary: Optional[Any] = None
    suggested_questions: Optional[List[str]] = None
    model: Optional[str] = None


class UpdateAnalysisRequest(CamelModel):
    video_id: str = Field(..., min_length=1)
    platform: Optional[str] = None
    topics: Optional[List[Topic]] = None
    summary: Optional[Any] = None
    suggested_questions: Optional[List[str]] = None


class LinkVideoRequest(CamelModel):
    video_id: str = Field(..., min_length=1)


class ChatRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=4000)
    transcript: List[TranscriptSegment] = Field(..., min_length=1)
    topics: List[Topic] = []
    video_info: Optional[VideoInfo] = None
    history: List[ChatMessage] = []


# ═══════════════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════════════

class TranscriptResponse(CamelModel):
    video_id: str
    platform: str
    transcript: List[TranscriptSegment]


class VideoInfoResponse(VideoInfo):
    platform: str


class CachedVideoInfo(CamelModel):
    title: str
    author: Optional[str] = None
    duration: Optional[float] = None
    thumbnail: Optional[str] = None


class CacheCheckResponse(CamelModel):
    cached: bool
    video_id: str
    platform: str
    topics: Optional[List[Dict[str, Any]]] = None
    transcript: Optional[List[Dict[str, Any]]] = None
    video_info: Optional[CachedVideoInfo] = None
    summary: Optional[Any] = None
    suggested_questions: Optional[List[str]] = None
    cache_date: Optional[datetime] = None


class VideoAnalysisResponse(CamelModel):
    topics: List[Topic]
    themes: List[str] = []
    topic_candidates: Optional[List[TopicCandidate]] = None
    cached: bool = False


class SummaryResponse(CamelModel):
    summary_content: str


class SuggestedQuestionsResponse(CamelModel):
    questions: List[str]


class SaveAnalysisResponse(CamelModel):
    success: bool = True
    video_id: str


class SuccessResponse(CamelModel):
    success: bool = True


class LinkVideoResponse(CamelModel):
    success: bool = True
    already_linked: bool = False


class RateLimitStatus(CamelModel):
    is_authenticated: bool
    can_generate: bool
    remaining: Optional[int] = None
    limit: int
    reset_at: Optional[datetime] = None


class ChatResponse(CamelModel):
    content: str
    citations: List[Citation] = []
