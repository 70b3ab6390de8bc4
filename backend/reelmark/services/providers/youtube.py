"""
YouTube provider — Supadata for transcripts and rich metadata, oEmbed as the
keyless metadata fallback.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from reelmark.core.config import get_settings
from reelmark.core.errors import (
    NO_CAPTIONS_ERROR,
    NotFoundError,
    ReelmarkError,
    UnsupportedLanguageError,
    UpstreamError,
)
from reelmark.models.models import Platform
from reelmark.schemas.schemas import TranscriptSegment, VideoInfo
from reelmark.services.platform.detector import build_watch_url
from reelmark.services.providers.base import ProviderHttp, UpstreamResponse, VideoProvider
from reelmark.services.providers.language import LanguageThresholds, looks_english

logger = logging.getLogger(__name__)
settings = get_settings()

LANGUAGE_MARKERS = ("user aborted request", "language", "unsupported transcript language")
DEFAULT_UNAVAILABLE = "Transcript Unavailable"
DEFAULT_UNAVAILABLE_DETAILS = "No transcript is available for this video."


def _text_field(body: Optional[Dict[str, Any]], key: str) -> Optional[str]:
    value = body.get(key) if isinstance(body, dict) else None
    return value.strip() if isinstance(value, str) and value.strip() else None


def classify_transcript_failure(resp: UpstreamResponse) -> Optional[ReelmarkError]:
    """Map a Supadata transcript response to an error, or None when it carries content."""
    body = resp.json()
    body = body if isinstance(body, dict) else None

    fields = [_text_field(body, "error"), _text_field(body, "message"), _text_field(body, "details"), resp.text or None]
    combined = " ".join(f for f in fields if f).lower()
    unsupported_language = any(marker in combined for marker in LANGUAGE_MARKERS)

    if not resp.ok:
        if resp.status == 404:
            return NotFoundError(NO_CAPTIONS_ERROR)
        if unsupported_language:
            return UnsupportedLanguageError()
        return UpstreamError(
            f"Supadata transcript request failed ({resp.status})",
            " ".join(f for f in fields[:3] if f) or None,
        )

    if resp.status == 206 or _text_field(body, "error"):
        if unsupported_language:
            return UnsupportedLanguageError()
        return NotFoundError(
            _text_field(body, "message") or DEFAULT_UNAVAILABLE,
            _text_field(body, "details") or DEFAULT_UNAVAILABLE_DETAILS,
        )
    return None


def extract_content(payload: Any) -> Optional[List[Any]]:
    if isinstance(payload, dict):
        for key in ("content", "transcript"):
            if isinstance(payload.get(key), list):
                return payload[key]
        return None
    if isinstance(payload, list):
        return payload
    return None


def item_to_segment(item: Any) -> TranscriptSegment:
    """Supadata items use milliseconds (``offset``/``duration``); older shapes use seconds."""
    if not isinstance(item, dict):
        return TranscriptSegment(text="", start=0.0, duration=0.0)
    text = item.get("text") or item.get("content") or ""
    if item.get("offset") is not None:
        start = float(item["offset"]) / 1000
        duration = float(item.get("duration") or 0) / 1000
    else:
        start = float(item.get("start") or 0)
        duration = float(item.get("duration") or 0)
    return TranscriptSegment(text=str(text), start=max(start, 0.0), duration=max(duration, 0.0))


class YouTubeProvider(VideoProvider):
    platform = Platform.YOUTUBE

    def __init__(self, http: Optional[ProviderHttp] = None, thresholds: Optional[LanguageThresholds] = None):
        self.api_key = settings.supadata_api_key
        self.base_url = settings.supadata_base_url.rstrip("/")
        self.http = http or ProviderHttp("YouTube", settings.provider_timeout_seconds)
        self.thresholds = thresholds or LanguageThresholds.from_settings(settings)

    def _supadata_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key or "", "Content-Type": "application/json"}

    # ── Transcript ───────────────────────────────────────────────────────

    async def fetch_transcript(self, video_id: str) -> List[TranscriptSegment]:
        if not self.api_key:
            raise UpstreamError("API configuration error", "Transcript provider key is not configured")

        resp = await self.http.get(
            f"{self.base_url}/youtube/transcript",
            params={"url": build_watch_url(Platform.YOUTUBE, video_id), "lang": "en"},
            headers=self._supadata_headers(),
        )

        failure = classify_transcript_failure(resp)
        if failure is not None:
            logger.info(f"Supadata transcript for {video_id} rejected: {failure}")
            raise failure

        content = extract_content(resp.json())
        if not content:
            body = resp.json() if isinstance(resp.json(), dict) else None
            raise NotFoundError(
                _text_field(body, "message") or DEFAULT_UNAVAILABLE,
                _text_field(body, "details") or DEFAULT_UNAVAILABLE_DETAILS,
            )

        if not looks_english(content, self.thresholds):
            raise UnsupportedLanguageError()

        return [item_to_segment(item) for item in content]

    # ── Metadata ─────────────────────────────────────────────────────────

    def placeholder_info(self, video_id: str) -> VideoInfo:
        return VideoInfo(
            video_id=video_id,
            title="YouTube Video",
            author="Unknown",
            thumbnail=f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg",
            duration=None,
        )

    async def fetch_video_info(self, video_id: str) -> VideoInfo:
        """Supadata first (richer), then oEmbed, then a placeholder; never raises."""
        if self.api_key:
            try:
                info = await self._supadata_video_info(video_id)
                if info is not None:
                    return info
            except ReelmarkError as e:
                logger.warning(f"Supadata metadata failed for {video_id}, falling back to oEmbed: {e}")

        try:
            info = await self._oembed_video_info(video_id)
            if info is not None:
                return info
        except ReelmarkError as e:
            logger.warning(f"oEmbed metadata failed for {video_id}: {e}")

        return self.placeholder_info(video_id)

    async def _supadata_video_info(self, video_id: str) -> Optional[VideoInfo]:
        resp = await self.http.get(
            f"{self.base_url}/youtube/video",
            params={"id": video_id},
            headers=self._supadata_headers(),
        )
        data = resp.json()
        if not resp.ok or not isinstance(data, dict):
            return None
        placeholder = self.placeholder_info(video_id)
        return VideoInfo(
            video_id=video_id,
            title=data.get("title") or placeholder.title,
            author=(data.get("channel") or {}).get("name") or data.get("author") or placeholder.author,
            thumbnail=data.get("thumbnail") or placeholder.thumbnail,
            duration=data.get("duration"),
            description=data.get("description") or None,
            tags=data.get("tags") or data.get("keywords") or None,
        )

    async def _oembed_video_info(self, video_id: str) -> Optional[VideoInfo]:
        resp = await self.http.get(
            settings.youtube_oembed_url,
            params={"url": build_watch_url(Platform.YOUTUBE, video_id), "format": "json"},
        )
        data = resp.json()
        if not resp.ok or not isinstance(data, dict):
            return None
        placeholder = self.placeholder_info(video_id)
        return VideoInfo(
            video_id=video_id,
            title=data.get("title") or placeholder.title,
            author=data.get("author_name") or placeholder.author,
            thumbnail=data.get("thumbnail_url") or placeholder.thumbnail,
            duration=None,
        )
