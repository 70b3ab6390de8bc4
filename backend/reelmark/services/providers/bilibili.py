"""
Bilibili provider — public ``view`` / ``player`` JSON endpoints and subtitle blobs.

Transcript path:
  1. view       -> title, owner, cover, duration and the first page's ``cid``
  2. player/v2  -> list of available subtitle tracks
  3. pick track -> Chinese variants first, else the first available
  4. fetch body -> ``{from, to, content}`` cues mapped to transcript segments
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from reelmark.core.config import get_settings
from reelmark.core.errors import NotFoundError, UpstreamError
from reelmark.models.models import Platform
from reelmark.schemas.schemas import TranscriptSegment, VideoInfo
from reelmark.services.platform.detector import bilibili_id_params
from reelmark.services.providers.base import ProviderHttp, VideoProvider

logger = logging.getLogger(__name__)
settings = get_settings()

CHINESE_LANGS = ("zh-CN", "zh-Hans")


class BilibiliProvider(VideoProvider):
    platform = Platform.BILIBILI

    def __init__(self, http: Optional[ProviderHttp] = None):
        self.api_base = settings.bilibili_api_base.rstrip("/")
        self.http = http or ProviderHttp(
            "Bilibili",
            settings.provider_timeout_seconds,
            headers={
                "User-Agent": settings.upstream_user_agent,
                "Referer": settings.bilibili_referer,
            },
        )

    # ── Raw API calls ────────────────────────────────────────────────────

    async def _envelope(self, url: str, params: Dict[str, Any], what: str) -> Dict[str, Any]:
        resp = await self.http.get(url, params=params)
        if not resp.ok:
            raise UpstreamError(f"Bilibili {what} API error", f"HTTP {resp.status}")
        body = resp.json()
        if not isinstance(body, dict):
            raise UpstreamError(f"Bilibili {what} API error", "Malformed response")
        if body.get("code") != 0:
            raise UpstreamError(f"Bilibili {what} API error", str(body.get("message") or body.get("code")))
        return body.get("data") or {}

    async def fetch_view(self, video_id: str) -> Dict[str, Any]:
        return await self._envelope(
            f"{self.api_base}/x/web-interface/view", bilibili_id_params(video_id), "view",
        )

    async def fetch_subtitles(self, video_id: str, cid: int) -> List[Dict[str, Any]]:
        data = await self._envelope(
            f"{self.api_base}/x/player/v2", {**bilibili_id_params(video_id), "cid": cid}, "subtitle",
        )
        return (data.get("subtitle") or {}).get("subtitles") or []

    async def fetch_subtitle_body(self, subtitle_url: str) -> Dict[str, Any]:
        full_url = subtitle_url if subtitle_url.startswith("http") else f"https:{subtitle_url}"
        resp = await self.http.get(full_url)
        if not resp.ok:
            raise UpstreamError("Subtitle fetch error", f"HTTP {resp.status}")
        body = resp.json()
        if not isinstance(body, dict):
            raise UpstreamError("Subtitle fetch error", "Malformed subtitle body")
        return body

    # ── Normalisation ────────────────────────────────────────────────────

    @staticmethod
    def preferred_subtitle(subtitles: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for sub in subtitles:
            if sub.get("lan") in CHINESE_LANGS or "中文" in (sub.get("lan_doc") or ""):
                return sub
        return subtitles[0] if subtitles else None

    @staticmethod
    def subtitles_to_transcript(body: Dict[str, Any]) -> List[TranscriptSegment]:
        segments = []
        for cue in body.get("body") or []:
            start = float(cue.get("from") or 0)
            end = float(cue.get("to") or start)
            segments.append(TranscriptSegment(
                text=cue.get("content") or "",
                start=start,
                duration=max(end - start, 0.0),
            ))
        return segments

    @staticmethod
    def view_to_video_info(data: Dict[str, Any], video_id: str) -> VideoInfo:
        return VideoInfo(
            video_id=video_id,
            title=data.get("title") or "Bilibili视频",
            author=(data.get("owner") or {}).get("name") or "未知",
            thumbnail=data.get("pic") or "",
            duration=data.get("duration"),
            description=data.get("desc") or None,
            tags=[],
        )

    # ── Provider interface ───────────────────────────────────────────────

    def placeholder_info(self, video_id: str) -> VideoInfo:
        return VideoInfo(video_id=video_id, title="Bilibili视频", author="未知", thumbnail="", duration=None)

    async def fetch_video_info(self, video_id: str) -> VideoInfo:
        return self.view_to_video_info(await self.fetch_view(video_id), video_id)

    async def fetch_transcript(self, video_id: str) -> List[TranscriptSegment]:
        view = await self.fetch_view(video_id)
        pages = view.get("pages") or []
        cid = pages[0].get("cid") if pages else None
        if not cid:
            raise NotFoundError("Unable to load video information")

        subtitles = await self.fetch_subtitles(video_id, cid)
        preferred = self.preferred_subtitle(subtitles)
        if not preferred or not preferred.get("subtitle_url"):
            raise NotFoundError("This video has no available subtitles")

        logger.info(f"Bilibili {video_id}: using subtitle track {preferred.get('lan')}")
        body = await self.fetch_subtitle_body(preferred["subtitle_url"])
        return self.subtitles_to_transcript(body)
