"""
Platform detection and video ID extraction for YouTube and Bilibili URLs.

Pure functions, no I/O. ``None`` means "not a URL we can analyse".
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional, Pattern

from reelmark.models.models import Platform

_PLATFORM_HOSTS: Dict[Platform, List[str]] = {
    Platform.YOUTUBE: [r"youtube\.com", r"youtu\.be"],
    Platform.BILIBILI: [r"bilibili\.com", r"b23\.tv"],
}

_YOUTUBE_ID: Pattern[str] = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|shorts|live)/|.*[?&]v=)|youtu\.be/)"
    r"([^\"&?/\s]{11})",
    re.IGNORECASE,
)

_BILIBILI_BV: List[Pattern[str]] = [
    re.compile(r"bilibili\.com/video/(BV[a-zA-Z0-9]+)", re.IGNORECASE),
    re.compile(r"b23\.tv/(BV[a-zA-Z0-9]+)", re.IGNORECASE),
    re.compile(r"m\.bilibili\.com/video/(BV[a-zA-Z0-9]+)", re.IGNORECASE),
]
_BILIBILI_AV: Pattern[str] = re.compile(r"bilibili\.com/video/av(\d+)", re.IGNORECASE)


def detect_platform(url: Optional[str]) -> Optional[Platform]:
    """Classify a URL as YouTube or Bilibili."""
    if not url:
        return None
    url_lower = url.lower()
    for platform, hosts in _PLATFORM_HOSTS.items():
        if any(re.search(host, url_lower) for host in hosts):
            return platform
    return None


def extract_video_id(url: Optional[str]) -> Optional[str]:
    """Return the platform-native ID: 11-char YouTube ID, ``BV...`` or ``av<digits>``."""
    if not url:
        return None

    match = _YOUTUBE_ID.search(url)
    if match:
        return match.group(1)

    for pattern in _BILIBILI_BV:
        match = pattern.search(url)
        if match:
            # BV ids are case sensitive after the prefix
            return "BV" + match.group(1)[2:]

    match = _BILIBILI_AV.search(url)
    if match:
        return f"av{match.group(1)}"

    return None


def platform_for_video_id(video_id: str) -> Platform:
    """Infer the platform from the shape of a bare ID."""
    if video_id.startswith("BV") or re.fullmatch(r"av\d+", video_id):
        return Platform.BILIBILI
    return Platform.YOUTUBE


def bilibili_id_params(video_id: str) -> Dict[str, str]:
    """Query params identifying a Bilibili video: ``bvid`` or numeric ``aid``."""
    if video_id.startswith("BV"):
        return {"bvid": video_id}
    return {"aid": video_id[2:] if video_id.lower().startswith("av") else video_id}


def build_watch_url(platform: Platform, video_id: str) -> str:
    if platform == Platform.BILIBILI:
        return f"https://www.bilibili.com/video/{video_id}"
    return f"https://www.youtube.com/watch?v={video_id}"


def build_embed_url(platform: Platform, video_id: str) -> str:
    if platform == Platform.BILIBILI:
        params = bilibili_id_params(video_id)
        key, value = next(iter(params.items()))
        return f"https://player.bilibili.com/player.html?{key}={value}&page=1&high_quality=1&danmaku=0"
    return f"https://www.youtube.com/embed/{video_id}"
