"""
Shared plumbing for upstream video providers.

Every outbound request goes through ``ProviderHttp.get`` so timeouts and
network failures are classified in one place.
"""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from prometheus_client import Counter

from reelmark.core.errors import UpstreamError, UpstreamTimeoutError
from reelmark.models.models import Platform
from reelmark.schemas.schemas import TranscriptSegment, VideoInfo

logger = logging.getLogger(__name__)

UPSTREAM_FAILURES = Counter(
    "reelmark_upstream_failures_total",
    "Failed upstream provider calls",
    ["provider", "kind"],
)


@dataclass
class UpstreamResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Parsed body, or None when the body is empty or not JSON."""
        if not self.text:
            return None
        try:
            return json.loads(self.text)
        except ValueError:
            return None


class ProviderHttp:
    """Thin aiohttp wrapper with a fixed per-request timeout."""

    def __init__(
        self,
        name: str,
        timeout_seconds: float,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.name = name
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.headers = headers or {}
        self._session = session

    async def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> UpstreamResponse:
        merged = {**self.headers, **(headers or {})}
        try:
            if self._session is not None:
                return await self._get(self._session, url, params, merged)
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                return await self._get(session, url, params, merged)
        except asyncio.TimeoutError:
            UPSTREAM_FAILURES.labels(provider=self.name, kind="timeout").inc()
            raise UpstreamTimeoutError(f"{self.name} request timed out", "Please check your network connection and try again.")
        except aiohttp.ClientError as e:
            UPSTREAM_FAILURES.labels(provider=self.name, kind="network").inc()
            raise UpstreamError(f"{self.name} request failed", str(e))

    async def _get(self, session, url, params, headers) -> UpstreamResponse:
        async with session.get(url, params=params, headers=headers, timeout=self.timeout) as resp:
            return UpstreamResponse(status=resp.status, text=await resp.text())


class VideoProvider(ABC):
    """Metadata + transcript source for one platform."""

    platform: Platform

    @abstractmethod
    async def fetch_video_info(self, video_id: str) -> VideoInfo:
        ...

    @abstractmethod
    async def fetch_transcript(self, video_id: str) -> List[TranscriptSegment]:
        ...

    def placeholder_info(self, video_id: str) -> VideoInfo:
        """Minimal metadata used when the upstream cannot be reached."""
        return VideoInfo(video_id=video_id, title="Video", author="Unknown", thumbnail="", duration=None)
