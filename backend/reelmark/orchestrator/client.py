"""
Client for the Reelmark HTTP API, as used by the orchestrator.

``AnalysisApiClient`` is the capability the orchestrator depends on; the
aiohttp implementation talks to a running server, tests supply fakes.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol

import aiohttp

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx API response; ``payload`` is the decoded error body (or ``{}``)."""

    def __init__(self, status: int, payload: Optional[Dict[str, Any]] = None):
        self.status = status
        self.payload = payload or {}
        super().__init__(f"API error {status}: {self.payload.get('error', 'Unknown error')}")

    @property
    def requires_auth(self) -> bool:
        return bool(self.payload.get("requiresAuth"))


class AnalysisApiClient(Protocol):
    async def check_cache(self, url: str) -> Dict[str, Any]: ...
    async def fetch_transcript(self, url: str) -> Dict[str, Any]: ...
    async def fetch_video_info(self, url: str) -> Dict[str, Any]: ...
    async def video_analysis(self, body: Dict[str, Any]) -> Dict[str, Any]: ...
    async def generate_summary(self, body: Dict[str, Any]) -> Dict[str, Any]: ...
    async def suggested_questions(self, body: Dict[str, Any]) -> Dict[str, Any]: ...
    async def save_analysis(self, body: Dict[str, Any]) -> Dict[str, Any]: ...
    async def update_analysis(self, body: Dict[str, Any]) -> Dict[str, Any]: ...
    async def link_video(self, video_id: str) -> Dict[str, Any]: ...
    async def check_limit(self) -> Dict[str, Any]: ...


class HttpAnalysisApiClient:
    """aiohttp client for ``{base_url}/api/*``. Timeouts are left to the caller."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        api_prefix: str = "/api",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/") + api_prefix
        self.token = token
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "HttpAnalysisApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = await self._get_session()
        async with session.request(
            method, f"{self.base_url}{path}", json=body, headers=self._headers(),
        ) as resp:
            text = await resp.text()
            try:
                payload = json.loads(text) if text else {}
            except ValueError:
                payload = {"error": text.strip() or "Unknown error"}
            if resp.status >= 400:
                raise ApiError(resp.status, payload if isinstance(payload, dict) else {})
            return payload if isinstance(payload, dict) else {"data": payload}

    # ── Endpoints ────────────────────────────────────────────────────────

    async def check_cache(self, url: str) -> Dict[str, Any]:
        return await self._request("POST", "/check-video-cache", {"url": url})

    async def fetch_transcript(self, url: str) -> Dict[str, Any]:
        return await self._request("POST", "/transcript", {"url": url})

    async def fetch_video_info(self, url: str) -> Dict[str, Any]:
        return await self._request("POST", "/video-info", {"url": url})

    async def video_analysis(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/video-analysis", body)

    async def generate_summary(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/generate-summary", body)

    async def suggested_questions(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/suggested-questions", body)

    async def save_analysis(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/save-analysis", body)

    async def update_analysis(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/update-video-analysis", body)

    async def link_video(self, video_id: str) -> Dict[str, Any]:
        return await self._request("POST", "/link-video", {"videoId": video_id})

    async def check_limit(self) -> Dict[str, Any]:
        return await self._request("GET", "/check-limit")
