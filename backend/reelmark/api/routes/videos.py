"""
Reelmark API — Transcript and video metadata routes.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from reelmark.api.deps import get_provider_factory
from reelmark.core.errors import NotFoundError, ReelmarkError
from reelmark.schemas.schemas import TranscriptResponse, UrlRequest, VideoInfoResponse
from reelmark.services.cache.analysis_store import parse_video_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Videos"])


@router.post("/transcript", response_model=TranscriptResponse)
async def fetch_transcript(data: UrlRequest, providers=Depends(get_provider_factory)):
    """Fetch the platform transcript for a video URL."""
    platform, video_id = parse_video_url(data.url)
    transcript = await providers(platform).fetch_transcript(video_id)
    if not transcript:
        raise NotFoundError("No transcript available for this video")
    return TranscriptResponse(video_id=video_id, platform=platform.value, transcript=transcript)


@router.post("/video-info", response_model=VideoInfoResponse, response_model_exclude_none=True)
async def fetch_video_info(data: UrlRequest, providers=Depends(get_provider_factory)):
    """Video metadata; degrades to placeholder metadata when the upstream fails."""
    platform, video_id = parse_video_url(data.url)
    provider = providers(platform)
    try:
        info = await provider.fetch_video_info(video_id)
    except ReelmarkError as e:
        logger.warning(f"Metadata for {platform.value}:{video_id} unavailable, using placeholder: {e}")
        info = provider.placeholder_info(video_id)
    return VideoInfoResponse(**info.model_dump(), platform=platform.value)
