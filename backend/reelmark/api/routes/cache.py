"""
Reelmark API — Analysis cache routes (check, save, update).
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reelmark.api.deps import CurrentUser, get_current_user_optional
from reelmark.core.database import get_db
from reelmark.models.models import Platform
from reelmark.schemas.schemas import (
    CacheCheckResponse,
    SaveAnalysisRequest,
    SaveAnalysisResponse,
    SuccessResponse,
    UpdateAnalysisRequest,
    UrlRequest,
)
from reelmark.services.cache.analysis_store import analysis_store
from reelmark.services.library.library_service import library_service

router = APIRouter(tags=["Analysis cache"])


@router.post("/check-video-cache", response_model=CacheCheckResponse, response_model_exclude_none=True)
async def check_video_cache(
    data: UrlRequest,
    db: AsyncSession = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
):
    """Return a stored analysis for the URL, if any. Signed-in hits land in the user's library."""
    result = await analysis_store.check_cache(data.url, db)
    if result.cached and user is not None:
        row = await analysis_store.get_analysis(Platform(result.platform), result.video_id, db)
        if row is not None:
            await library_service.record_access(user.id, row.id, db)
    return result


@router.post("/save-analysis", response_model=SaveAnalysisResponse)
async def save_analysis(
    data: SaveAnalysisRequest,
    db: AsyncSession = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
):
    """Upsert an analysis; existing topics/summary/questions survive null fields."""
    analysis_id = await analysis_store.save_analysis(
        db,
        video_id=data.video_id,
        platform=data.platform,
        video_info=data.video_info,
        transcript=data.transcript,
        topics=data.topics,
        summary=data.summary,
        suggested_questions=data.suggested_questions,
        model=data.model,
    )
    if user is not None:
        await library_service.record_access(user.id, analysis_id, db)
    return SaveAnalysisResponse(video_id=data.video_id)


@router.post("/update-video-analysis", response_model=SuccessResponse)
async def update_video_analysis(
    data: UpdateAnalysisRequest,
    db: AsyncSession = Depends(get_db),
):
    await analysis_store.update_analysis(
        db,
        data.video_id,
        platform=data.platform,
        topics=data.topics,
        summary=data.summary,
        suggested_questions=data.suggested_questions,
    )
    return SuccessResponse()
