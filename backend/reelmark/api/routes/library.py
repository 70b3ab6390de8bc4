"""
Reelmark API — User library and quota routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reelmark.api.deps import CurrentUser, get_caller, get_current_user
from reelmark.core.database import get_db
from reelmark.schemas.schemas import LinkVideoRequest, LinkVideoResponse, RateLimitStatus
from reelmark.services.library.library_service import library_service
from reelmark.services.limits.rate_limit_service import Caller, rate_limit_service

router = APIRouter(tags=["Library"])


@router.post("/link-video", response_model=LinkVideoResponse)
async def link_video(
    data: LinkVideoRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Attach an already-saved analysis to the signed-in user's library."""
    already_linked = await library_service.link_video(user.id, data.video_id, db)
    return LinkVideoResponse(already_linked=already_linked)


@router.get("/check-limit", response_model=RateLimitStatus)
async def check_limit(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Remaining fresh analyses for the caller in the current window."""
    return await rate_limit_service.status(caller, db)
