"""
Reelmark Library Service — the per-user list of analysed videos.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reelmark.core.errors import NotFoundError
from reelmark.models.models import UserVideo
from reelmark.services.cache.analysis_store import analysis_store

logger = logging.getLogger(__name__)


class LibraryService:

    async def record_access(self, user_id: uuid.UUID, analysis_id: uuid.UUID, db: AsyncSession) -> bool:
        """Upsert the user's link to an analysis and bump ``accessed_at``.

        Returns True when the link already existed.
        """
        existing = (await db.execute(
            select(UserVideo).where(
                UserVideo.user_id == user_id,
                UserVideo.analysis_id == analysis_id,
            )
        )).scalar_one_or_none()

        if existing is not None:
            existing.accessed_at = datetime.now(timezone.utc)
            await db.flush()
            return True

        db.add(UserVideo(
            user_id=user_id,
            analysis_id=analysis_id,
            accessed_at=datetime.now(timezone.utc),
        ))
        await db.flush()
        return False

    async def link_video(self, user_id: uuid.UUID, video_id: str, db: AsyncSession) -> bool:
        """Attach a cached analysis to the user's library; 404 until it is saved."""
        analysis = await analysis_store.find_analysis(video_id, db)
        if analysis is None:
            raise NotFoundError("Video not found", f"No analysis stored for {video_id} yet")
        already_linked = await self.record_access(user_id, analysis.id, db)
        logger.info(f"Linked {video_id} to user {user_id} (already_linked={already_linked})")
        return already_linked


library_service = LibraryService()
