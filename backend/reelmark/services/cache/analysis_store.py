"""
Reelmark Analysis Store — durable cache of per-video analyses.

One row per ``(platform, external_id)``. Saves are upserts that never replace
a populated column with NULL, so concurrent or repeated saves converge.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from prometheus_client import Counter
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from reelmark.core.errors import InvalidInputError, NotFoundError
from reelmark.models.models import Platform, VideoAnalysis
from reelmark.schemas.schemas import (
    CacheCheckResponse,
    CachedVideoInfo,
    TranscriptSegment,
    VideoInfo,
)
from reelmark.services.platform.detector import (
    detect_platform,
    extract_video_id,
    platform_for_video_id,
)

logger = logging.getLogger(__name__)

CACHE_LOOKUPS = Counter(
    "reelmark_cache_lookups_total",
    "Analysis cache lookups",
    ["platform", "result"],
)

# Columns merged with COALESCE(new, existing) on conflict
MERGED_COLUMNS = ("topics", "summary", "suggested_questions", "model_used")


def _jsonable(value: Any) -> Any:
    """Pydantic models (and lists of them) -> plain camelCase JSON."""
    if value is None:
        return None
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True, exclude_none=True)
    return value


def _platform(value: Any, video_id: str) -> Platform:
    if isinstance(value, Platform):
        return value
    if value:
        try:
            return Platform(str(value).lower())
        except ValueError:
            raise InvalidInputError("Unsupported platform", f"Unknown platform: {value}")
    return platform_for_video_id(video_id)


def parse_video_url(url: Optional[str]) -> tuple[Platform, str]:
    """``(platform, video_id)`` for a URL, or ``InvalidInputError``."""
    if not url:
        raise InvalidInputError("URL is required")
    platform = detect_platform(url)
    if platform is None:
        raise InvalidInputError("Unsupported platform. Please use YouTube or Bilibili URLs")
    video_id = extract_video_id(url)
    if not video_id:
        raise InvalidInputError("Invalid video URL")
    return platform, video_id


class AnalysisStore:
    """Read/write access to ``video_analyses``."""

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_analysis(
        self, platform: Platform, video_id: str, db: AsyncSession
    ) -> Optional[VideoAnalysis]:
        result = await db.execute(
            select(VideoAnalysis).where(
                VideoAnalysis.platform == platform,
                VideoAnalysis.external_id == video_id,
            )
            # upserts bypass the identity map
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_analysis(self, video_id: str, db: AsyncSession) -> Optional[VideoAnalysis]:
        """Lookup by bare ID; the platform is inferred from the ID's shape."""
        return await self.get_analysis(platform_for_video_id(video_id), video_id, db)

    async def get_analysis_for(
        self, video_id: str, platform: Any, db: AsyncSession
    ) -> Optional[VideoAnalysis]:
        """Like ``get_analysis`` but accepts a wire platform string or None."""
        return await self.get_analysis(_platform(platform, video_id), video_id, db)

    async def check_cache(self, url: Optional[str], db: AsyncSession) -> CacheCheckResponse:
        """Cached analysis for a URL. Never touches an upstream provider."""
        platform, video_id = parse_video_url(url)
        row = await self.get_analysis(platform, video_id, db)

        if row is None or row.topics is None:
            CACHE_LOOKUPS.labels(platform=platform.value, result="miss").inc()
            return CacheCheckResponse(cached=False, video_id=video_id, platform=platform.value)

        CACHE_LOOKUPS.labels(platform=platform.value, result="hit").inc()
        return CacheCheckResponse(
            cached=True,
            video_id=video_id,
            platform=platform.value,
            topics=row.topics,
            transcript=row.transcript,
            video_info=CachedVideoInfo(
                title=row.title,
                author=row.author,
                duration=row.duration,
                thumbnail=row.thumbnail_url,
            ),
            summary=row.summary,
            suggested_questions=row.suggested_questions,
            cache_date=row.created_at,
        )

    # ── Writes ───────────────────────────────────────────────────────────

    async def save_analysis(
        self,
        db: AsyncSession,
        *,
        video_id: str,
        video_info: VideoInfo,
        transcript: List[TranscriptSegment],
        topics: Optional[List[Any]] = None,
        summary: Any = None,
        suggested_questions: Optional[List[str]] = None,
        model: Optional[str] = None,
        platform: Any = None,
    ) -> uuid.UUID:
        """Insert or merge an analysis; returns the row id."""
        platform = _platform(platform, video_id)
        now = datetime.now(timezone.utc)
        values: Dict[str, Any] = {
            "id": uuid.uuid4(),
            "platform": platform,
            "external_id": video_id,
            "title": video_info.title or video_id,
            "author": video_info.author,
            "duration": int(video_info.duration) if video_info.duration is not None else None,
            "thumbnail_url": video_info.thumbnail or None,
            "description": video_info.description,
            "transcript": _jsonable(transcript),
            "topics": _jsonable(topics),
            "summary": _jsonable(summary),
            "suggested_questions": suggested_questions,
            "model_used": model,
            "created_at": now,
            "updated_at": now,
        }

        dialect = postgresql if db.get_bind().dialect.name == "postgresql" else sqlite
        stmt = dialect.insert(VideoAnalysis).values(**values)
        merged = {
            col: func.coalesce(stmt.excluded[col], getattr(VideoAnalysis.__table__.c, col))
            for col in MERGED_COLUMNS
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=["platform", "external_id"],
            set_={**merged, "updated_at": now},
        ).returning(VideoAnalysis.id)

        analysis_id = (await db.execute(stmt)).scalar_one()
        await db.flush()
        logger.info(f"Saved analysis {platform.value}:{video_id} ({analysis_id})")
        return analysis_id

    async def update_analysis(
        self,
        db: AsyncSession,
        video_id: str,
        *,
        topics: Optional[List[Any]] = None,
        summary: Any = None,
        suggested_questions: Optional[List[str]] = None,
        platform: Any = None,
    ) -> VideoAnalysis:
        """Set only the provided fields of an existing analysis."""
        platform = _platform(platform, video_id)
        row = await self.get_analysis(platform, video_id, db)
        if row is None:
            raise NotFoundError("Video not found", f"No analysis stored for {video_id}")

        changes: Dict[str, Any] = {}
        if topics is not None:
            changes["topics"] = _jsonable(topics)
        if summary is not None:
            changes["summary"] = _jsonable(summary)
        if suggested_questions is not None:
            changes["suggested_questions"] = suggested_questions

        if changes:
            changes["updated_at"] = datetime.now(timezone.utc)
            await db.execute(
                update(VideoAnalysis)
                .where(VideoAnalysis.id == row.id)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            await db.flush()
            await db.refresh(row)
        return row


analysis_store = AnalysisStore()
