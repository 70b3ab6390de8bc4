"""
Reelmark Rate Limit Service — daily quota on fresh analyses.

Quota is a rolling window over the ``generation_usage`` ledger. Signed-in
users are keyed by user id, anonymous callers by client IP. Cached results,
theme reruns and candidate pools never consume quota.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reelmark.core.config import get_settings
from reelmark.core.errors import AUTH_LIMIT_MESSAGE, GUEST_LIMIT_MESSAGE, RateLimitError
from reelmark.models.models import GenerationUsage
from reelmark.schemas.schemas import RateLimitStatus

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class Caller:
    """Who is asking: a signed-in user id or an anonymous client address."""
    identity: str
    is_authenticated: bool

    @classmethod
    def for_user(cls, user_id) -> "Caller":
        return cls(identity=f"user:{user_id}", is_authenticated=True)

    @classmethod
    def anonymous(cls, client_ip: Optional[str]) -> "Caller":
        return cls(identity=f"anon:{client_ip or 'unknown'}", is_authenticated=False)


class RateLimitService:

    def limit_for(self, caller: Caller) -> int:
        if caller.is_authenticated:
            return settings.authenticated_daily_limit
        return settings.anonymous_daily_limit

    async def status(self, caller: Caller, db: AsyncSession) -> RateLimitStatus:
        window = timedelta(hours=settings.rate_limit_window_hours)
        since = datetime.now(timezone.utc) - window
        used, oldest = (await db.execute(
            select(func.count(GenerationUsage.id), func.min(GenerationUsage.created_at)).where(
                GenerationUsage.identity == caller.identity,
                GenerationUsage.created_at >= since,
            )
        )).one()

        limit = self.limit_for(caller)
        if limit < 0:
            return RateLimitStatus(
                is_authenticated=caller.is_authenticated,
                can_generate=True,
                remaining=-1,
                limit=limit,
                reset_at=None,
            )

        remaining = max(limit - (used or 0), 0)
        reset_at = None
        if oldest is not None:
            if oldest.tzinfo is None:
                oldest = oldest.replace(tzinfo=timezone.utc)
            reset_at = oldest + window

        return RateLimitStatus(
            is_authenticated=caller.is_authenticated,
            can_generate=remaining > 0,
            remaining=remaining,
            limit=limit,
            reset_at=reset_at,
        )

    async def enforce(self, caller: Caller, db: AsyncSession) -> RateLimitStatus:
        """Raise ``RateLimitError`` when the caller has no quota left."""
        current = await self.status(caller, db)
        if current.can_generate:
            return current

        logger.info(f"Rate limit reached for {caller.identity} ({current.limit}/window)")
        if caller.is_authenticated:
            raise RateLimitError("Daily limit reached", AUTH_LIMIT_MESSAGE, requires_auth=False)
        raise RateLimitError("Rate limit exceeded", GUEST_LIMIT_MESSAGE, requires_auth=True)

    async def record_usage(self, caller: Caller, db: AsyncSession, video_id: Optional[str] = None) -> None:
        db.add(GenerationUsage(
            identity=caller.identity,
            is_authenticated=caller.is_authenticated,
            video_id=video_id,
            created_at=datetime.now(timezone.utc),
        ))
        await db.flush()


rate_limit_service = RateLimitService()
