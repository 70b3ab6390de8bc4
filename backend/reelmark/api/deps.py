"""
Reelmark API — shared request dependencies (current user, caller identity).
"""
from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reelmark.core.database import get_db
from reelmark.core.errors import AuthenticationRequiredError
from reelmark.models.models import Platform, UserSession
from reelmark.services.ai.llm_service import LLMService, llm_service
from reelmark.services.limits.rate_limit_service import Caller
from reelmark.services.providers import get_provider
from reelmark.services.providers.base import VideoProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: uuid.UUID
    email: Optional[str] = None


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the first hop of ``X-Forwarded-For``."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


async def get_current_user_optional(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[CurrentUser]:
    """Resolve the bearer session, or None for anonymous / unknown / expired tokens."""
    token = _bearer_token(request)
    if token is None:
        return None

    session = (await db.execute(
        select(UserSession).where(UserSession.token_hash == hash_token(token))
    )).scalar_one_or_none()
    if session is None:
        logger.info(f"Unknown session token from {get_client_ip(request)}")
        return None

    if session.expires_at is not None:
        expires_at = session.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            return None

    return CurrentUser(id=session.user_id, email=session.email)


async def get_current_user(
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
) -> CurrentUser:
    if user is None:
        raise AuthenticationRequiredError("Authentication required", "Sign in to continue")
    return user


async def get_caller(
    request: Request,
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
) -> Caller:
    if user is not None:
        return Caller.for_user(user.id)
    return Caller.anonymous(get_client_ip(request))


# ── Service seams (overridden in tests) ──────────────────────────────────

def get_provider_factory() -> Callable[[Platform], VideoProvider]:
    return get_provider


def get_llm() -> LLMService:
    return llm_service
