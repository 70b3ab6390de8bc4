"""
Reelmark ORM Models.

One analysis table for every platform, keyed by ``(platform, external_id)``.
"""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Index,
    Integer, String, Text, UniqueConstraint, Uuid, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reelmark.core.database import Base

# Python None must land as SQL NULL so COALESCE merges can see it.
JSONColumn = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


# ═══════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════

class Platform(str, enum.Enum):
    YOUTUBE = "youtube"
    BILIBILI = "bilibili"


# ═══════════════════════════════════════════════════════════════════════
# Analyses
# ═══════════════════════════════════════════════════════════════════════

class VideoAnalysis(Base):
    __tablename__ = "video_analyses"
    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="uq_video_analyses_platform_external_id"),
        CheckConstraint("length(external_id) > 0", name="ck_video_analyses_external_id_present"),
        Index("ix_video_analyses_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    platform: Mapped[Platform] = mapped_column(
        Enum(Platform, name="video_platform", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    author: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transcript: Mapped[Any] = mapped_column(JSONColumn, nullable=False)
    topics: Mapped[Optional[Any]] = mapped_column(JSONColumn, nullable=True)
    summary: Mapped[Optional[Any]] = mapped_column(JSONColumn, nullable=True)
    suggested_questions: Mapped[Optional[Any]] = mapped_column(JSONColumn, nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    viewers: Mapped[list["UserVideo"]] = relationship("UserVideo", back_populates="analysis", lazy="noload")


# ═══════════════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════════════

class UserSession(Base):
    """Bearer sessions issued by the sign-in provider; only the token hash is stored."""
    __tablename__ = "user_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserVideo(Base):
    __tablename__ = "user_videos"
    __table_args__ = (
        UniqueConstraint("user_id", "analysis_id", name="uq_user_videos_user_analysis"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    analysis_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_analyses.id", ondelete="CASCADE"))
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False)
    accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    analysis: Mapped["VideoAnalysis"] = relationship("VideoAnalysis", back_populates="viewers")


class GenerationUsage(Base):
    """One row per fresh analysis; the rate-limit ledger."""
    __tablename__ = "generation_usage"
    __table_args__ = (
        Index("ix_generation_usage_identity_created", "identity", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    identity: Mapped[str] = mapped_column(String(128))
    is_authenticated: Mapped[bool] = mapped_column(Boolean, default=False)
    video_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
