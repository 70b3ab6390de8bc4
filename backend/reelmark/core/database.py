"""
Reelmark Database — async SQLAlchemy engine, session factory and bootstrap.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from reelmark.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Row-level security for deployments where the database is also exposed to
# end-user roles (public read, authenticated write, service role everything).
RLS_STATEMENTS = [
    "ALTER TABLE video_analyses ENABLE ROW LEVEL SECURITY",
    """
    DO $$ BEGIN
        CREATE POLICY video_analyses_public_read ON video_analyses
            FOR SELECT USING (true);
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
    """
    DO $$ BEGIN
        CREATE POLICY video_analyses_authenticated_insert ON video_analyses
            FOR INSERT WITH CHECK (current_setting('request.jwt.claim.role', true) = 'authenticated');
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
    """
    DO $$ BEGIN
        CREATE POLICY video_analyses_authenticated_update ON video_analyses
            FOR UPDATE USING (current_setting('request.jwt.claim.role', true) = 'authenticated');
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
    """
    DO $$ BEGIN
        CREATE POLICY video_analyses_service_role ON video_analyses
            FOR ALL USING (current_setting('request.jwt.claim.role', true) = 'service_role');
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
]


async def init_db(bind=None) -> None:
    """Create tables (and RLS policies on Postgres when enabled)."""
    from reelmark.models import models  # noqa: F401  (registers mappers)

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if settings.db_enable_rls and conn.dialect.name == "postgresql":
            for stmt in RLS_STATEMENTS:
                await conn.execute(text(stmt))
            logger.info("Row-level security policies ensured on video_analyses")
