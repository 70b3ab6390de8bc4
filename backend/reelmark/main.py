"""
Reelmark — Main FastAPI Application

Video highlight reels, summaries and Q&A from YouTube and Bilibili transcripts.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from reelmark.core.config import get_settings
from reelmark.core.database import engine, init_db
from reelmark.core.errors import register_error_handlers

settings = get_settings()

# ── Logging ──────────────────────────────────────────────────────────────

logging.basicConfig(level=logging.getLevelName(settings.log_level))

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level)
    ),
)

logger = structlog.get_logger()


# ── Lifespan ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    logger.info("Starting Reelmark", version=settings.app_version)

    await init_db()

    logger.info(
        "Reelmark ready",
        llm_model=settings.llm_model,
        supadata_configured=bool(settings.supadata_api_key),
        rls=settings.db_enable_rls,
    )

    yield

    await engine.dispose()
    logger.info("Shutting down Reelmark")


# ── App ──────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Reelmark",
    description="Topic-segmented highlight reels for YouTube and Bilibili videos",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ───────────────────────────────────────────────────────────────

from reelmark.api.routes import analysis, cache, library, videos  # noqa: E402

app.include_router(videos.router, prefix=settings.api_prefix)
app.include_router(cache.router, prefix=settings.api_prefix)
app.include_router(analysis.router, prefix=settings.api_prefix)
app.include_router(library.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "description": "Topic-segmented highlight reels for YouTube and Bilibili videos",
        "version": settings.app_version,
        "platforms": ["youtube", "bilibili"],
        "features": [
            "transcripts", "highlight_reels", "themes", "summaries",
            "suggested_questions", "chat_citations", "analysis_cache",
        ],
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "version": settings.app_version}
