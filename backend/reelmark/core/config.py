"""
Reelmark Core Settings.

Every tunable lives here: database, upstream providers, LLM, orchestrator
timeouts, rate limits and the transcript language heuristic.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="REELMARK_", case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "Reelmark"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"
    cors_origins: List[str] = ["*"]

    # ── PostgreSQL ───────────────────────────────────────────────────────
    db_host: str = "postgres"
    db_port: int = 5432
    db_user: str = "reelmark"
    db_password: str = "reelmark_secret"
    db_name: str = "reelmark"
    database_url_override: Optional[str] = None
    db_enable_rls: bool = False

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Upstream providers ───────────────────────────────────────────────
    supadata_api_key: Optional[str] = None
    supadata_base_url: str = "https://api.supadata.ai/v1"
    youtube_oembed_url: str = "https://www.youtube.com/oembed"
    bilibili_api_base: str = "https://api.bilibili.com"
    provider_timeout_seconds: float = 10.0
    upstream_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    )
    bilibili_referer: str = "https://www.bilibili.com"

    # ── LLM (any OpenAI-compatible endpoint) ─────────────────────────────
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_fast_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 120.0
    llm_temperature: float = 0.3
    llm_max_transcript_chars: int = 120_000
    topic_count: int = 5
    candidate_pool_size: int = 12
    theme_count: int = 5

    # ── Orchestrator ─────────────────────────────────────────────────────
    api_base_url: str = "http://localhost:8000"
    transcript_timeout_seconds: float = 300.0
    video_info_timeout_seconds: float = 100.0
    summary_timeout_seconds: float = 60.0
    suggested_question_count: int = 3
    link_retry_attempts: int = 3
    link_retry_step_seconds: float = 1.0
    link_delay_seconds: float = 1.5

    # ── Rate limits ──────────────────────────────────────────────────────
    anonymous_daily_limit: int = 1
    authenticated_daily_limit: int = 5
    rate_limit_window_hours: int = 24

    # ── English transcript heuristic ─────────────────────────────────────
    language_sample_segments: int = 120
    language_cjk_max_latin_ratio: float = 0.2
    language_min_latin_ratio: float = 0.1


@lru_cache()
def get_settings() -> Settings:
    return Settings()
