"""
Reelmark API — AI generation routes: topics, summary, questions, chat.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reelmark.api.deps import get_caller, get_llm
from reelmark.core.database import get_db
from reelmark.schemas.schemas import (
    ChatRequest,
    ChatResponse,
    SuggestedQuestionsRequest,
    SuggestedQuestionsResponse,
    SummaryRequest,
    SummaryResponse,
    VideoAnalysisRequest,
    VideoAnalysisResponse,
)
from reelmark.services.cache.analysis_store import analysis_store
from reelmark.services.limits.rate_limit_service import Caller, rate_limit_service
from reelmark.services.topics.hydration import hydrate_topics_with_transcript, normalize_transcript

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analysis"])


@router.post("/video-analysis", response_model=VideoAnalysisResponse, response_model_exclude_none=True)
async def video_analysis(
    data: VideoAnalysisRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
    llm=Depends(get_llm),
):
    """
    Generate highlight topics.

    - theme set:             themed topics only; free
    - cached, no pool:       stored topics, no model call; free
    - cached, with pool:     stored topics plus fresh themes/candidates; free
    - not cached:            full generation; counts against the daily limit
    """
    if data.theme:
        result = await llm.generate_topics(
            data.transcript,
            data.video_info,
            model=data.model,
            mode=data.mode,
            theme=data.theme,
            exclude_topic_keys=data.exclude_topic_keys,
        )
        return VideoAnalysisResponse(topics=result.topics)

    row = await analysis_store.get_analysis_for(data.video_id, data.platform, db)
    if row is not None and row.topics is not None:
        cached_topics = hydrate_topics_with_transcript(row.topics, normalize_transcript(row.transcript))
        if not data.include_candidate_pool:
            return VideoAnalysisResponse(topics=cached_topics, cached=True)
        result = await llm.generate_topics(
            data.transcript,
            data.video_info,
            model=data.model,
            mode=data.mode,
            exclude_topic_keys=data.exclude_topic_keys,
            include_candidate_pool=True,
        )
        return VideoAnalysisResponse(
            topics=cached_topics,
            themes=result.themes,
            topic_candidates=result.candidates,
            cached=True,
        )

    await rate_limit_service.enforce(caller, db)
    result = await llm.generate_topics(
        data.transcript,
        data.video_info,
        model=data.model,
        mode=data.mode,
        exclude_topic_keys=data.exclude_topic_keys,
        include_candidate_pool=data.include_candidate_pool,
    )
    await rate_limit_service.record_usage(caller, db, video_id=data.video_id)
    return VideoAnalysisResponse(
        topics=result.topics,
        themes=result.themes,
        topic_candidates=result.candidates,
    )


@router.post("/generate-summary", response_model=SummaryResponse)
async def generate_summary(data: SummaryRequest, llm=Depends(get_llm)):
    summary = await llm.generate_summary(data.transcript, data.video_info)
    return SummaryResponse(summary_content=summary)


@router.post("/suggested-questions", response_model=SuggestedQuestionsResponse)
async def suggested_questions(data: SuggestedQuestionsRequest, llm=Depends(get_llm)):
    questions = await llm.suggested_questions(
        data.transcript, data.topics, video_title=data.video_title, count=data.count,
    )
    return SuggestedQuestionsResponse(questions=questions)


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(data: ChatRequest, llm=Depends(get_llm)):
    """Answer a question about the video with transcript-grounded citations."""
    return await llm.chat(
        data.message, data.transcript,
        history=data.history, topics=data.topics, video_info=data.video_info,
    )
