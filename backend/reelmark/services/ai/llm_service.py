"""
Reelmark LLM Service — highlight topics, themes, summaries, questions and chat.

Talks to any OpenAI-compatible endpoint through ``AsyncOpenAI``. Every call
asks for a JSON object; parsing tolerates fenced ```json blocks because not
every compatible server honours ``response_format``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI
from prometheus_client import Counter

from reelmark.core.config import get_settings
from reelmark.core.errors import UpstreamError, UpstreamTimeoutError
from reelmark.schemas.schemas import (
    ChatMessage,
    ChatResponse,
    Topic,
    TopicCandidate,
    TopicGenerationMode,
    TopicQuote,
    TranscriptSegment,
    VideoInfo,
)
from reelmark.services.ai import prompts
from reelmark.services.topics.hydration import (
    format_timestamp,
    format_transcript_for_prompt,
    hydrate_topics_with_transcript,
    normalize_whitespace,
    resolve_citations,
    topic_key,
)

logger = logging.getLogger(__name__)
settings = get_settings()

LLM_GENERATIONS = Counter(
    "reelmark_llm_generations_total",
    "LLM generations by kind and outcome",
    ["kind", "outcome"],
)


@dataclass
class TopicGeneration:
    topics: List[Topic]
    themes: List[str] = field(default_factory=list)
    candidates: Optional[List[TopicCandidate]] = None
    model: str = ""


def parse_json_payload(text: Optional[str]) -> Dict[str, Any]:
    """Parse a model reply into a dict, unwrapping a fenced block if present."""
    if not text:
        raise UpstreamError("Invalid response from AI model", "Empty completion")
    body = text.strip()
    if "```json" in body:
        body = body.split("```json", 1)[1].split("```", 1)[0].strip()
    elif body.startswith("```"):
        body = body.strip("`").strip()
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, ValueError) as e:
        raise UpstreamError("Invalid response from AI model", str(e))
    if not isinstance(parsed, dict):
        raise UpstreamError("Invalid response from AI model", "Expected a JSON object")
    return parsed


def _items(payload: Dict[str, Any], field_name: str) -> List[Any]:
    value = payload.get(field_name)
    return value if isinstance(value, list) else []


class LLMService:
    """Prompted generations over a transcript."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.llm_api_key:
                raise UpstreamError("AI service is not configured", "Set REELMARK_LLM_API_KEY")
            self._client = AsyncOpenAI(
                api_key=settings.llm_api_key,
                base_url=settings.llm_base_url,
                timeout=settings.llm_timeout_seconds,
            )
        return self._client

    def resolve_model(self, model: Optional[str], mode: TopicGenerationMode = TopicGenerationMode.SMART) -> str:
        if model:
            return model
        return settings.llm_fast_model if mode == TopicGenerationMode.FAST else settings.llm_model

    async def _complete_json(self, kind: str, model: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        try:
            completion = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=settings.llm_temperature,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as e:
            LLM_GENERATIONS.labels(kind=kind, outcome="timeout").inc()
            raise UpstreamTimeoutError("AI request timed out", str(e))
        except openai.OpenAIError as e:
            LLM_GENERATIONS.labels(kind=kind, outcome="error").inc()
            raise UpstreamError("AI generation failed", str(e))

        content = completion.choices[0].message.content if completion.choices else None
        try:
            payload = parse_json_payload(content)
        except UpstreamError:
            LLM_GENERATIONS.labels(kind=kind, outcome="invalid").inc()
            raise
        LLM_GENERATIONS.labels(kind=kind, outcome="ok").inc()
        return payload

    def _transcript_text(self, transcript: Sequence[TranscriptSegment]) -> str:
        return format_transcript_for_prompt(transcript, settings.llm_max_transcript_chars)

    # ── Topics ───────────────────────────────────────────────────────────

    async def generate_topics(
        self,
        transcript: Sequence[TranscriptSegment],
        video_info: Optional[VideoInfo] = None,
        *,
        model: Optional[str] = None,
        mode: TopicGenerationMode = TopicGenerationMode.SMART,
        theme: Optional[str] = None,
        exclude_topic_keys: Sequence[str] = (),
        include_candidate_pool: bool = False,
    ) -> TopicGeneration:
        """Highlight topics; base runs also propose themes, optionally a candidate pool."""
        model_name = self.resolve_model(model, mode)
        theme = normalize_whitespace(theme) or None
        excluded = {key[:500] for key in exclude_topic_keys if key}

        prompt = prompts.topics_prompt(
            title=video_info.title if video_info else "Untitled",
            author=video_info.author if video_info else "Unknown",
            transcript=self._transcript_text(transcript),
            count=settings.topic_count,
            theme=theme,
            exclude_keys=sorted(excluded),
            include_themes=theme is None,
            include_candidates=include_candidate_pool,
            theme_count=settings.theme_count,
            pool_size=settings.candidate_pool_size,
        )
        payload = await self._complete_json(
            "topics" if theme is None else "theme_topics",
            model_name,
            [
                {"role": "system", "content": prompts.TOPICS_SYSTEM},
                {"role": "user", "content": prompt},
            ],
        )

        raw_topics = [t for t in _items(payload, "topics") if isinstance(t, dict)]
        raw_topics = [t for t in raw_topics if topic_key(t.get("quote")) not in excluded]
        prefix = f"theme-{theme.lower().replace(' ', '-')}" if theme else "topic"
        for position, raw in enumerate(raw_topics):
            raw.setdefault("id", f"{prefix}-{position}")
        topics = hydrate_topics_with_transcript(raw_topics, transcript)

        themes: List[str] = []
        if theme is None:
            for label in _items(payload, "themes"):
                label = normalize_whitespace(str(label))
                if label and label not in themes:
                    themes.append(label)
            themes = themes[: settings.theme_count]

        candidates = None
        if include_candidate_pool:
            candidates = self._candidates(_items(payload, "candidates"), excluded)

        logger.info(
            f"Generated {len(topics)} topics ({len(raw_topics) - len(topics)} unresolved) "
            f"theme={theme!r} model={model_name}"
        )
        return TopicGeneration(topics=topics, themes=themes, candidates=candidates, model=model_name)

    def _candidates(self, raw: List[Any], excluded: set) -> List[TopicCandidate]:
        candidates: List[TopicCandidate] = []
        seen = set(excluded)
        for item in raw:
            if not isinstance(item, dict) or not isinstance(item.get("quote"), dict):
                continue
            key = topic_key(item["quote"])
            if not key or key in seen:
                continue
            seen.add(key)
            candidates.append(TopicCandidate(
                key=key,
                title=normalize_whitespace(str(item.get("title") or "")) or "Untitled moment",
                quote=TopicQuote(
                    timestamp=str(item["quote"].get("timestamp") or ""),
                    text=str(item["quote"].get("text") or ""),
                ),
            ))
        return candidates[: settings.candidate_pool_size]

    # ── Summary ──────────────────────────────────────────────────────────

    async def generate_summary(
        self,
        transcript: Sequence[TranscriptSegment],
        video_info: Optional[VideoInfo] = None,
        model: Optional[str] = None,
    ) -> str:
        payload = await self._complete_json(
            "summary",
            self.resolve_model(model),
            [
                {"role": "system", "content": prompts.SUMMARY_SYSTEM},
                {"role": "user", "content": prompts.SUMMARY_TEMPLATE.format(
                    title=video_info.title if video_info else "Untitled",
                    author=video_info.author if video_info else "Unknown",
                    transcript=self._transcript_text(transcript),
                )},
            ],
        )
        summary = payload.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise UpstreamError("Invalid response from AI model", "Summary missing")
        return summary.strip()

    # ── Suggested questions ──────────────────────────────────────────────

    async def suggested_questions(
        self,
        transcript: Sequence[TranscriptSegment],
        topics: Sequence[Topic] = (),
        video_title: Optional[str] = None,
        count: Optional[int] = None,
    ) -> List[str]:
        """At most ``count`` questions; built-in defaults when generation fails."""
        count = count or settings.suggested_question_count
        try:
            payload = await self._complete_json(
                "questions",
                settings.llm_fast_model,
                [
                    {"role": "system", "content": prompts.QUESTIONS_SYSTEM},
                    {"role": "user", "content": prompts.QUESTIONS_TEMPLATE.format(
                        title=video_title or "Untitled",
                        topics="\n".join(f"- {t.title}" for t in topics) or "- (none)",
                        transcript=self._transcript_text(transcript),
                        count=count,
                    )},
                ],
            )
        except UpstreamError as e:
            logger.warning(f"Suggested questions failed, using defaults: {e}")
            return prompts.DEFAULT_QUESTIONS[:count]

        questions = []
        for q in _items(payload, "questions"):
            q = normalize_whitespace(str(q))
            if q and q not in questions:
                questions.append(q)
        return questions[:count] or prompts.DEFAULT_QUESTIONS[:count]

    # ── Chat ─────────────────────────────────────────────────────────────

    async def chat(
        self,
        message: str,
        transcript: Sequence[TranscriptSegment],
        history: Sequence[ChatMessage] = (),
        model: Optional[str] = None,
        topics: Sequence[Topic] = (),
        video_info: Optional[VideoInfo] = None,
    ) -> ChatResponse:
        """Answer a question about the video, with citations grounded in the transcript."""
        messages = [{"role": "system", "content": prompts.CHAT_SYSTEM.format(
            title=video_info.title if video_info else "Untitled",
            author=video_info.author if video_info else "Unknown",
            topics="\n".join(
                f"- [{format_timestamp(t.segments[0].start)}] {t.title}" if t.segments else f"- {t.title}"
                for t in topics
            ) or "- (none)",
            transcript=self._transcript_text(transcript),
        )}]
        for turn in history:
            if turn.role in ("user", "assistant") and turn.content:
                messages.append({"role": turn.role, "content": turn.content})
        messages.append({"role": "user", "content": message})

        payload = await self._complete_json("chat", self.resolve_model(model), messages)
        answer = payload.get("answer")
        if not isinstance(answer, str):
            raise UpstreamError("Invalid response from AI model", "Answer missing")
        citations = resolve_citations(_items(payload, "citations"), transcript)
        return ChatResponse(content=answer.strip(), citations=citations)


llm_service = LLMService()
