"""
Reelmark Analysis Orchestrator — drives one analysis view against the API.

Flow for ``process_video(url)``:
  1. validate the URL locally
  2. cancel in-flight requests, reset the view
  3. cache hit  -> LOADING_CACHED, hydrate, IDLE, refresh themes (+ summary) in background
     cache miss -> quota gate, ANALYZING_NEW, transcript + metadata, topics + summary,
                   one batched update, then save + suggested questions in background
  4. any fatal error lands in ``view.error``; the page always returns to IDLE
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import aiohttp

from reelmark.core.config import Settings, get_settings
from reelmark.models.models import Platform
from reelmark.orchestrator import messages
from reelmark.orchestrator.client import AnalysisApiClient, ApiError
from reelmark.orchestrator.registry import RequestRegistry, RequestTimeout
from reelmark.orchestrator.session import LIMIT_MESSAGE_KEY, PENDING_VIDEO_KEY, SessionStore
from reelmark.orchestrator.state import DEFAULT_CANDIDATES_KEY, AnalysisViewState, PageState
from reelmark.schemas.schemas import (
    Topic,
    TopicCandidate,
    TopicGenerationMode,
    TopicQuote,
    TranscriptSegment,
)
from reelmark.services.ai.prompts import DEFAULT_QUESTIONS
from reelmark.services.platform.detector import (
    build_watch_url,
    detect_platform,
    extract_video_id,
    platform_for_video_id,
)
from reelmark.services.topics.hydration import (
    hydrate_topics_with_transcript,
    normalize_transcript,
    normalize_whitespace,
    topic_key,
)

logger = logging.getLogger(__name__)

Listener = Callable[[str, "AnalysisOrchestrator"], None]
REQUEST_FAILURES = (ApiError, RequestTimeout, aiohttp.ClientError)


class AnalysisError(Exception):
    """A fatal step failed; the message is already user-facing."""


def _topic_keys(topics: List[Topic]) -> Set[str]:
    keys = set()
    for topic in topics:
        if topic.quote and topic.quote.timestamp and topic.quote.text:
            keys.add(topic_key(topic.quote))
    return keys


def _candidates(raw: Any) -> List[TopicCandidate]:
    candidates = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict) or not isinstance(item.get("quote"), dict):
            continue
        quote = TopicQuote(
            timestamp=str(item["quote"].get("timestamp") or ""),
            text=str(item["quote"].get("text") or ""),
        )
        candidates.append(TopicCandidate(
            key=topic_key(quote) or str(item.get("key") or ""),
            title=str(item.get("title") or ""),
            quote=quote,
        ))
    return candidates


def _transcript_body(transcript: List[TranscriptSegment]) -> List[Dict[str, Any]]:
    return [seg.model_dump() for seg in transcript]


def _video_info_body(video_id: str, info: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Cached or fetched metadata shaped as a ``VideoInfo`` request body."""
    if not info:
        return None
    return {
        "videoId": video_id,
        "title": info.get("title") or video_id,
        "author": info.get("author") or "Unknown",
        "thumbnail": info.get("thumbnail") or "",
        "duration": info.get("duration"),
        "description": info.get("description"),
        "tags": info.get("tags"),
    }


def _placeholder_info(video_id: str, platform: Optional[str]) -> Dict[str, Any]:
    label = "Bilibili Video" if platform == Platform.BILIBILI.value else "YouTube Video"
    return {"videoId": video_id, "title": f"{label} {video_id}", "author": "Unknown", "duration": 0, "thumbnail": ""}


class AnalysisOrchestrator:
    """State machine behind one analysis page."""

    def __init__(
        self,
        api: AnalysisApiClient,
        *,
        user: Optional[str] = None,
        session: Optional[SessionStore] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = api
        self.user = user
        self.session = session or SessionStore()
        self.settings = settings or get_settings()
        self.registry = RequestRegistry()
        self.view = AnalysisViewState()
        self.state = PageState.IDLE
        self.transitions: List[Tuple[PageState, PageState]] = []
        self.mode = TopicGenerationMode.SMART

        self._sleep = sleep
        self._listeners: List[Listener] = []
        self._background_tasks: Set[asyncio.Task] = set()
        self._pending_theme_requests: Dict[str, int] = {}
        self._active_theme_request_id: Optional[int] = None
        self._has_redirected = False
        self._run_id = 0

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    # ── Observers ────────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event, self)

    def _set_state(self, new_state: PageState) -> None:
        if new_state == self.state:
            return
        self.transitions.append((self.state, new_state))
        self.state = new_state
        self._emit("state")

    # ── Background work ──────────────────────────────────────────────────

    def _background(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(self._guarded(name, coro))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _guarded(self, name: str, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            logger.debug(f"Background operation {name} cancelled")
            raise
        except Exception as e:
            logger.warning(f"Background operation {name} failed: {e}")
            return None

    async def wait_for_background(self) -> None:
        """Drain background work, including work scheduled while draining."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ── Pending video / limit redirect ───────────────────────────────────

    def _store_pending(self, video_id: str) -> None:
        if not self.is_authenticated:
            self.session.set(PENDING_VIDEO_KEY, video_id)

    def _redirect_for_limit(self, view: AnalysisViewState, message: Optional[str], video_id: str) -> None:
        """Send the user to sign in; happens at most once per orchestrator."""
        if self._has_redirected:
            return
        self._has_redirected = True
        text = message.strip() if isinstance(message, str) and message.strip() else messages.GUEST_LIMIT_MESSAGE
        self._store_pending(video_id)
        self.session.set(LIMIT_MESSAGE_KEY, text)
        view.auth_redirect = True
        view.limit_message = text
        self._emit("auth_redirect")

    async def refresh_limit(self, view: Optional[AnalysisViewState] = None) -> Optional[Dict[str, Any]]:
        view = view or self.view
        try:
            status = await self.api.check_limit()
        except REQUEST_FAILURES as e:
            logger.warning(f"Rate limit check failed: {e}")
            return None
        view.rate_limit = status
        return status

    async def _can_generate(self, view: AnalysisViewState, video_id: str) -> bool:
        status = await self.refresh_limit(view)
        if self.is_authenticated:
            if status is not None and status.get("canGenerate") is False:
                view.is_rate_limit_error = True
                view.error = messages.AUTH_LIMIT_MESSAGE
                return False
            return True

        remaining = status.get("remaining") if status else None
        if isinstance(remaining, int) and remaining != -1 and remaining <= 0:
            self._redirect_for_limit(view, None, video_id)
            return False
        return True

    # ═══════════════════════════════════════════════════════════════════
    # process_video
    # ═══════════════════════════════════════════════════════════════════

    async def process_video(
        self, url: str, mode: TopicGenerationMode = TopicGenerationMode.SMART
    ) -> AnalysisViewState:
        video_id = extract_video_id(url)
        platform = detect_platform(url)
        if not video_id or platform is None:
            self.view.error = messages.INVALID_URL_MESSAGE
            self._emit("view")
            return self.view

        self.registry.cancel_all()
        self.registry.reset_sequence()
        self._pending_theme_requests.clear()
        self._active_theme_request_id = None
        self._run_id += 1
        run_id = self._run_id
        self.mode = mode

        view = self.view = AnalysisViewState(video_id=video_id, platform=platform.value)
        self._store_pending(video_id)
        self._emit("view")

        try:
            cache = await self._check_cache(url)
            if cache is not None and cache.get("cached"):
                self._load_cached(view, cache, video_id)
                return view
            if not await self._can_generate(view, video_id):
                return view
            await self._analyze_new(view, url, video_id, platform)
        except AnalysisError as e:
            view.error = messages.normalize_error_message(str(e), "An error occurred")
            logger.info(f"Analysis of {video_id} failed: {view.error}")
        except asyncio.CancelledError:
            logger.debug(f"Analysis of {video_id} superseded")
        finally:
            if run_id == self._run_id:
                if not view.from_cache:
                    view.is_generating_summary = False
                self._set_state(PageState.IDLE)
                self._emit("view")
        return view

    async def _check_cache(self, url: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.registry.run("check-cache", self.api.check_cache(url))
        except REQUEST_FAILURES as e:
            logger.warning(f"Cache check failed, treating as miss: {e}")
            return None

    # ── Cache hit ────────────────────────────────────────────────────────

    def _load_cached(self, view: AnalysisViewState, cache: Dict[str, Any], video_id: str) -> None:
        self._set_state(PageState.LOADING_CACHED)

        transcript = normalize_transcript(cache.get("transcript") or [])
        topics = hydrate_topics_with_transcript(cache.get("topics") or [], transcript)

        view.from_cache = True
        view.transcript = transcript
        view.video_info = cache.get("videoInfo")
        view.topics = topics
        view.base_topics = list(topics)
        view.used_topic_keys = _topic_keys(topics)
        view.selected_topic = topics[0] if topics else None
        view.summary = cache.get("summary") or None
        view.suggested_questions = cache.get("suggestedQuestions") or None
        self._store_pending(video_id)

        self._set_state(PageState.IDLE)
        self._emit("view")

        self._background("load-cached-themes", self._refresh_cached_themes(view, video_id, transcript))
        if not view.summary:
            view.is_generating_summary = True
            self._background("generate-cached-summary", self._generate_cached_summary(view, video_id, transcript))

    async def _refresh_cached_themes(
        self, view: AnalysisViewState, video_id: str, transcript: List[TranscriptSegment]
    ) -> None:
        data = await self.registry.run("cached-themes", self.api.video_analysis({
            "videoId": video_id,
            "platform": view.platform,
            "videoInfo": _video_info_body(video_id, view.video_info),
            "transcript": _transcript_body(transcript),
            "includeCandidatePool": True,
            "mode": self.mode.value,
        }))
        if isinstance(data.get("themes"), list):
            view.themes = [str(t) for t in data["themes"]]
        if isinstance(data.get("topicCandidates"), list):
            view.theme_candidates[DEFAULT_CANDIDATES_KEY] = _candidates(data["topicCandidates"])
        self._emit("view")

    async def _generate_cached_summary(
        self, view: AnalysisViewState, video_id: str, transcript: List[TranscriptSegment]
    ) -> None:
        try:
            data = await self.registry.run(
                "cached-summary",
                self.api.generate_summary({
                    "transcript": _transcript_body(transcript),
                    "videoInfo": _video_info_body(video_id, view.video_info),
                    "videoId": video_id,
                }),
                self.settings.summary_timeout_seconds,
            )
        except REQUEST_FAILURES as e:
            view.summary_error = self._summary_error_message(e)
            return
        finally:
            view.is_generating_summary = False

        view.summary = data.get("summaryContent")
        self._emit("view")
        await self._persist(video_id, view.platform, summary=view.summary)

    # ── Cache miss ───────────────────────────────────────────────────────

    async def _fetch_video_info(self, url: str) -> Optional[Dict[str, Any]]:
        """Optional step: failures and timeouts yield None."""
        try:
            data = await self.registry.run(
                "video-info", self.api.fetch_video_info(url), self.settings.video_info_timeout_seconds,
            )
        except REQUEST_FAILURES as e:
            logger.warning(f"Video info unavailable: {e}")
            return None
        if not isinstance(data, dict) or data.get("error"):
            return None
        return data

    async def _fetch_transcript(self, url: str) -> List[TranscriptSegment]:
        try:
            data = await self.registry.run(
                "transcript", self.api.fetch_transcript(url), self.settings.transcript_timeout_seconds,
            )
        except RequestTimeout:
            raise AnalysisError(messages.TRANSCRIPT_TIMEOUT_MESSAGE)
        except ApiError as e:
            raise AnalysisError(messages.build_api_error_message(e.payload, "Failed to fetch transcript"))
        except aiohttp.ClientError:
            raise AnalysisError("Network error: could not fetch the transcript. Is the server running?")

        transcript = normalize_transcript(data.get("transcript") or [])
        if not transcript:
            raise AnalysisError("No transcript is available for this video.")
        return transcript

    async def _analyze_new(self, view: AnalysisViewState, url: str, video_id: str, platform: Platform) -> None:
        self._set_state(PageState.ANALYZING_NEW)

        info_task = asyncio.ensure_future(self._fetch_video_info(url))
        try:
            transcript = await self._fetch_transcript(url)
        except (AnalysisError, asyncio.CancelledError):
            await self._abort(info_task, "video-info")
            raise
        info = await info_task
        view.transcript = transcript
        view.video_info = info
        self._emit("view")

        info_body = _video_info_body(video_id, info)
        summary_task = asyncio.ensure_future(self.registry.run(
            "summary",
            self.api.generate_summary({
                "transcript": _transcript_body(transcript),
                "videoInfo": info_body,
                "videoId": video_id,
            }),
            self.settings.summary_timeout_seconds,
        ))
        view.is_generating_summary = True

        try:
            topics_data = await self.registry.run("topics", self.api.video_analysis({
                "videoId": video_id,
                "platform": platform.value,
                "videoInfo": info_body,
                "transcript": _transcript_body(transcript),
                "includeCandidatePool": True,
                "mode": self.mode.value,
            }))
        except asyncio.CancelledError:
            await self._abort(summary_task, "summary")
            raise
        except ApiError as e:
            await self._abort(summary_task, "summary")
            if e.status == 429 and e.requires_auth:
                self._redirect_for_limit(view, e.payload.get("message"), video_id)
                return
            if e.status == 429:
                view.is_rate_limit_error = True
                self._background("refresh-limit", self.refresh_limit(view))
                raise AnalysisError(messages.limit_message_from(e.payload, messages.AUTH_LIMIT_MESSAGE))
            raise AnalysisError(messages.build_api_error_message(e.payload, "Failed to generate topics"))
        except (RequestTimeout, aiohttp.ClientError):
            await self._abort(summary_task, "summary")
            raise AnalysisError("Network error: could not generate topics. Please check your connection.")

        topics = hydrate_topics_with_transcript(topics_data.get("topics") or [], transcript)
        themes = [str(t) for t in topics_data.get("themes") or []]
        candidates = _candidates(topics_data.get("topicCandidates"))

        summary, summary_error = None, None
        try:
            summary = (await summary_task).get("summaryContent")
        except REQUEST_FAILURES as e:
            summary_error = self._summary_error_message(e)

        # one batched update
        view.topics = topics
        view.base_topics = list(topics)
        view.used_topic_keys = _topic_keys(topics)
        view.theme_candidates[DEFAULT_CANDIDATES_KEY] = candidates
        view.selected_topic = topics[0] if topics else None
        view.themes = themes
        view.summary = summary
        view.summary_error = summary_error
        view.is_generating_summary = False
        self._emit("view")

        await self.refresh_limit(view)

        saved = self._background("save-analysis", self._save_analysis(view, video_id, transcript, topics, summary))
        self._background(
            "generate-questions",
            self._generate_questions(view, video_id, transcript, topics, saved),
        )

    async def _abort(self, task: asyncio.Task, key: str) -> None:
        """Cancel a registry request and wait for it to settle."""
        self.registry.cancel(key)
        task.cancel()
        await asyncio.wait([task])
        if not task.cancelled():
            task.exception()

    def _summary_error_message(self, error: BaseException) -> str:
        if isinstance(error, RequestTimeout):
            return messages.SUMMARY_TIMEOUT_MESSAGE
        if isinstance(error, ApiError):
            return messages.build_api_error_message(error.payload, "Failed to generate summary. Please try again.")
        return messages.normalize_error_message(str(error), "Failed to generate summary. Please try again.")

    # ── Background persistence ───────────────────────────────────────────

    async def _save_analysis(
        self,
        view: AnalysisViewState,
        video_id: str,
        transcript: List[TranscriptSegment],
        topics: List[Topic],
        summary: Optional[Any],
    ) -> bool:
        body = {
            "videoId": video_id,
            "platform": view.platform,
            "videoInfo": _video_info_body(video_id, view.video_info) or _placeholder_info(video_id, view.platform),
            "transcript": _transcript_body(transcript),
            "topics": [t.dump() for t in topics],
            "summary": summary,
        }
        try:
            await self.api.save_analysis(body)
        except REQUEST_FAILURES as e:
            logger.error(f"Failed to save analysis for {video_id}: {e}")
            view.save_warning = messages.SAVE_WARNING_MESSAGE
            self._emit("view")
            return False
        return True

    async def _generate_questions(
        self,
        view: AnalysisViewState,
        video_id: str,
        transcript: List[TranscriptSegment],
        topics: List[Topic],
        saved: asyncio.Task,
    ) -> List[str]:
        count = self.settings.suggested_question_count
        questions: List[str] = []
        try:
            data = await self.api.suggested_questions({
                "transcript": _transcript_body(transcript),
                "topics": [t.dump() for t in topics],
                "videoTitle": (view.video_info or {}).get("title"),
                "count": count,
            })
            raw = data.get("questions") if isinstance(data.get("questions"), list) else []
            questions = [normalize_whitespace(q) for q in raw if isinstance(q, str) and q.strip()]
        except REQUEST_FAILURES as e:
            logger.warning(f"Suggested questions failed, using defaults: {e}")

        questions = questions[:count] or DEFAULT_QUESTIONS[:count]
        if not view.suggested_questions:
            view.suggested_questions = questions
            self._emit("view")

        # the row must exist before it can be updated
        await asyncio.wait([saved])
        await self._persist(video_id, view.platform, suggested_questions=questions)
        return questions

    async def _persist(self, video_id: str, platform: Optional[str], **fields: Any) -> None:
        body: Dict[str, Any] = {"videoId": video_id, "platform": platform}
        if "summary" in fields:
            body["summary"] = fields["summary"]
        if "suggested_questions" in fields:
            body["suggestedQuestions"] = fields["suggested_questions"]
        try:
            await self.api.update_analysis(body)
        except ApiError as e:
            if e.status != 404:
                logger.warning(f"Failed to update analysis for {video_id}: {e}")
        except (RequestTimeout, aiohttp.ClientError) as e:
            logger.warning(f"Failed to update analysis for {video_id}: {e}")

    # ═══════════════════════════════════════════════════════════════════
    # Themes
    # ═══════════════════════════════════════════════════════════════════

    def _reset_theme(self, view: AnalysisViewState, preserve_error: bool = False) -> None:
        if not preserve_error:
            view.theme_error = None
        view.selected_theme = None
        view.topics = list(view.base_topics)
        view.selected_topic = None
        view.is_loading_theme_topics = False
        view.used_topic_keys = _topic_keys(view.base_topics)
        self._active_theme_request_id = None
        self._emit("view")

    async def select_theme(self, label: Optional[str]) -> None:
        """Switch the topic list to a theme, or back to the base topics."""
        view = self.view
        if not view.video_id:
            return

        theme = (label or "").strip()
        if not theme or view.selected_theme == theme:
            self._reset_theme(view)
            return

        themed = view.theme_topics.get(theme)
        view.selected_theme = theme
        view.theme_error = None
        view.selected_topic = None

        pending_id = self._pending_theme_requests.get(theme)
        if themed is None and pending_id is not None:
            self._active_theme_request_id = pending_id
            view.is_loading_theme_topics = True
            self._emit("view")
            return

        if themed is None:
            request_id = self.registry.next_request_id()
            self._pending_theme_requests[theme] = request_id
            self._active_theme_request_id = request_id
            view.is_loading_theme_topics = True
            self._emit("view")
            try:
                data = await self.registry.run(
                    f"theme-topics:{theme}:{request_id}",
                    self.api.video_analysis({
                        "videoId": view.video_id,
                        "platform": view.platform,
                        "videoInfo": _video_info_body(view.video_id, view.video_info),
                        "transcript": _transcript_body(view.transcript),
                        "theme": theme,
                        "excludeTopicKeys": [key[:500] for key in view.used_topic_keys],
                        "mode": self.mode.value,
                    }),
                )
            except asyncio.CancelledError:
                return
            except REQUEST_FAILURES as e:
                message = (
                    messages.build_api_error_message(e.payload, "Failed to generate theme highlights")
                    if isinstance(e, ApiError)
                    else messages.normalize_error_message(str(e), "Failed to generate theme highlights")
                )
                logger.warning(f"Theme generation for {theme!r} failed: {message}")
                if view.selected_theme == theme:
                    self._reset_theme(view, preserve_error=True)
                    view.theme_error = message
                return
            finally:
                if self._pending_theme_requests.get(theme) == request_id:
                    del self._pending_theme_requests[theme]
                if self._active_theme_request_id == request_id and view.selected_theme == theme:
                    view.is_loading_theme_topics = False
                    self._active_theme_request_id = None

            themed = hydrate_topics_with_transcript(data.get("topics") or [], view.transcript)
            view.theme_candidates[theme] = _candidates(data.get("topicCandidates"))
            view.used_topic_keys |= _topic_keys(themed)
            view.theme_topics[theme] = themed
        else:
            self._active_theme_request_id = None
            view.is_loading_theme_topics = False

        if view.selected_theme != theme:
            return

        view.topics = themed
        if themed:
            view.selected_topic = themed[0]
            view.theme_error = None
        else:
            view.selected_topic = None
            view.theme_error = messages.NO_THEME_HIGHLIGHTS_MESSAGE
        self._emit("view")

    # ═══════════════════════════════════════════════════════════════════
    # Post-auth linking
    # ═══════════════════════════════════════════════════════════════════

    async def link_pending_video(self, retry_count: int = 0) -> bool:
        """Attach the pending (or current) video to the signed-in user's library."""
        video_id = self.session.get(PENDING_VIDEO_KEY) or self.view.video_id
        if not video_id or not self.is_authenticated:
            return False

        try:
            cache = await self.api.check_cache(build_watch_url(platform_for_video_id(video_id), video_id))
        except REQUEST_FAILURES as e:
            logger.warning(f"Cache check before linking {video_id} failed: {e}")
            return False
        if not cache.get("cached"):
            logger.info(f"{video_id} not saved yet, skipping link")
            return False

        try:
            data = await self.api.link_video(video_id)
        except ApiError as e:
            if e.status == 404 and retry_count < self.settings.link_retry_attempts:
                delay = self.settings.link_retry_step_seconds * (retry_count + 1)
                logger.info(f"{video_id} not found for linking, retrying in {delay:g}s")
                await self._sleep(delay)
                return await self.link_pending_video(retry_count + 1)
            logger.warning(f"Failed to link {video_id}: {e}")
            return False
        except (RequestTimeout, aiohttp.ClientError) as e:
            logger.warning(f"Failed to link {video_id}: {e}")
            return False

        self.session.remove(PENDING_VIDEO_KEY)
        logger.info(f"Linked {video_id} (already_linked={bool(data.get('alreadyLinked'))})")
        return True
