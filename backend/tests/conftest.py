"""
Shared fixtures: in-memory database, fake provider / LLM, ASGI client.
"""
import os

os.environ.setdefault("REELMARK_DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reelmark.api.deps import get_llm, get_provider_factory, hash_token
from reelmark.core.database import get_db, init_db
from reelmark.main import app
from reelmark.models.models import Platform, UserSession
from reelmark.schemas.schemas import TopicCandidate, TopicQuote, TranscriptSegment, VideoInfo
from reelmark.services.ai.llm_service import TopicGeneration
from reelmark.services.providers.base import VideoProvider
from reelmark.services.topics.hydration import hydrate_topics_with_transcript, topic_key

YOUTUBE_ID = "dQw4w9WgXcQ"
YOUTUBE_URL = f"https://www.youtube.com/watch?v={YOUTUBE_ID}"

LINES = [
    ("Welcome back to the channel everyone", 0.0, 4.0),
    ("Today we are talking about sourdough starters", 4.0, 5.0),
    ("The first thing you need is flour and water", 9.0, 6.0),
    ("Feed the starter every twelve hours at room temperature", 15.0, 6.0),
    ("After a week it should double in size", 21.0, 5.0),
    ("That is how you know it is ready to bake", 26.0, 4.0),
]


def make_transcript() -> List[TranscriptSegment]:
    return [TranscriptSegment(text=t, start=s, duration=d) for t, s, d in LINES]


def transcript_payload() -> List[Dict]:
    return [{"text": t, "start": s, "duration": d} for t, s, d in LINES]


RAW_TOPICS = [
    {"title": "What you need", "quote": {"timestamp": "00:09", "text": "The first thing you need is flour and water"}},
    {"title": "Feeding schedule", "quote": {"timestamp": "00:15", "text": "Feed the starter every twelve hours"}},
]

THEMED_TOPICS = [
    {"title": "Readiness", "quote": {"timestamp": "00:26", "text": "That is how you know it is ready to bake"}},
]


# ── Fakes ────────────────────────────────────────────────────────────────

class FakeProvider(VideoProvider):
    platform = Platform.YOUTUBE

    def __init__(self, transcript=None, info: Optional[VideoInfo] = None, info_error: Optional[Exception] = None):
        self.transcript = make_transcript() if transcript is None else transcript
        self.info = info
        self.info_error = info_error
        self.transcript_calls: List[str] = []
        self.info_calls: List[str] = []

    async def fetch_transcript(self, video_id):
        self.transcript_calls.append(video_id)
        return self.transcript

    async def fetch_video_info(self, video_id):
        self.info_calls.append(video_id)
        if self.info_error is not None:
            raise self.info_error
        return self.info or VideoInfo(video_id=video_id, title="Sourdough 101", author="Baker", duration=30)

    def placeholder_info(self, video_id):
        return VideoInfo(video_id=video_id, title="YouTube Video", author="Unknown")


class FakeLLM:
    def __init__(self):
        self.topic_calls: List[Dict] = []
        self.chat_calls: List[Dict] = []

    async def generate_topics(self, transcript, video_info=None, **kwargs):
        self.topic_calls.append(kwargs)
        raw = THEMED_TOPICS if kwargs.get("theme") else RAW_TOPICS
        topics = hydrate_topics_with_transcript([dict(t) for t in raw], transcript)
        candidates = None
        if kwargs.get("include_candidate_pool"):
            quote = TopicQuote(timestamp="00:21", text="After a week it should double in size")
            candidates = [TopicCandidate(key=topic_key(quote), title="Doubling", quote=quote)]
        return TopicGeneration(
            topics=topics,
            themes=[] if kwargs.get("theme") else ["Baking basics", "Timing"],
            candidates=candidates,
            model="fake-model",
        )

    async def generate_summary(self, transcript, video_info=None, model=None):
        return "## Summary\nA sourdough starter walkthrough."

    async def suggested_questions(self, transcript, topics=(), video_title=None, count=None):
        return ["How often do I feed it?", "What flour works best?", "How long until it's ready?"][: count or 3]

    async def chat(self, message, transcript, history=(), model=None, topics=(), video_info=None):
        from reelmark.schemas.schemas import ChatResponse
        self.chat_calls.append({"topics": list(topics), "video_info": video_info})
        return ChatResponse(content=f"You asked: {message}", citations=[])


# ── Database ─────────────────────────────────────────────────────────────

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def make_user(session_factory):
    """Create a bearer session; returns ``(token, user_id)``."""

    async def _make(token: str = "token-1", expired: bool = False):
        user_id = uuid.uuid4()
        expires = datetime.now(timezone.utc) + (timedelta(hours=-1) if expired else timedelta(days=1))
        async with session_factory() as session:
            session.add(UserSession(
                token_hash=hash_token(token), user_id=user_id,
                email=f"{token}@example.com", expires_at=expires,
            ))
            await session.commit()
        return token, user_id

    return _make


# ── App ──────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
async def client(session_factory, fake_provider, fake_llm):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_provider_factory] = lambda: (lambda platform: fake_provider)
    app.dependency_overrides[get_llm] = lambda: fake_llm

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
