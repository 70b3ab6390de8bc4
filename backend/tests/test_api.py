"""
Route tests against the ASGI app with an in-memory database and fake
provider / LLM.
"""
import asyncio
from unittest.mock import MagicMock

from sqlalchemy import func, select

from reelmark.api.deps import get_provider_factory
from reelmark.core.errors import AUTH_LIMIT_MESSAGE, GUEST_LIMIT_MESSAGE, UpstreamError
from reelmark.main import app
from reelmark.models.models import GenerationUsage, UserVideo
from reelmark.services.limits import rate_limit_service as rate_limit_module
from reelmark.services.providers.base import ProviderHttp
from reelmark.services.providers.youtube import YouTubeProvider

from conftest import YOUTUBE_ID, YOUTUBE_URL, auth, transcript_payload

API = "/api"


def analysis_body(video_id=YOUTUBE_ID, **extra):
    return {"videoId": video_id, "platform": "youtube", "transcript": transcript_payload(), **extra}


def save_body(video_id=YOUTUBE_ID, **extra):
    return {
        "videoId": video_id,
        "platform": "youtube",
        "videoInfo": {"videoId": video_id, "title": "Sourdough 101", "author": "Baker", "duration": 30},
        "transcript": transcript_payload(),
        "topics": [{"id": "topic-0", "title": "What you need", "segments": [{"start": 9, "end": 15}]}],
        **extra,
    }


async def count_rows(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


# ── Service info ─────────────────────────────────────────────────────────

async def test_health_and_root(client):
    assert (await client.get("/health")).json()["status"] == "healthy"
    assert "bilibili" in (await client.get("/")).json()["platforms"]


# ── Videos ───────────────────────────────────────────────────────────────

async def test_transcript(client, fake_provider):
    resp = await client.post(f"{API}/transcript", json={"url": YOUTUBE_URL})
    assert resp.status_code == 200
    body = resp.json()
    assert body["videoId"] == YOUTUBE_ID
    assert body["platform"] == "youtube"
    assert len(body["transcript"]) == 6
    assert fake_provider.transcript_calls == [YOUTUBE_ID]


async def test_transcript_rejects_bad_urls(client):
    resp = await client.post(f"{API}/transcript", json={})
    assert resp.status_code == 400
    assert resp.json()["error"] == "URL is required"

    resp = await client.post(f"{API}/transcript", json={"url": "https://vimeo.com/42"})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Unsupported platform")


async def test_empty_transcript_is_404(client, fake_provider):
    fake_provider.transcript = []
    resp = await client.post(f"{API}/transcript", json={"url": YOUTUBE_URL})
    assert resp.status_code == 404


async def test_provider_timeout_renders_as_504(client):
    session = MagicMock()
    session.get.side_effect = asyncio.TimeoutError()
    provider = YouTubeProvider(http=ProviderHttp("YouTube", 10, session=session))
    provider.api_key = "test-key"
    app.dependency_overrides[get_provider_factory] = lambda: (lambda platform: provider)

    resp = await client.post(f"{API}/transcript", json={"url": YOUTUBE_URL})

    assert resp.status_code == 504
    assert resp.json() == {
        "error": "YouTube request timed out",
        "details": "Please check your network connection and try again.",
    }


async def test_video_info(client):
    resp = await client.post(f"{API}/video-info", json={"url": YOUTUBE_URL})
    assert resp.status_code == 200
    body = resp.json()
    assert (body["title"], body["author"], body["platform"]) == ("Sourdough 101", "Baker", "youtube")


async def test_video_info_degrades_to_placeholder(client, fake_provider):
    fake_provider.info_error = UpstreamError("YouTube request failed")
    resp = await client.post(f"{API}/video-info", json={"url": YOUTUBE_URL})
    assert resp.status_code == 200
    assert resp.json()["title"] == "YouTube Video"


# ── Cache ────────────────────────────────────────────────────────────────

async def test_save_then_check_cache(client, fake_provider):
    miss = await client.post(f"{API}/check-video-cache", json={"url": YOUTUBE_URL})
    assert miss.json()["cached"] is False

    saved = await client.post(f"{API}/save-analysis", json=save_body(summary="A summary"))
    assert saved.status_code == 200
    assert saved.json() == {"success": True, "videoId": YOUTUBE_ID}

    hit = (await client.post(f"{API}/check-video-cache", json={"url": YOUTUBE_URL})).json()
    assert hit["cached"] is True
    assert hit["summary"] == "A summary"
    assert hit["videoInfo"]["title"] == "Sourdough 101"
    assert hit["topics"][0]["title"] == "What you need"
    assert "cacheDate" in hit
    assert fake_provider.transcript_calls == []


async def test_save_requires_transcript(client):
    body = save_body()
    body["transcript"] = []
    resp = await client.post(f"{API}/save-analysis", json=body)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request"


async def test_signed_in_cache_hit_lands_in_library(client, make_user, session_factory):
    token, _ = await make_user()
    await client.post(f"{API}/save-analysis", json=save_body())
    await client.post(f"{API}/check-video-cache", json={"url": YOUTUBE_URL}, headers=auth(token))
    await client.post(f"{API}/check-video-cache", json={"url": YOUTUBE_URL}, headers=auth(token))
    assert await count_rows(session_factory, UserVideo) == 1


async def test_update_video_analysis(client):
    missing = await client.post(f"{API}/update-video-analysis", json={"videoId": YOUTUBE_ID, "summary": "x"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "Video not found"

    await client.post(f"{API}/save-analysis", json=save_body())
    resp = await client.post(
        f"{API}/update-video-analysis",
        json={"videoId": YOUTUBE_ID, "platform": "youtube", "suggestedQuestions": ["Why rye?"]},
    )
    assert resp.json() == {"success": True}
    hit = (await client.post(f"{API}/check-video-cache", json={"url": YOUTUBE_URL})).json()
    assert hit["suggestedQuestions"] == ["Why rye?"]


# ── Analysis & limits ────────────────────────────────────────────────────

async def test_fresh_analysis_consumes_quota(client, fake_llm, session_factory):
    resp = await client.post(f"{API}/video-analysis", json=analysis_body(includeCandidatePool=True))
    assert resp.status_code == 200
    body = resp.json()
    assert [t["title"] for t in body["topics"]] == ["What you need", "Feeding schedule"]
    assert body["topics"][0]["segments"][0]["startSegmentIdx"] == 2
    assert body["themes"] == ["Baking basics", "Timing"]
    assert body["topicCandidates"][0]["title"] == "Doubling"
    assert body["cached"] is False
    assert await count_rows(session_factory, GenerationUsage) == 1


async def test_anonymous_second_analysis_requires_sign_in(client):
    assert (await client.post(f"{API}/video-analysis", json=analysis_body())).status_code == 200

    resp = await client.post(f"{API}/video-analysis", json=analysis_body("aaaaaaaaaaa"))

    assert resp.status_code == 429
    body = resp.json()
    assert body["requiresAuth"] is True
    assert body["message"] == GUEST_LIMIT_MESSAGE


async def test_signed_in_limit(client, make_user):
    token, _ = await make_user()
    for i in range(5):
        resp = await client.post(f"{API}/video-analysis", json=analysis_body(f"video{i:06d}"), headers=auth(token))
        assert resp.status_code == 200

    resp = await client.post(f"{API}/video-analysis", json=analysis_body("video999999"), headers=auth(token))
    assert resp.status_code == 429
    assert resp.json() == {"error": "Daily limit reached", "message": AUTH_LIMIT_MESSAGE, "requiresAuth": False}


async def test_cached_analysis_is_free_and_skips_the_model(client, fake_llm):
    await client.post(f"{API}/save-analysis", json=save_body())

    for _ in range(3):
        resp = await client.post(f"{API}/video-analysis", json=analysis_body())
        assert resp.status_code == 200
        assert resp.json()["cached"] is True
    assert fake_llm.topic_calls == []

    limit = (await client.get(f"{API}/check-limit")).json()
    assert limit["remaining"] == 1


async def test_cached_analysis_with_candidate_pool(client, fake_llm):
    await client.post(f"{API}/save-analysis", json=save_body())
    body = (await client.post(f"{API}/video-analysis", json=analysis_body(includeCandidatePool=True))).json()
    assert body["cached"] is True
    assert [t["title"] for t in body["topics"]] == ["What you need"]
    assert body["themes"] == ["Baking basics", "Timing"]
    assert len(body["topicCandidates"]) == 1
    assert (await client.get(f"{API}/check-limit")).json()["remaining"] == 1


async def test_theme_request_returns_themed_topics_without_quota(client, fake_llm):
    resp = await client.post(
        f"{API}/video-analysis",
        json=analysis_body(theme="Timing", excludeTopicKeys=["00:09|the first thing you need is flour and water"]),
    )
    body = resp.json()
    assert [t["title"] for t in body["topics"]] == ["Readiness"]
    assert body.get("themes", []) == []
    assert fake_llm.topic_calls[0]["theme"] == "Timing"
    assert fake_llm.topic_calls[0]["exclude_topic_keys"] == ["00:09|the first thing you need is flour and water"]
    assert (await client.get(f"{API}/check-limit")).json()["remaining"] == 1


async def test_check_limit(client, make_user):
    anon = (await client.get(f"{API}/check-limit")).json()
    assert anon == {"isAuthenticated": False, "canGenerate": True, "remaining": 1, "limit": 1, "resetAt": None}

    token, _ = await make_user()
    await client.post(f"{API}/video-analysis", json=analysis_body(), headers=auth(token))
    signed_in = (await client.get(f"{API}/check-limit", headers=auth(token))).json()
    assert signed_in["isAuthenticated"] is True
    assert signed_in["remaining"] == 4
    assert signed_in["resetAt"] is not None


async def test_unlimited_guests_are_never_blocked(client, monkeypatch):
    monkeypatch.setattr(rate_limit_module.settings, "anonymous_daily_limit", -1)
    for i in range(3):
        resp = await client.post(f"{API}/video-analysis", json=analysis_body(f"video{i:06d}"))
        assert resp.status_code == 200

    status = (await client.get(f"{API}/check-limit")).json()
    assert status["canGenerate"] is True
    assert status["remaining"] == -1


async def test_forwarded_for_identifies_anonymous_callers(client):
    first = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    assert (await client.post(f"{API}/video-analysis", json=analysis_body(), headers=first)).status_code == 200
    other = {"X-Forwarded-For": "198.51.100.9"}
    assert (await client.post(f"{API}/video-analysis", json=analysis_body(), headers=other)).status_code == 200
    assert (await client.post(f"{API}/video-analysis", json=analysis_body(), headers=first)).status_code == 429


async def test_generation_endpoints(client):
    summary = await client.post(f"{API}/generate-summary", json={"transcript": transcript_payload()})
    assert summary.json()["summaryContent"].startswith("## Summary")

    questions = await client.post(f"{API}/suggested-questions", json={"transcript": transcript_payload(), "count": 2})
    assert len(questions.json()["questions"]) == 2

    chat = await client.post(f"{API}/chat", json={"message": "What flour?", "transcript": transcript_payload()})
    assert chat.json()["content"] == "You asked: What flour?"


async def test_chat_forwards_topics_and_video_info(client, fake_llm):
    resp = await client.post(f"{API}/chat", json={
        "message": "When is it ready?",
        "transcript": transcript_payload(),
        "topics": [{"id": "t1", "title": "Readiness", "segments": [{"start": 26, "end": 30}]}],
        "videoInfo": {"videoId": YOUTUBE_ID, "title": "Sourdough 101", "author": "Baker"},
    })
    assert resp.status_code == 200
    [call] = fake_llm.chat_calls
    assert [t.title for t in call["topics"]] == ["Readiness"]
    assert call["video_info"].title == "Sourdough 101"


# ── Library ──────────────────────────────────────────────────────────────

async def test_link_video_requires_auth(client):
    resp = await client.post(f"{API}/link-video", json={"videoId": YOUTUBE_ID})
    assert resp.status_code == 401


async def test_expired_session_is_anonymous(client, make_user):
    token, _ = await make_user("old-token", expired=True)
    resp = await client.post(f"{API}/link-video", json={"videoId": YOUTUBE_ID}, headers=auth(token))
    assert resp.status_code == 401


async def test_link_video(client, make_user):
    token, _ = await make_user()

    not_saved = await client.post(f"{API}/link-video", json={"videoId": YOUTUBE_ID}, headers=auth(token))
    assert not_saved.status_code == 404

    await client.post(f"{API}/save-analysis", json=save_body())
    first = await client.post(f"{API}/link-video", json={"videoId": YOUTUBE_ID}, headers=auth(token))
    again = await client.post(f"{API}/link-video", json={"videoId": YOUTUBE_ID}, headers=auth(token))
    assert first.json() == {"success": True, "alreadyLinked": False}
    assert again.json() == {"success": True, "alreadyLinked": True}
