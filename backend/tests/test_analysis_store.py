"""
Tests for the analysis cache: upsert merge semantics, cache checks, updates.
"""
import pytest

from reelmark.core.errors import InvalidInputError, NotFoundError
from reelmark.models.models import Platform
from reelmark.schemas.schemas import VideoInfo
from reelmark.services.cache.analysis_store import analysis_store, parse_video_url

from conftest import YOUTUBE_ID, YOUTUBE_URL, make_transcript

INFO = VideoInfo(video_id=YOUTUBE_ID, title="Sourdough 101", author="Baker", duration=30.0)
TOPICS = [{"id": "topic-0", "title": "What you need", "segments": [{"start": 9, "end": 15}]}]


async def save(db, **overrides):
    fields = dict(video_id=YOUTUBE_ID, video_info=INFO, transcript=make_transcript(), platform="youtube")
    fields.update(overrides)
    return await analysis_store.save_analysis(db, **fields)


def test_parse_video_url():
    assert parse_video_url(YOUTUBE_URL) == (Platform.YOUTUBE, YOUTUBE_ID)
    with pytest.raises(InvalidInputError, match="URL is required"):
        parse_video_url("")
    with pytest.raises(InvalidInputError, match="Unsupported platform"):
        parse_video_url("https://vimeo.com/1")
    with pytest.raises(InvalidInputError, match="Invalid video URL"):
        parse_video_url("https://www.youtube.com/feed/trending")


async def test_check_cache_miss_for_unknown_video(db):
    result = await analysis_store.check_cache(YOUTUBE_URL, db)
    assert result.cached is False
    assert result.video_id == YOUTUBE_ID
    assert result.topics is None


async def test_row_without_topics_is_not_a_hit(db):
    await save(db, topics=None)
    result = await analysis_store.check_cache(YOUTUBE_URL, db)
    assert result.cached is False


async def test_check_cache_hit_returns_stored_analysis(db):
    await save(db, topics=TOPICS, summary="A summary", suggested_questions=["Why?"])

    result = await analysis_store.check_cache(YOUTUBE_URL, db)

    assert result.cached is True
    assert result.topics == TOPICS
    assert result.summary == "A summary"
    assert result.suggested_questions == ["Why?"]
    assert result.video_info.title == "Sourdough 101"
    assert result.video_info.duration == 30
    assert result.transcript[0] == {"text": "Welcome back to the channel everyone", "start": 0.0, "duration": 4.0}
    assert result.cache_date is not None


async def test_resave_is_idempotent_and_never_nulls_populated_columns(db):
    first = await save(db, topics=TOPICS, summary="A summary", model="model-a")
    second = await save(db, topics=None, summary=None, suggested_questions=["Why?"])

    assert first == second
    row = await analysis_store.get_analysis(Platform.YOUTUBE, YOUTUBE_ID, db)
    assert row.topics == TOPICS
    assert row.summary == "A summary"
    assert row.model_used == "model-a"
    assert row.suggested_questions == ["Why?"]


async def test_resave_replaces_columns_that_are_provided(db):
    await save(db, topics=TOPICS, summary="old")
    await save(db, summary="new")
    row = await analysis_store.get_analysis(Platform.YOUTUBE, YOUTUBE_ID, db)
    assert row.summary == "new"
    assert row.topics == TOPICS


async def test_same_id_on_different_platforms_are_separate_rows(db):
    a = await save(db, video_id="BV1xx411c7mD", platform="bilibili", topics=TOPICS)
    b = await save(db, video_id="BV1xx411c7mD", platform="youtube", topics=TOPICS)
    assert a != b


async def test_unknown_platform_is_rejected(db):
    with pytest.raises(InvalidInputError):
        await save(db, platform="vimeo")


async def test_update_sets_only_given_fields(db):
    await save(db, topics=TOPICS, summary="A summary")

    row = await analysis_store.update_analysis(db, YOUTUBE_ID, suggested_questions=["Q1", "Q2"])

    assert row.suggested_questions == ["Q1", "Q2"]
    assert row.summary == "A summary"
    assert row.topics == TOPICS


async def test_update_missing_video_is_not_found(db):
    with pytest.raises(NotFoundError, match="Video not found"):
        await analysis_store.update_analysis(db, YOUTUBE_ID, summary="x")


async def test_find_analysis_infers_platform(db):
    await save(db, video_id="BV1xx411c7mD", platform=None, topics=TOPICS)
    row = await analysis_store.find_analysis("BV1xx411c7mD", db)
    assert row.platform == Platform.BILIBILI
