"""
Tests for the rolling-window quota.
"""
from datetime import datetime, timedelta, timezone

import pytest

from reelmark.core.errors import RateLimitError
from reelmark.models.models import GenerationUsage
from reelmark.services.limits import rate_limit_service as rate_limit_module
from reelmark.services.limits.rate_limit_service import Caller, rate_limit_service


async def test_usage_outside_the_window_is_ignored(db):
    caller = Caller.anonymous("192.0.2.1")
    db.add(GenerationUsage(
        identity=caller.identity,
        created_at=datetime.now(timezone.utc) - timedelta(hours=25),
    ))
    await db.flush()

    status = await rate_limit_service.status(caller, db)

    assert status.can_generate is True
    assert status.remaining == 1
    assert status.reset_at is None


async def test_reset_is_one_window_after_oldest_usage(db):
    caller = Caller.for_user("u-1")
    oldest = datetime.now(timezone.utc) - timedelta(hours=3)
    db.add(GenerationUsage(identity=caller.identity, is_authenticated=True, created_at=oldest))
    await rate_limit_service.record_usage(caller, db, video_id="dQw4w9WgXcQ")

    status = await rate_limit_service.status(caller, db)

    assert status.remaining == 3
    assert abs((status.reset_at - (oldest + timedelta(hours=24))).total_seconds()) < 1


async def test_enforce_distinguishes_guests_and_users(db):
    guest = Caller.anonymous(None)
    await rate_limit_service.record_usage(guest, db)
    with pytest.raises(RateLimitError) as exc:
        await rate_limit_service.enforce(guest, db)
    assert exc.value.requires_auth is True
    assert guest.identity == "anon:unknown"

    user = Caller.for_user("u-2")
    for _ in range(5):
        await rate_limit_service.record_usage(user, db)
    with pytest.raises(RateLimitError) as exc:
        await rate_limit_service.enforce(user, db)
    assert exc.value.requires_auth is False
    assert exc.value.error == "Daily limit reached"


async def test_identities_do_not_share_quota(db):
    await rate_limit_service.record_usage(Caller.anonymous("192.0.2.1"), db)
    status = await rate_limit_service.status(Caller.anonymous("192.0.2.2"), db)
    assert status.can_generate is True


async def test_negative_limit_means_unlimited(db, monkeypatch):
    monkeypatch.setattr(rate_limit_module.settings, "anonymous_daily_limit", -1)
    caller = Caller.anonymous("192.0.2.9")
    for _ in range(3):
        await rate_limit_service.record_usage(caller, db)

    status = await rate_limit_service.enforce(caller, db)

    assert status.can_generate is True
    assert status.remaining == -1
    assert status.limit == -1
    assert status.reset_at is None
