"""
Tests for keyed, cancellable request bookkeeping.
"""
import asyncio

import pytest

from reelmark.orchestrator.registry import RequestRegistry, RequestTimeout


async def value(v, delay=0.0):
    await asyncio.sleep(delay)
    return v


async def test_run_returns_result_and_forgets_key():
    registry = RequestRegistry()
    assert await registry.run("a", value(1)) == 1
    assert registry.pending_keys == []


async def test_timeout_raises_request_timeout():
    registry = RequestRegistry()
    with pytest.raises(RequestTimeout) as exc:
        await registry.run("slow", value(1, delay=1), timeout=0.01)
    assert exc.value.key == "slow"


async def test_reusing_a_key_cancels_the_earlier_request():
    registry = RequestRegistry()
    first = asyncio.ensure_future(registry.run("theme", value("old", delay=1)))
    await asyncio.sleep(0)
    assert registry.is_pending("theme")

    assert await registry.run("theme", value("new")) == "new"
    with pytest.raises(asyncio.CancelledError):
        await first


async def test_cancel_all():
    registry = RequestRegistry()
    tasks = [asyncio.ensure_future(registry.run(k, value(k, delay=1))) for k in ("a", "b")]
    await asyncio.sleep(0)

    assert registry.cancel_all() == 2
    results = await asyncio.gather(*tasks, return_exceptions=True)
    assert all(isinstance(r, asyncio.CancelledError) for r in results)
    assert registry.cancel("a") is False


def test_request_ids_restart_after_reset():
    registry = RequestRegistry()
    assert [registry.next_request_id() for _ in range(3)] == [1, 2, 3]
    registry.reset_sequence()
    assert registry.next_request_id() == 1
