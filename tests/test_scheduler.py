from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nsprovisioner.common.metrics import REGISTRY
from nsprovisioner.provisioner.scheduler import ExpiryScheduler, ExpiryState, SchedulerClosedError


def _expiry_count(outcome: str) -> float:
    return REGISTRY.get_sample_value("namespace_provisioner_expiry_total", {"outcome": outcome}) or 0.0


@pytest.mark.asyncio
async def test_schedule_fires_callback_once_after_ttl(scheduler, expiry_recorder):
    entry = scheduler.schedule("np-a", 0.01)

    assert entry.state is ExpiryState.SCHEDULED
    assert "np-a" in scheduler

    await entry.task
    assert expiry_recorder.calls == ["np-a"]
    assert entry.state is ExpiryState.DONE
    assert "np-a" not in scheduler
    assert len(scheduler) == 0


@pytest.mark.asyncio
async def test_callback_receives_fresh_deadline(expiry_recorder):
    expiry = ExpiryScheduler(expiry_recorder, delete_timeout_seconds=42.0)
    entry = expiry.schedule("np-deadline", 0)
    await entry.task

    (deadline,) = expiry_recorder.deadlines
    assert 0 < deadline.remaining() <= 42.0


@pytest.mark.asyncio
async def test_expires_at_reflects_ttl(scheduler):
    before = datetime.now(timezone.utc)
    entry = scheduler.schedule("np-ttl", 3600)

    assert before + timedelta(seconds=3599) <= entry.expires_at
    assert entry.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=3600)


@pytest.mark.asyncio
async def test_duplicate_schedule_returns_existing_entry(scheduler):
    first = scheduler.schedule("np-dup", 3600)
    second = scheduler.schedule("np-dup", 10)

    assert second is first
    assert second.ttl_seconds == 3600
    assert len(scheduler) == 1


@pytest.mark.asyncio
async def test_cancel_prevents_callback(scheduler, expiry_recorder):
    entry = scheduler.schedule("np-cancel", 0.05)

    assert scheduler.cancel("np-cancel") is True
    with pytest.raises(asyncio.CancelledError):
        await entry.task

    await asyncio.sleep(0.1)
    assert expiry_recorder.calls == []
    assert entry.state is ExpiryState.CANCELLED
    assert "np-cancel" not in scheduler
    assert scheduler.cancel("np-cancel") is False


@pytest.mark.asyncio
async def test_cancelled_name_can_be_rescheduled(scheduler, expiry_recorder):
    cancelled = scheduler.schedule("np-again", 0.05)
    assert scheduler.cancel("np-again") is True
    assert "np-again" not in scheduler
    assert REGISTRY.get_sample_value("namespace_provisioner_scheduled_expiries") == 0

    await asyncio.sleep(0.1)
    assert cancelled.task.cancelled()
    assert "np-again" not in scheduler

    rescheduled = scheduler.schedule("np-again", 0.01)
    assert rescheduled is not cancelled
    await rescheduled.task

    assert expiry_recorder.calls == ["np-again"]
    assert cancelled.state is ExpiryState.CANCELLED
    assert rescheduled.state is ExpiryState.DONE


@pytest.mark.asyncio
async def test_cancel_after_fire_is_refused():
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_delete(name, *, deadline):  # noqa: ANN001
        started.set()
        await release.wait()
        return "deleted"

    expiry = ExpiryScheduler(slow_delete)
    entry = expiry.schedule("np-fired", 0)
    await started.wait()

    assert entry.state is ExpiryState.FIRED
    assert expiry.cancel("np-fired") is False

    release.set()
    await entry.task
    assert entry.state is ExpiryState.DONE


@pytest.mark.asyncio
async def test_callback_failure_is_counted_and_dropped():
    async def failing_delete(name, *, deadline):  # noqa: ANN001
        raise RuntimeError("api unavailable")

    before = _expiry_count("error")
    expiry = ExpiryScheduler(failing_delete)
    entry = expiry.schedule("np-fail", 0)
    await entry.task

    assert entry.state is ExpiryState.DONE
    assert "np-fail" not in expiry
    assert _expiry_count("error") == before + 1


@pytest.mark.asyncio
async def test_outcome_is_counted_by_label(expiry_recorder):
    before = _expiry_count("deleted")
    expiry = ExpiryScheduler(expiry_recorder)
    await expiry.schedule("np-count", 0).task

    assert _expiry_count("deleted") == before + 1


@pytest.mark.asyncio
async def test_drain_cancels_pending_and_rejects_new_timers(expiry_recorder):
    expiry = ExpiryScheduler(expiry_recorder)
    entries = [expiry.schedule(f"np-{idx}", 3600) for idx in range(3)]

    await expiry.drain(timeout=1.0)

    assert all(entry.state is ExpiryState.CANCELLED for entry in entries)
    assert len(expiry) == 0
    assert expiry_recorder.calls == []
    with pytest.raises(SchedulerClosedError):
        expiry.schedule("np-late", 1)


@pytest.mark.asyncio
async def test_drain_waits_for_deletions_in_flight():
    started = asyncio.Event()
    finished: list[str] = []

    async def slow_delete(name, *, deadline):  # noqa: ANN001
        started.set()
        await asyncio.sleep(0.05)
        finished.append(name)
        return "deleted"

    expiry = ExpiryScheduler(slow_delete)
    expiry.schedule("np-inflight", 0)
    await started.wait()

    await expiry.drain(timeout=1.0)
    assert finished == ["np-inflight"]


@pytest.mark.asyncio
async def test_drain_abandons_deletions_past_timeout():
    started = asyncio.Event()

    async def stuck_delete(name, *, deadline):  # noqa: ANN001
        started.set()
        await asyncio.sleep(60)

    expiry = ExpiryScheduler(stuck_delete)
    entry = expiry.schedule("np-stuck", 0)
    await started.wait()

    await expiry.drain(timeout=0.05)
    assert entry.task.done()
    assert len(expiry) == 0
