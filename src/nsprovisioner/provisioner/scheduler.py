"""In-memory TTL timers that delete tenant namespaces once they expire.

Each registered namespace gets one asyncio task that sleeps for the TTL and
then calls the deletion callback exactly once. The registry is only touched
from the event loop, so no lock is needed. Timers do not survive a restart.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

from ..common.metrics import EXPIRY_COUNTER, SCHEDULED_GAUGE
from .gateway import Deadline

LOGGER = structlog.get_logger("nsprovisioner.scheduler")

ExpiryCallback = Callable[..., Awaitable[object]]


class ExpiryState(str, Enum):
    SCHEDULED = "scheduled"
    FIRED = "fired"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass
class ScheduledExpiry:
    name: str
    ttl_seconds: float
    expires_at: datetime
    state: ExpiryState = ExpiryState.SCHEDULED
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class SchedulerClosedError(RuntimeError):
    pass


class ExpiryScheduler:
    def __init__(self, on_expire: ExpiryCallback, *, delete_timeout_seconds: float = 120.0) -> None:
        self._on_expire = on_expire
        self._delete_timeout_seconds = delete_timeout_seconds
        self._entries: dict[str, ScheduledExpiry] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def get(self, name: str) -> Optional[ScheduledExpiry]:
        return self._entries.get(name)

    def schedule(self, name: str, ttl_seconds: float) -> ScheduledExpiry:
        if self._closed:
            raise SchedulerClosedError("expiry scheduler is shutting down")
        existing = self._entries.get(name)
        if existing is not None:
            LOGGER.warning("Namespace already scheduled for expiry", namespace=name, state=existing.state.value)
            return existing

        entry = ScheduledExpiry(
            name=name,
            ttl_seconds=ttl_seconds,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )
        self._entries[name] = entry
        entry.task = asyncio.create_task(self._run(entry), name=f"expiry:{name}")
        # Runs even when the task is cancelled before its first step.
        entry.task.add_done_callback(lambda _task: self._release(entry))
        SCHEDULED_GAUGE.set(len(self._entries))
        LOGGER.info("Scheduled namespace expiry", namespace=name, expires_at=entry.expires_at.isoformat())
        return entry

    def cancel(self, name: str) -> bool:
        """Stop a timer that has not fired yet."""
        entry = self._entries.get(name)
        if entry is None or entry.state is not ExpiryState.SCHEDULED or entry.task is None:
            return False
        entry.task.cancel()
        self._release(entry)
        return True

    async def drain(self, timeout: float = 30.0) -> None:
        """Cancel pending timers and wait for deletions already in flight."""
        self._closed = True
        entries = list(self._entries.values())
        for entry in entries:
            if entry.state is ExpiryState.SCHEDULED and entry.task is not None:
                entry.task.cancel()
                self._release(entry)
        tasks = [entry.task for entry in entries if entry.task is not None]
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        LOGGER.info("Expiry scheduler drained", timers=len(entries), abandoned=len(pending))

    async def _run(self, entry: ScheduledExpiry) -> None:
        try:
            await asyncio.sleep(entry.ttl_seconds)
            entry.state = ExpiryState.FIRED
            LOGGER.info("Namespace TTL elapsed", namespace=entry.name)
            deadline = Deadline.after(self._delete_timeout_seconds)
            try:
                outcome = await self._on_expire(entry.name, deadline=deadline)
            except Exception as exc:  # noqa: BLE001 - no caller to report to
                EXPIRY_COUNTER.labels(outcome="error").inc()
                LOGGER.error("Failed to clean up namespace", namespace=entry.name, error=str(exc))
            else:
                label = getattr(outcome, "value", str(outcome))
                EXPIRY_COUNTER.labels(outcome=label).inc()
                LOGGER.info("Expired namespace cleaned up", namespace=entry.name, outcome=label)
        finally:
            self._release(entry)

    def _release(self, entry: ScheduledExpiry) -> None:
        if entry.state is ExpiryState.SCHEDULED:
            entry.state = ExpiryState.CANCELLED
        elif entry.state is ExpiryState.FIRED:
            entry.state = ExpiryState.DONE
        if self._entries.get(entry.name) is entry:
            del self._entries[entry.name]
        SCHEDULED_GAUGE.set(len(self._entries))
