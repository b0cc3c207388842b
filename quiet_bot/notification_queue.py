from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Protocol

from .errors import DeliveryFailure, QueueClosed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPayload:
    subject_id: str
    message: str
    occurs_at: datetime
    data: Optional[Any] = None
    relevance_expires_at: Optional[datetime] = None

    def expired(self, now: datetime) -> bool:
        return self.relevance_expires_at is not None and now > self.relevance_expires_at


@dataclass
class QueuedItem:
    payload: NotificationPayload
    queued_at: datetime
    attempts: int = 0


class SubmitOutcome(enum.Enum):
    DELIVERED = "delivered"
    QUEUED = "queued"


@dataclass(frozen=True)
class SweepResult:
    delivered: int = 0
    expired: int = 0
    remaining: int = 0
    failed: int = 0
    dropped: int = 0


class Transport(Protocol):
    async def deliver(self, payload: NotificationPayload) -> None: ...


@dataclass
class _SubjectQueue:
    items: list[QueuedItem] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class NotificationQueue:
    """Per-subject FIFO of notifications held back during quiet hours.

    Each subject has its own lock; submit and sweep for one subject never
    interleave, while different subjects are handled independently.
    """

    def __init__(self, transport: Transport, max_attempts: int | None = None):
        self.transport = transport
        self.max_attempts = max_attempts
        self._queues: dict[str, _SubjectQueue] = {}
        self._closed = False

    @asynccontextmanager
    async def _locked(self, subject_id: str, create: bool) -> AsyncIterator[Optional[_SubjectQueue]]:
        while True:
            entry = self._queues.get(subject_id)
            if entry is None:
                if not create:
                    yield None
                    return
                entry = self._queues[subject_id] = _SubjectQueue()
            async with entry.lock:
                # A sweep may have emptied and detached this entry while we waited.
                if self._queues.get(subject_id) is entry:
                    yield entry
                    return

    async def submit(self, payload: NotificationPayload, quiet: bool, now: datetime | None = None) -> SubmitOutcome:
        if self._closed:
            raise QueueClosed("Notification queue is shut down.")
        if not quiet:
            # Held items for this subject go out first; wait for any running sweep.
            async with self._locked(payload.subject_id, create=False):
                await self.transport.deliver(payload)
            logger.info("Delivered notification for %s", payload.subject_id)
            return SubmitOutcome.DELIVERED

        queued_at = now or datetime.now(timezone.utc)
        async with self._locked(payload.subject_id, create=True) as entry:
            entry.items.append(QueuedItem(payload=payload, queued_at=queued_at))
            size = len(entry.items)
        logger.info("Notification for %s queued due to quiet hours (%d pending)", payload.subject_id, size)
        return SubmitOutcome.QUEUED

    async def _attempt(self, subject_id: str, item: QueuedItem) -> bool:
        try:
            await self.transport.deliver(item.payload)
        except DeliveryFailure as e:
            logger.warning("Failed to deliver queued notification for %s: %s", subject_id, e)
        except Exception:
            logger.exception("Unexpected error delivering queued notification for %s", subject_id)
        else:
            return True
        item.attempts += 1
        return False

    async def sweep(self, subject_id: str, now_quiet: bool, now: datetime) -> SweepResult:
        async with self._locked(subject_id, create=False) as entry:
            if entry is None:
                return SweepResult()

            delivered = expired = failed = dropped = 0
            kept: list[QueuedItem] = []
            done = 0
            try:
                for item in entry.items:
                    if item.payload.expired(now):
                        logger.info("Queued notification for %s expired and will not be delivered", subject_id)
                        expired += 1
                    elif now_quiet:
                        kept.append(item)
                    elif await self._attempt(subject_id, item):
                        delivered += 1
                    else:
                        failed += 1
                        if self.max_attempts is not None and item.attempts >= self.max_attempts:
                            logger.warning(
                                "Dropping notification for %s after %d failed attempts", subject_id, item.attempts
                            )
                            dropped += 1
                        else:
                            kept.append(item)
                    done += 1
            finally:
                # Items not reached (the pass raised) stay queued in order.
                kept.extend(entry.items[done:])
                entry.items[:] = kept
                if not kept:
                    del self._queues[subject_id]

        if delivered or expired or dropped:
            logger.info(
                "Swept %s: delivered=%d expired=%d dropped=%d remaining=%d",
                subject_id,
                delivered,
                expired,
                dropped,
                len(kept),
            )
        return SweepResult(delivered=delivered, expired=expired, remaining=len(kept), failed=failed, dropped=dropped)

    def peek(self, subject_id: str) -> list[QueuedItem]:
        entry = self._queues.get(subject_id)
        return list(entry.items) if entry else []

    def subjects(self) -> list[str]:
        return [s for s, entry in self._queues.items() if entry.items]

    async def shutdown(self) -> dict[str, list[QueuedItem]]:
        self._closed = True
        drained: dict[str, list[QueuedItem]] = {}
        for subject_id in list(self._queues):
            async with self._locked(subject_id, create=False) as entry:
                if entry is None:
                    continue
                drained[subject_id] = list(entry.items)
                del self._queues[subject_id]
        for subject_id, items in drained.items():
            logger.warning("Discarding %d undelivered notifications for %s on shutdown", len(items), subject_id)
        total = sum(len(items) for items in drained.values())
        if total:
            logger.warning("Notification queue shut down with %d undelivered items", total)
        return drained
