from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from .notification_queue import NotificationPayload, NotificationQueue, SubmitOutcome, SweepResult
from .time_utils import minute_of_day
from .windows import WindowSet, is_quiet

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryScheduler:
    """Ties the window store, the quiet-hours check and the queue together.

    ``tz`` is the single reference zone every instant is read in before its
    minute of day is compared against the windows.
    """

    def __init__(
        self,
        windows: WindowSet,
        queue: NotificationQueue,
        tz: ZoneInfo | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.windows = windows
        self.queue = queue
        self.tz = tz or ZoneInfo("UTC")
        self.clock = clock or _utc_now

    def is_quiet_at(self, subject_id: str, instant: datetime) -> bool:
        windows = self.windows.list(subject_id)
        if not windows:
            return False
        local = instant.astimezone(self.tz) if instant.tzinfo else instant
        return is_quiet(windows, minute_of_day(local))

    async def notify(self, payload: NotificationPayload) -> SubmitOutcome:
        quiet = await asyncio.to_thread(self.is_quiet_at, payload.subject_id, payload.occurs_at)
        return await self.queue.submit(payload, quiet, now=self.clock())

    async def sweep_subject(self, subject_id: str, now: datetime | None = None) -> SweepResult:
        now = now or self.clock()
        quiet = await asyncio.to_thread(self.is_quiet_at, subject_id, now)
        return await self.queue.sweep(subject_id, quiet, now)

    async def run_once(self, now: datetime | None = None) -> dict[str, SweepResult]:
        now = now or self.clock()
        results: dict[str, SweepResult] = {}
        for subject_id in self.queue.subjects():
            try:
                results[subject_id] = await self.sweep_subject(subject_id, now)
            except Exception:
                logger.exception("Sweep failed for %s", subject_id)
        return results
