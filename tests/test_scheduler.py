from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

from quiet_bot.db import Database
from quiet_bot.notification_queue import NotificationPayload, NotificationQueue, SubmitOutcome, SweepResult
from quiet_bot.scheduler import DeliveryScheduler
from quiet_bot.windows import WindowSet


def _utc(hour: int, minute: int = 0, day: int = 1) -> datetime:
    return datetime(2023, 1, day, hour, minute, tzinfo=timezone.utc)


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.windows = WindowSet(Database(Path(self._tmp.name) / "test.db"))
        self.delivered: list[str] = []
        transport = MagicMock()
        transport.deliver = AsyncMock(side_effect=lambda p: self.delivered.append(p.message))
        self.queue = NotificationQueue(transport)
        self.now = _utc(23)
        self.scheduler = DeliveryScheduler(self.windows, self.queue, clock=lambda: self.now)

    def tearDown(self):
        self.windows.store.conn.close()
        self._tmp.cleanup()


class TestIsQuietAt(SchedulerTestCase):
    def test_overnight_window(self):
        self.windows.create("42", "22:00", "07:00")
        self.assertTrue(self.scheduler.is_quiet_at("42", _utc(23, 30)))
        self.assertTrue(self.scheduler.is_quiet_at("42", _utc(6, 30, day=2)))
        self.assertFalse(self.scheduler.is_quiet_at("42", _utc(8, day=2)))

    def test_daytime_window(self):
        self.windows.create("42", "13:00", "15:00")
        self.assertTrue(self.scheduler.is_quiet_at("42", _utc(14)))
        self.assertFalse(self.scheduler.is_quiet_at("42", _utc(16)))

    def test_no_windows(self):
        self.assertFalse(self.scheduler.is_quiet_at("42", _utc(3)))

    def test_instant_read_in_reference_zone(self):
        """기준 시간대(KST)로 변환한 뒤 판단해야 함."""
        self.windows.create("42", "22:00", "07:00")
        scheduler = DeliveryScheduler(self.windows, self.queue, tz=ZoneInfo("Asia/Seoul"))
        # 14:00 UTC == 23:00 KST
        self.assertTrue(scheduler.is_quiet_at("42", _utc(14)))
        self.assertFalse(scheduler.is_quiet_at("42", _utc(23)))


class TestNotify(SchedulerTestCase):
    async def test_suppressed_during_quiet_hours(self):
        self.windows.create("42", "22:00", "07:00")
        payload = NotificationPayload(subject_id="42", message="Test notification", occurs_at=_utc(23))
        self.assertIs(await self.scheduler.notify(payload), SubmitOutcome.QUEUED)
        self.assertEqual(self.delivered, [])
        self.assertEqual(self.queue.peek("42")[0].queued_at, self.now)

    async def test_delivered_outside_quiet_hours(self):
        self.windows.create("42", "22:00", "07:00")
        payload = NotificationPayload(subject_id="42", message="Test notification", occurs_at=_utc(10))
        self.assertIs(await self.scheduler.notify(payload), SubmitOutcome.DELIVERED)
        self.assertEqual(self.delivered, ["Test notification"])
        self.assertEqual(self.queue.peek("42"), [])


class TestSweeps(SchedulerTestCase):
    async def test_sweep_subject_waits_while_quiet(self):
        self.windows.create("42", "22:00", "07:00")
        await self.scheduler.notify(NotificationPayload(subject_id="42", message="held", occurs_at=_utc(23)))
        result = await self.scheduler.sweep_subject("42", now=_utc(23, 30))
        self.assertEqual(result, SweepResult(remaining=1))
        self.assertEqual(self.delivered, [])

    async def test_run_once_flushes_after_quiet_end(self):
        self.windows.create("42", "22:00", "07:00")
        self.windows.create("43", "13:00", "15:00")
        await self.scheduler.notify(NotificationPayload(subject_id="42", message="for 42", occurs_at=_utc(23)))
        await self.scheduler.notify(NotificationPayload(subject_id="43", message="for 43", occurs_at=_utc(14)))

        self.now = _utc(8, day=2)
        results = await self.scheduler.run_once()

        self.assertEqual(results["42"], SweepResult(delivered=1))
        self.assertEqual(results["43"], SweepResult(delivered=1))
        self.assertEqual(sorted(self.delivered), ["for 42", "for 43"])
        self.assertEqual(self.queue.subjects(), [])

    async def test_run_once_respects_each_subjects_windows(self):
        self.windows.create("42", "22:00", "07:00")
        self.windows.create("43", "07:00", "09:00")
        await self.scheduler.notify(NotificationPayload(subject_id="42", message="for 42", occurs_at=_utc(23)))
        await self.scheduler.notify(NotificationPayload(subject_id="43", message="for 43", occurs_at=_utc(8)))

        results = await self.scheduler.run_once(now=_utc(8, day=2))

        self.assertEqual(results["42"].delivered, 1)
        self.assertEqual(results["43"], SweepResult(remaining=1))
        self.assertEqual(self.queue.subjects(), ["43"])

    async def test_window_removed_while_items_held(self):
        window = self.windows.create("42", "22:00", "07:00")
        await self.scheduler.notify(NotificationPayload(subject_id="42", message="held", occurs_at=_utc(23)))
        self.windows.delete("42", window.id)
        result = await self.scheduler.sweep_subject("42", now=_utc(23, 30))
        self.assertEqual(result.delivered, 1)

    async def test_expired_item_reported_not_delivered(self):
        self.windows.create("42", "22:00", "07:00")
        deadline = _utc(7, 30, day=2)
        await self.scheduler.notify(
            NotificationPayload(subject_id="42", message="stale", occurs_at=_utc(23), relevance_expires_at=deadline)
        )
        result = await self.scheduler.sweep_subject("42", now=deadline + timedelta(minutes=1))
        self.assertEqual(result, SweepResult(expired=1))
        self.assertEqual(self.delivered, [])

    async def test_run_once_continues_after_subject_failure(self):
        await self.queue.submit(NotificationPayload(subject_id="42", message="a", occurs_at=_utc(23)), quiet=True)
        await self.queue.submit(NotificationPayload(subject_id="43", message="b", occurs_at=_utc(23)), quiet=True)

        real_is_quiet = self.scheduler.is_quiet_at

        def broken_for_42(subject_id, instant):
            if subject_id == "42":
                raise RuntimeError("store unavailable")
            return real_is_quiet(subject_id, instant)

        with patch.object(self.scheduler, "is_quiet_at", side_effect=broken_for_42), \
             patch("quiet_bot.scheduler.logger") as mock_logger:
            results = await self.scheduler.run_once(now=_utc(8, day=2))

        mock_logger.exception.assert_called_once()
        self.assertNotIn("42", results)
        self.assertEqual(results["43"].delivered, 1)
        self.assertEqual(self.queue.subjects(), ["42"])

    async def test_run_once_with_nothing_pending(self):
        self.assertEqual(await self.scheduler.run_once(), {})


if __name__ == "__main__":
    unittest.main()
