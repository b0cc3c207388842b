from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import NotFound, Overlap, SameStartEnd
from .time_utils import Minute, TimeOfDay, contains, overlaps, parse_time

if TYPE_CHECKING:
    from .db import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Window:
    id: int
    subject_id: str
    start: TimeOfDay
    end: TimeOfDay

    @property
    def wraps(self) -> bool:
        return self.end <= self.start

    def contains(self, minute: Minute) -> bool:
        return contains(minute, self.start, self.end)

    def overlaps(self, other: Window) -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def validate(start_text: str, end_text: str) -> tuple[TimeOfDay, TimeOfDay]:
    start = parse_time(start_text)
    end = parse_time(end_text)
    if start == end:
        raise SameStartEnd()
    return start, end


def can_insert(candidate: Window, existing: Iterable[Window], exclude_id: int | None = None) -> None:
    """Raise ``Overlap`` if ``candidate`` intersects any window in ``existing``.

    ``exclude_id`` skips the window being replaced during an update, so a
    window may always be moved within its own span.
    """
    for window in existing:
        if exclude_id is not None and window.id == exclude_id:
            continue
        if candidate.overlaps(window):
            raise Overlap(window.id)


def is_quiet(windows: Sequence[Window], minute: Minute) -> bool:
    return any(w.contains(minute) for w in windows)


class WindowSet:
    """Validated window mutations on top of the window store.

    The list, check and write steps for one subject run under that subject's
    lock, so two concurrent inserts can never both pass the overlap check.
    """

    def __init__(self, store: Database):
        self.store = store
        # subject_id -> [lock, number of callers holding or waiting on it]
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _lock_for(self, subject_id: str) -> Iterator[None]:
        with self._locks_guard:
            slot = self._locks.get(subject_id)
            if slot is None:
                slot = self._locks[subject_id] = [threading.Lock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[subject_id]

    def list(self, subject_id: str) -> list[Window]:
        return self.store.list_windows(subject_id)

    def create(self, subject_id: str, start_text: str, end_text: str) -> Window:
        start, end = validate(start_text, end_text)
        with self._lock_for(subject_id):
            existing = self.store.list_windows(subject_id)
            candidate = Window(id=0, subject_id=subject_id, start=start, end=end)
            try:
                can_insert(candidate, existing)
            except Overlap as e:
                logger.warning("Quiet window overlap for %s: %s conflicts with %s", subject_id, candidate, e.window_id)
                raise
            window = self.store.insert_window(subject_id, start, end)
        logger.info("Quiet window %s created for %s: %s", window.id, subject_id, window)
        return window

    def update(self, subject_id: str, window_id: int, start_text: str, end_text: str) -> Window:
        start, end = validate(start_text, end_text)
        with self._lock_for(subject_id):
            existing = self.store.list_windows(subject_id)
            if not any(w.id == window_id for w in existing):
                logger.warning("Quiet window %s not found for %s", window_id, subject_id)
                raise NotFound(window_id)
            candidate = Window(id=window_id, subject_id=subject_id, start=start, end=end)
            try:
                can_insert(candidate, existing, exclude_id=window_id)
            except Overlap as e:
                logger.warning(
                    "Quiet window overlap for %s on update: %s conflicts with %s", subject_id, candidate, e.window_id
                )
                raise
            window = self.store.update_window(subject_id, window_id, start, end)
            if window is None:
                raise NotFound(window_id)
        logger.info("Quiet window %s updated for %s: %s", window_id, subject_id, window)
        return window

    def delete(self, subject_id: str, window_id: int) -> None:
        with self._lock_for(subject_id):
            if not self.store.delete_window(subject_id, window_id):
                logger.warning("Quiet window %s not found for %s on delete", window_id, subject_id)
                raise NotFound(window_id)
        logger.info("Quiet window %s deleted for %s", window_id, subject_id)
