from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from .errors import InvalidFormat

MINUTES_PER_DAY = 1440

# ASCII digits only; \d would also accept other Unicode decimal digits.
_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])$")


@dataclass(frozen=True, order=True)
class TimeOfDay:
    minutes: int

    def __post_init__(self) -> None:
        if not isinstance(self.minutes, int) or not 0 <= self.minutes < MINUTES_PER_DAY:
            raise InvalidFormat(self.minutes)

    @classmethod
    def from_minutes(cls, minutes: int) -> TimeOfDay:
        return cls(minutes)

    def __str__(self) -> str:
        return format_time(self)


Minute = Union[TimeOfDay, int]


def parse_time(text: str) -> TimeOfDay:
    match = _TIME_RE.fullmatch(text) if isinstance(text, str) else None
    if not match:
        raise InvalidFormat(text)
    return TimeOfDay(int(match.group(1)) * 60 + int(match.group(2)))


def format_time(value: TimeOfDay) -> str:
    hours, minutes = divmod(value.minutes, 60)
    return f"{hours:02d}:{minutes:02d}"


def minute_of_day(instant: datetime) -> TimeOfDay:
    # Callers normalize to the reference zone first; this only reads the wall clock.
    return TimeOfDay(instant.hour * 60 + instant.minute)


def _m(value: Minute) -> int:
    return value.minutes if isinstance(value, TimeOfDay) else int(value)


def _ranges(start: int, end: int) -> list[tuple[int, int]]:
    if end > start:
        return [(start, end)]
    if end == start:
        return [(0, MINUTES_PER_DAY)]
    return [(start, MINUTES_PER_DAY), (0, end)]


def overlaps(s1: Minute, e1: Minute, s2: Minute, e2: Minute) -> bool:
    """Whether two daily intervals share at least one minute.

    Intervals are half-open; one that ends where the other starts does not
    overlap it. An interval with ``end <= start`` wraps past midnight.
    """
    for a1, a2 in _ranges(_m(s1), _m(e1)):
        for b1, b2 in _ranges(_m(s2), _m(e2)):
            if a1 < b2 and b1 < a2:
                return True
    return False


def contains(t: Minute, start: Minute, end: Minute) -> bool:
    t, start, end = _m(t), _m(start), _m(end)
    if start == end:
        return True
    if start < end:
        return start <= t < end
    return t >= start or t < end
