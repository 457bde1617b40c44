"""
Recurring tariff windows and their resolution into absolute occurrences.

A RateWindow is defined in local wall-clock time (start/end time of day plus
the weekdays on which it *begins*). resolve() turns it into concrete UTC
intervals relative to a reference instant, covering the occurrence currently
in effect (if any) and the upcoming ones within the next week.
"""

import re
import logging
from dataclasses import dataclass
from datetime import datetime, date, time, timedelta, tzinfo
from enum import IntEnum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator, model_serializer, model_validator

from smartess.exceptions import RateError
from smartess.timezone_utils import UTC, ensure_aware, localize, resolve_timezone

log = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY

_HHMM = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


class TimeOfDay(BaseModel):
    """Wall-clock time (hour:minute), ordered by minutes since midnight."""

    model_config = ConfigDict(frozen=True)

    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            m = _HHMM.match(data)
            if not m:
                raise RateError(f"Invalid time of day '{data}', expected HH:MM")
            return {"hour": int(m.group(1)), "minute": int(m.group(2))}
        if isinstance(data, time):
            return {"hour": data.hour, "minute": data.minute}
        return data

    @classmethod
    def parse(cls, text: str) -> "TimeOfDay":
        """Parse "HH:MM", raising RateError for anything out of range."""
        try:
            return cls.model_validate(text)
        except ValidationError as e:
            raise RateError(f"Invalid time of day '{text}': {e.errors()[0]['msg']}") from e

    @model_serializer
    def _serialize(self) -> str:
        return str(self)

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute

    def as_time(self) -> time:
        return time(self.hour, self.minute)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    def __lt__(self, other: "TimeOfDay") -> bool:
        if not isinstance(other, TimeOfDay):
            return NotImplemented
        return self.minute_of_day < other.minute_of_day

    def __le__(self, other: "TimeOfDay") -> bool:
        if not isinstance(other, TimeOfDay):
            return NotImplemented
        return self.minute_of_day <= other.minute_of_day

    def __gt__(self, other: "TimeOfDay") -> bool:
        if not isinstance(other, TimeOfDay):
            return NotImplemented
        return self.minute_of_day > other.minute_of_day

    def __ge__(self, other: "TimeOfDay") -> bool:
        if not isinstance(other, TimeOfDay):
            return NotImplemented
        return self.minute_of_day >= other.minute_of_day


class Weekday(IntEnum):
    """Days of the week, numbered like datetime.weekday()."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, value: Any) -> "Weekday":
        """Accept a Weekday, 0-6, or a full/three-letter name in any case."""
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise RateError(f"Weekday number out of range: {value}") from None
        if isinstance(value, str):
            key = value.strip().upper()
            for day in cls:
                if key == day.name or (len(key) == 3 and day.name.startswith(key)):
                    return day
        raise RateError(f"Unknown weekday: {value!r}")

    @classmethod
    def of(cls, d: date) -> "Weekday":
        return cls(d.weekday())

    @staticmethod
    def circular_distance(start: "Weekday", to: "Weekday") -> int:
        """Days to advance from `start` to reach `to`, wrapping past Sunday (0-6)."""
        return (int(to) - int(start)) % 7

    def days_until(self, other: "Weekday") -> int:
        return Weekday.circular_distance(self, other)

    @property
    def label(self) -> str:
        return self.name.title()


ALL_WEEKDAYS: Tuple[Weekday, ...] = tuple(Weekday)
WORKING_DAYS: Tuple[Weekday, ...] = ALL_WEEKDAYS[:5]
WEEKEND: Tuple[Weekday, ...] = ALL_WEEKDAYS[5:]

_DAY_GROUPS = {
    "ALL": ALL_WEEKDAYS,
    "WEEKDAYS": WORKING_DAYS,
    "WEEKENDS": WEEKEND,
    "WEEKEND": WEEKEND,
}


@dataclass(frozen=True)
class RateWindowAbsolute:
    """One concrete occurrence of a RateWindow on the absolute (UTC) timeline."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        """Inclusive at both ends."""
        return self.start <= instant <= self.end

    is_inside = contains

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def minutes_from(self, instant: datetime) -> int:
        """Whole minutes from `instant` until this occurrence starts (negative once started)."""
        return int((self.start - instant).total_seconds() // 60)


class RateWindow(BaseModel):
    """
    A recurring interval: start/end time of day on a set of weekdays.

    `days` lists the weekdays on which the window begins; a window whose end
    is before its start crosses midnight into the following day. Omitting
    `days` or leaving it blank means every day, an explicit empty list means never.
    """

    model_config = ConfigDict(frozen=True)

    start: TimeOfDay
    end: TimeOfDay
    days: Tuple[Weekday, ...] = ALL_WEEKDAYS

    @field_validator("days", mode="before")
    @classmethod
    def _parse_days(cls, value: Any) -> Any:
        if value is None:
            return ALL_WEEKDAYS
        if isinstance(value, str):
            group = _DAY_GROUPS.get(value.strip().upper())
            if group is not None:
                return group
            value = [value]
        return tuple(sorted({Weekday.parse(v) for v in value}))

    @field_serializer("days")
    def _serialize_days(self, days: Tuple[Weekday, ...]) -> List[str]:
        return [d.label for d in days]

    def period(self) -> int:
        """Window length in minutes, wrapping past midnight when end < start."""
        minutes = self.end.minute_of_day - self.start.minute_of_day
        if minutes < 0:
            minutes += MINUTES_PER_DAY
        return minutes

    def crosses_midnight(self) -> bool:
        return self.end < self.start

    def resolve(self, reference: datetime, tz: Optional[tzinfo] = None) -> List[RateWindowAbsolute]:
        """
        Resolve this window into absolute occurrences relative to `reference`.

        The anchor is the local calendar day before `reference`, so a window
        that began yesterday and crosses midnight is still found. One
        occurrence is kept per listed weekday: a candidate survives if it
        starts at or after `reference` or if it contains `reference`, and a
        candidate that already ended is replaced by the one a week later.

        Args:
            reference: The instant to resolve against (naive values are local time)
            tz: Local timezone for the calendar arithmetic (default: configured)

        Returns:
            Occurrences sorted ascending by start, in UTC
        """
        tz = resolve_timezone(tz)
        reference = ensure_aware(reference, tz)
        anchor = (reference.astimezone(tz) - timedelta(days=1)).date()
        anchor_day = Weekday.of(anchor)
        period = timedelta(minutes=self.period())

        occurrences = []
        for day in self.days:
            offset = anchor_day.days_until(day)
            # an occurrence that already ended is replaced by the same weekday next week
            for days_ahead in (offset, offset + 7):
                local_date = anchor + timedelta(days=days_ahead)
                start = localize(datetime.combine(local_date, self.start.as_time()), tz).astimezone(UTC)
                occurrence = RateWindowAbsolute(start=start, end=start + period)
                if occurrence.start >= reference or occurrence.contains(reference):
                    occurrences.append(occurrence)
                    break

        occurrences.sort(key=lambda o: o.start)
        return occurrences

    def minute_of_week_spans(self) -> List[Tuple[int, int]]:
        """Closed [start, end] minute-of-week intervals, one per listed weekday."""
        spans = []
        for day in self.days:
            start = int(day) * MINUTES_PER_DAY + self.start.minute_of_day
            spans.append((start, start + self.period()))
        return spans

    def __str__(self) -> str:
        days = ",".join(d.label[:3] for d in self.days) or "never"
        return f"{self.start}-{self.end} [{days}]"
