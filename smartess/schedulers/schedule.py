"""
Schedule engine: merges every rate's resolved occurrences into one
time-ordered schedule.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from smartess.exceptions import NoNextChargeError
from smartess.schedulers.rate import Rate
from smartess.schedulers.window import MINUTES_PER_WEEK, RateWindowAbsolute
from smartess.timezone_utils import resolve_timezone

log = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ScheduleEntry:
    """One occurrence tagged with the rate that owns it."""

    rate: Rate
    occurrence: RateWindowAbsolute

    @property
    def start(self) -> datetime:
        return self.occurrence.start

    @property
    def end(self) -> datetime:
        return self.occurrence.end

    def contains(self, instant: datetime) -> bool:
        return self.occurrence.contains(instant)

    def __str__(self) -> str:
        return f"{self.rate.name} {self.start.isoformat()} -> {self.end.isoformat()}"


def get_schedule(rates: Iterable[Rate], reference: datetime, tz: Optional[tzinfo] = None) -> List[ScheduleEntry]:
    """
    Resolve every rate against `reference` and merge into one schedule.

    Sorting is stable, so entries with the same start keep table order. No
    de-duplication happens here.
    """
    entries = [
        ScheduleEntry(rate=rate, occurrence=occurrence)
        for rate in rates
        for occurrence in rate.resolve(reference, tz)
    ]
    entries.sort(key=lambda e: e.start)
    return entries


def first_charge(schedule: Sequence[ScheduleEntry]) -> ScheduleEntry:
    """Earliest entry in an already merged schedule whose rate enables charging."""
    for entry in schedule:
        if entry.rate.charge_enabled:
            return entry
    raise NoNextChargeError("No charge window configured: no rate enables charging")


def next_charge(rates: Iterable[Rate], reference: datetime, tz: Optional[tzinfo] = None) -> ScheduleEntry:
    return first_charge(get_schedule(rates, reference, tz))


def _spans_intersect(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    # closed minute-of-week intervals; b is also tried a week either side
    for shift in (-MINUTES_PER_WEEK, 0, MINUTES_PER_WEEK):
        if a[0] <= b[1] + shift and b[0] + shift <= a[1]:
            return True
    return False


def find_overlaps(rates: Sequence[Rate]) -> List[Tuple[Rate, Rate]]:
    """
    Pairs of different rates whose recurring windows intersect somewhere in
    the week. Window ends are inclusive, so 09:00-17:00 and 17:00-19:00
    collide at 17:00.
    """
    spans = [
        [span for window in rate.windows for span in window.minute_of_week_spans()]
        for rate in rates
    ]
    overlaps = []
    for i in range(len(rates)):
        for j in range(i + 1, len(rates)):
            if any(_spans_intersect(a, b) for a in spans[i] for b in spans[j]):
                overlaps.append((rates[i], rates[j]))
    return overlaps


def schedule_to_frame(schedule: Sequence[ScheduleEntry], tz: Optional[tzinfo] = None) -> pd.DataFrame:
    """Tabular view of a schedule in local time, one row per entry."""
    tz = resolve_timezone(tz)
    rows = [
        {
            "rate": e.rate.name,
            "start": e.start.astimezone(tz),
            "end": e.end.astimezone(tz),
            "minutes": int(e.occurrence.duration.total_seconds() // 60),
            "charge": e.rate.describe_charge(),
            "discharge": e.rate.describe_discharge(),
            "reserve_kwh": e.rate.reserve,
            "unit_cost": e.rate.unit_cost,
        }
        for e in schedule
    ]
    columns = ["rate", "start", "end", "minutes", "charge", "discharge", "reserve_kwh", "unit_cost"]
    return pd.DataFrame(rows, columns=columns)
