"""Splitting a charging session into uniformly priced slices.

A session is cut at every midnight it crosses and, within each calendar day,
at every time-window edge configured for that weekday. Inside a resulting
slice the same time rule applies from start to end, so one multiplier
describes the whole slice.

Energy is not metered per slice. It is apportioned by duration, and the last
slice takes whatever the proportional shares leave over so that the slices
always add up to the metered total.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

from ..tariffs.rules import TimeWindowRules
from ..tariffs.types import WEEKDAYS, ZERO, ChargingSession, TimeRestriction
from .units import micros_between, micros_to_minutes


@dataclass(frozen=True)
class SessionSlice:
    index: int
    start: datetime
    end: datetime
    day_of_week: str
    duration_micros: int
    energy_kwh: Decimal
    time_rule: Optional[TimeRestriction] = None

    @property
    def minutes(self) -> Decimal:
        return micros_to_minutes(self.duration_micros)


def _day_start(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time(0), tzinfo=moment.tzinfo)


def _cut_points(start: datetime, end: datetime, rules: TimeWindowRules) -> List[datetime]:
    """Interior cut points plus both ends, for an interval inside one day."""
    day_start = _day_start(start)
    day = WEEKDAYS[start.weekday()]
    points = [start]
    for edge in rules.boundaries(day):
        moment = day_start + timedelta(microseconds=edge)
        if start < moment < end:
            points.append(moment)
    points.append(end)
    return points


def split_session(session: ChargingSession, rules: TimeWindowRules) -> List[SessionSlice]:
    start, end = session.start_datetime, session.end_datetime
    total_micros = micros_between(start, end)

    intervals: List[tuple] = []
    if total_micros == 0:
        intervals.append((start, end))
    cursor = start
    while cursor < end:
        day_end = min(end, _day_start(cursor) + timedelta(days=1))
        points = _cut_points(cursor, day_end, rules)
        intervals.extend(zip(points, points[1:]))
        cursor = day_end

    slices: List[SessionSlice] = []
    allotted = ZERO
    for index, (s, e) in enumerate(intervals):
        micros = micros_between(s, e)
        if index == len(intervals) - 1:
            energy = session.energy_kwh - allotted
        else:
            energy = session.energy_kwh * Decimal(micros) / Decimal(total_micros)
            allotted += energy
        day = WEEKDAYS[s.weekday()]
        slices.append(
            SessionSlice(
                index=index,
                start=s,
                end=e,
                day_of_week=day,
                duration_micros=micros,
                energy_kwh=energy,
                time_rule=rules.select(day, micros_between(_day_start(s), s)),
            )
        )
    return slices
