from __future__ import annotations

import heapq
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Iterable, Iterator

from crewclock.domain.time_tracking.state import SessionSnapshot, ensure_utc


class TimelineEventType(str, Enum):
    CLOCK_IN = "Clock In"
    BREAK_START = "Break Start"
    BREAK_END = "Break End"
    CLOCK_OUT = "Clock Out"


# Tie-break order for events recorded at the same instant.
_PRECEDENCE = {
    TimelineEventType.CLOCK_IN: 0,
    TimelineEventType.BREAK_START: 1,
    TimelineEventType.BREAK_END: 2,
    TimelineEventType.CLOCK_OUT: 3,
}


@dataclass(frozen=True)
class TimelineEvent:
    type: TimelineEventType
    time: datetime
    entry_id: str
    event_id: str

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.time, _PRECEDENCE[self.type])


def session_events(snapshot: SessionSnapshot) -> list[TimelineEvent]:
    def _event(kind: TimelineEventType, when: datetime) -> TimelineEvent:
        return TimelineEvent(
            type=kind,
            time=ensure_utc(when),
            entry_id=snapshot.entry_id,
            event_id=snapshot.event_id,
        )

    events = [_event(TimelineEventType.CLOCK_IN, snapshot.clock_in_time)]
    for period in snapshot.breaks:
        events.append(_event(TimelineEventType.BREAK_START, period.start))
        if period.end is not None:
            events.append(_event(TimelineEventType.BREAK_END, period.end))
    if snapshot.clock_out_time is not None:
        events.append(_event(TimelineEventType.CLOCK_OUT, snapshot.clock_out_time))
    events.sort(key=lambda item: item.sort_key)
    return events


def merge_timeline(sessions: Iterable[SessionSnapshot]) -> Iterator[TimelineEvent]:
    """Lazily merge the events of every session into one chronological stream."""
    streams = [session_events(snapshot) for snapshot in sessions]
    return heapq.merge(*streams, key=lambda item: item.sort_key)


def local_day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return ensure_utc(start), ensure_utc(end)


def touches_day(snapshot: SessionSnapshot, start: datetime, end: datetime) -> bool:
    if start <= ensure_utc(snapshot.clock_in_time) < end:
        return True
    return snapshot.clock_out_time is not None and start <= ensure_utc(snapshot.clock_out_time) < end
