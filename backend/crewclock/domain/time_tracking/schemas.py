from datetime import datetime

from pydantic import BaseModel, Field

from crewclock.domain.time_tracking.billing import BillableFlag
from crewclock.domain.time_tracking.db_models import TimeEntry
from crewclock.domain.time_tracking.state import SessionState
from crewclock.domain.time_tracking.timeline import TimelineEvent, TimelineEventType


class ClockInRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)
    event_id: str = Field(min_length=1, max_length=255)


class BreakPeriodResponse(BaseModel):
    break_start_time: datetime
    break_end_time: datetime | None = None


class TimeEntryResponse(BaseModel):
    entry_id: str
    user_id: str
    event_id: str
    clock_in_time: datetime
    clock_out_time: datetime | None = None
    is_clocked_in: bool
    is_on_break: bool
    state: SessionState
    breaks: list[BreakPeriodResponse]
    exceeded_max_duration: bool = False
    force_closed: bool = False
    flags: list[str] = Field(default_factory=list)

    @classmethod
    def from_entry(cls, entry: TimeEntry) -> "TimeEntryResponse":
        flags = [BillableFlag.STALE_SESSION.value] if entry.exceeded_max_duration else []
        return cls(
            entry_id=entry.entry_id,
            user_id=entry.user_id,
            event_id=entry.event_id,
            clock_in_time=entry.clock_in_time,
            clock_out_time=entry.clock_out_time,
            is_clocked_in=entry.is_clocked_in,
            is_on_break=entry.is_on_break,
            state=entry.state,
            breaks=[
                BreakPeriodResponse(break_start_time=period.start, break_end_time=period.end)
                for period in entry.break_periods
            ],
            exceeded_max_duration=bool(entry.exceeded_max_duration),
            force_closed=bool(entry.force_closed),
            flags=flags,
        )


class TimeStatusResponse(BaseModel):
    is_clocked_in: bool
    state: SessionState
    entry: TimeEntryResponse | None = None


class TimelineEventResponse(BaseModel):
    type: TimelineEventType
    time: datetime
    entry_id: str
    event_id: str

    @classmethod
    def from_event(cls, event: TimelineEvent) -> "TimelineEventResponse":
        return cls(type=event.type, time=event.time, entry_id=event.entry_id, event_id=event.event_id)


class TimeHistoryResponse(BaseModel):
    user_id: str
    date: str
    events: list[TimelineEventResponse]
