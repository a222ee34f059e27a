from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Sequence


class SessionState(str, Enum):
    NOT_CLOCKED_IN = "NOT_CLOCKED_IN"
    WORKING = "WORKING"
    ON_BREAK = "ON_BREAK"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def serialize_ts(dt: datetime) -> str:
    return ensure_utc(dt).isoformat()


def parse_ts(dt_str: str | None) -> datetime | None:
    if not dt_str:
        return None
    return ensure_utc(datetime.fromisoformat(dt_str))


@dataclass(frozen=True)
class BreakPeriod:
    start: datetime
    end: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    def closed_at(self, end: datetime) -> "BreakPeriod":
        return BreakPeriod(start=self.start, end=end)

    def to_json(self) -> dict[str, str | None]:
        return {
            "start": serialize_ts(self.start),
            "end": serialize_ts(self.end) if self.end is not None else None,
        }

    @classmethod
    def from_json(cls, raw: dict[str, str | None]) -> "BreakPeriod":
        start = parse_ts(raw.get("start"))
        if start is None:
            raise ValueError("Break period is missing its start time")
        return cls(start=start, end=parse_ts(raw.get("end")))


def load_breaks(raw: Iterable[dict[str, str | None]] | None) -> list[BreakPeriod]:
    return [BreakPeriod.from_json(item) for item in raw or []]


def dump_breaks(breaks: Iterable[BreakPeriod]) -> list[dict[str, str | None]]:
    return [period.to_json() for period in breaks]


def derive_state(clock_out_time: datetime | None, breaks: Sequence[BreakPeriod]) -> SessionState:
    if clock_out_time is not None:
        return SessionState.NOT_CLOCKED_IN
    if breaks and breaks[-1].is_open:
        return SessionState.ON_BREAK
    return SessionState.WORKING


def validate_breaks(
    clock_in_time: datetime,
    clock_out_time: datetime | None,
    breaks: Sequence[BreakPeriod],
) -> None:
    """Raise ``ValueError`` when a stored session violates the ordering rules.

    Breaks must start no earlier than the clock-in, close before the next one
    opens, and end no later than the clock-out. Only the trailing break of an
    active session may be open.
    """
    if clock_out_time is not None and clock_out_time < clock_in_time:
        raise ValueError("clock_out_time precedes clock_in_time")

    previous_end = clock_in_time
    for index, period in enumerate(breaks):
        if period.start < previous_end:
            raise ValueError(f"break {index} starts before the previous boundary")
        if period.end is None:
            if index != len(breaks) - 1:
                raise ValueError(f"break {index} is open but is not the last break")
            if clock_out_time is not None:
                raise ValueError("closed session carries an open break")
            continue
        if period.end < period.start:
            raise ValueError(f"break {index} ends before it starts")
        if clock_out_time is not None and period.end > clock_out_time:
            raise ValueError(f"break {index} ends after clock-out")
        previous_end = period.end


def latest_timestamp(
    clock_in_time: datetime, clock_out_time: datetime | None, breaks: Sequence[BreakPeriod]
) -> datetime:
    latest = clock_in_time
    for period in breaks:
        latest = max(latest, period.start, period.end or period.start)
    if clock_out_time is not None:
        latest = max(latest, clock_out_time)
    return latest


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a stored session used by the timeline and billing code."""

    entry_id: str
    user_id: str
    event_id: str
    clock_in_time: datetime
    clock_out_time: datetime | None = None
    breaks: tuple[BreakPeriod, ...] = ()
    exceeded_max_duration: bool = False

    @property
    def state(self) -> SessionState:
        return derive_state(self.clock_out_time, self.breaks)
