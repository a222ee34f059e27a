"""Billable-hours derivation for a single session.

Minutes are the base unit. Rounding happens only when converting to hours and
to currency, both to two decimal places with ROUND_HALF_UP.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum

from crewclock.domain.time_tracking.state import SessionSnapshot, ensure_utc, utcnow

CENT = Decimal("0.01")
ZERO = Decimal("0")
SIXTY = Decimal("60")
DEFAULT_MAX_SESSION_HOURS = 24


class BillableFlag(str, Enum):
    INVALID_RATE = "InvalidRate"
    STALE_SESSION = "StaleSessionExceeded24h"
    SESSION_OPEN = "SessionOpen"


@dataclass(frozen=True)
class BillableSummary:
    entry_id: str
    worked_minutes: Decimal
    break_minutes: Decimal
    billable_hours: Decimal
    rate: Decimal
    line_total: Decimal | None
    flags: tuple[BillableFlag, ...] = ()

    @property
    def has_valid_rate(self) -> bool:
        return BillableFlag.INVALID_RATE not in self.flags

    @property
    def needs_review(self) -> bool:
        return BillableFlag.STALE_SESSION in self.flags


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def minutes_between(start: datetime, end: datetime) -> Decimal:
    """Whole and fractional minutes from ``start`` to ``end``, floored at zero."""
    delta = ensure_utc(end) - ensure_utc(start)
    if delta <= timedelta(0):
        return ZERO
    microseconds = (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds
    return Decimal(microseconds) / Decimal(60_000_000)


def worked_minutes(snapshot: SessionSnapshot, now: datetime | None = None) -> Decimal:
    end = snapshot.clock_out_time or now or utcnow()
    return minutes_between(snapshot.clock_in_time, end)


def break_minutes(snapshot: SessionSnapshot) -> Decimal:
    total = ZERO
    for period in snapshot.breaks:
        if period.end is None:
            continue
        total += minutes_between(period.start, period.end)
    return total


def is_stale(
    snapshot: SessionSnapshot,
    now: datetime | None = None,
    max_session_hours: int | None = None,
) -> bool:
    if snapshot.exceeded_max_duration:
        return True
    cap = timedelta(hours=max_session_hours or DEFAULT_MAX_SESSION_HOURS)
    end = snapshot.clock_out_time or now or utcnow()
    return ensure_utc(end) - ensure_utc(snapshot.clock_in_time) > cap


def calculate_billable(
    snapshot: SessionSnapshot,
    rate: Decimal | int | float | str | None,
    now: datetime | None = None,
    max_session_hours: int | None = None,
) -> BillableSummary:
    now = now or utcnow()
    rate_value = to_decimal(rate)
    worked = worked_minutes(snapshot, now)
    on_break = break_minutes(snapshot)
    hours = ((worked - on_break) / SIXTY).quantize(CENT, rounding=ROUND_HALF_UP)
    if hours < ZERO:
        hours = ZERO.quantize(CENT)

    flags: list[BillableFlag] = []
    if snapshot.clock_out_time is None:
        flags.append(BillableFlag.SESSION_OPEN)
    if is_stale(snapshot, now, max_session_hours):
        flags.append(BillableFlag.STALE_SESSION)

    line_total: Decimal | None
    if rate_value <= ZERO:
        flags.append(BillableFlag.INVALID_RATE)
        line_total = None
    else:
        line_total = (hours * rate_value).quantize(CENT, rounding=ROUND_HALF_UP)

    return BillableSummary(
        entry_id=snapshot.entry_id,
        worked_minutes=worked,
        break_minutes=on_break,
        billable_hours=hours,
        rate=rate_value,
        line_total=line_total,
        flags=tuple(flags),
    )


def format_actual_hours(snapshot: SessionSnapshot, tz: tzinfo) -> str:
    start = ensure_utc(snapshot.clock_in_time).astimezone(tz).strftime("%H:%M")
    if snapshot.clock_out_time is None:
        return f"{start} - In progress"
    end = ensure_utc(snapshot.clock_out_time).astimezone(tz).strftime("%H:%M")
    return f"{start} - {end}"
