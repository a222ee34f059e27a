import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterator

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crewclock.domain.time_tracking.db_models import TimeEntry
from crewclock.domain.time_tracking.errors import (
    AlreadyClockedIn,
    AlreadyOnBreak,
    NotClockedIn,
    NotOnBreak,
    TimestampOutOfOrder,
)
from crewclock.domain.time_tracking.state import (
    BreakPeriod,
    SessionState,
    dump_breaks,
    ensure_utc,
    latest_timestamp,
    utcnow,
)
from crewclock.domain.time_tracking.timeline import (
    TimelineEvent,
    local_day_bounds,
    merge_timeline,
    touches_day,
)
from crewclock.infra.metrics import metrics
from crewclock.settings import settings

logger = logging.getLogger(__name__)


def _log(message: str, entry: TimeEntry, **extra: object) -> None:
    logger.info(
        message,
        extra={
            "extra": {
                "user_id": entry.user_id,
                "event_id": entry.event_id,
                "entry_id": entry.entry_id,
                "state": entry.state.value,
                **extra,
            }
        },
    )


def _session_cap(max_session_hours: int | None) -> timedelta:
    return timedelta(hours=max_session_hours or settings.max_session_hours)


def _ensure_monotonic(entry: TimeEntry, timestamp: datetime, action: str) -> None:
    latest = latest_timestamp(entry.clock_in_time, entry.clock_out_time, entry.break_periods)
    if timestamp < latest:
        metrics.record_time_tracking(action, "out_of_order")
        raise TimestampOutOfOrder(
            errors=[{"entry_id": entry.entry_id, "latest": latest.isoformat(), "now": timestamp.isoformat()}]
        )


async def get_active_entry(
    session: AsyncSession, user_id: str, *, for_update: bool = False
) -> TimeEntry | None:
    """Return the user's open session, read fresh from the store."""
    stmt = (
        select(TimeEntry)
        .where(TimeEntry.user_id == user_id, TimeEntry.clock_out_time.is_(None))
        .limit(1)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_latest_entry(session: AsyncSession, user_id: str) -> TimeEntry | None:
    stmt = (
        select(TimeEntry)
        .where(TimeEntry.user_id == user_id)
        .order_by(TimeEntry.clock_in_time.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def _ensure_after_previous(previous: TimeEntry, timestamp: datetime) -> None:
    """A new session starts after the previous one started and at or after it ended."""
    latest = latest_timestamp(previous.clock_in_time, previous.clock_out_time, previous.break_periods)
    if timestamp < latest or timestamp == previous.clock_in_time:
        metrics.record_time_tracking("clock_in", "out_of_order")
        raise TimestampOutOfOrder(
            errors=[{"entry_id": previous.entry_id, "latest": latest.isoformat(), "now": timestamp.isoformat()}]
        )


async def clock_in(
    session: AsyncSession, user_id: str, event_id: str, now: datetime | None = None
) -> TimeEntry:
    timestamp = ensure_utc(now or utcnow())
    existing = await get_active_entry(session, user_id)
    if existing is not None:
        metrics.record_time_tracking("clock_in", "already_clocked_in")
        raise AlreadyClockedIn(errors=[{"entry_id": existing.entry_id}])
    previous = await get_latest_entry(session, user_id)
    if previous is not None:
        _ensure_after_previous(previous, timestamp)

    entry = TimeEntry(
        user_id=user_id,
        event_id=event_id,
        clock_in_time=timestamp,
        breaks=[],
    )
    session.add(entry)

    try:
        await session.commit()
    except IntegrityError as exc:
        # A concurrent clock-in won the race on the active-entry index, or
        # already recorded a session for this event at the same instant.
        await session.rollback()
        existing = await get_active_entry(session, user_id)
        if existing is None:
            metrics.record_time_tracking("clock_in", "out_of_order")
            raise TimestampOutOfOrder(
                errors=[{"event_id": event_id, "now": timestamp.isoformat()}]
            ) from exc
        logger.info(
            "time_tracking_clock_in_race_rejected",
            extra={"extra": {"user_id": user_id, "event_id": event_id, "entry_id": existing.entry_id}},
        )
        metrics.record_time_tracking("clock_in", "already_clocked_in")
        raise AlreadyClockedIn(errors=[{"entry_id": existing.entry_id}]) from exc

    await session.refresh(entry)
    metrics.record_time_tracking("clock_in", "ok")
    _log("time_tracking_clock_in", entry)
    return entry


async def clock_out(
    session: AsyncSession,
    user_id: str,
    now: datetime | None = None,
    *,
    max_session_hours: int | None = None,
) -> TimeEntry:
    """Close the user's open session.

    A session open longer than the cap is still closed, but it is flagged
    ``exceeded_max_duration`` for review. An open break ends at the clock-out.
    """
    timestamp = ensure_utc(now or utcnow())
    entry = await get_active_entry(session, user_id, for_update=True)
    if entry is None:
        metrics.record_time_tracking("clock_out", "not_clocked_in")
        raise NotClockedIn()
    _ensure_monotonic(entry, timestamp, "clock_out")

    breaks = entry.break_periods
    if breaks and breaks[-1].is_open:
        breaks[-1] = breaks[-1].closed_at(timestamp)
        entry.breaks = dump_breaks(breaks)

    stale = timestamp - entry.clock_in_time > _session_cap(max_session_hours)
    entry.clock_out_time = timestamp
    if stale:
        entry.exceeded_max_duration = True
    entry.check_consistency()
    await session.commit()
    await session.refresh(entry)

    if stale:
        metrics.record_stale_session("clock_out")
        logger.warning(
            "time_tracking_stale_session",
            extra={
                "extra": {
                    "user_id": entry.user_id,
                    "entry_id": entry.entry_id,
                    "open_seconds": int((timestamp - entry.clock_in_time).total_seconds()),
                }
            },
        )
    metrics.record_time_tracking("clock_out", "stale" if stale else "ok")
    _log("time_tracking_clock_out", entry, exceeded_max_duration=stale)
    return entry


async def start_break(session: AsyncSession, user_id: str, now: datetime | None = None) -> TimeEntry:
    timestamp = ensure_utc(now or utcnow())
    entry = await get_active_entry(session, user_id, for_update=True)
    if entry is None:
        metrics.record_time_tracking("start_break", "not_clocked_in")
        raise NotClockedIn()
    if entry.state == SessionState.ON_BREAK:
        metrics.record_time_tracking("start_break", "already_on_break")
        raise AlreadyOnBreak(errors=[{"entry_id": entry.entry_id}])
    _ensure_monotonic(entry, timestamp, "start_break")

    breaks = entry.break_periods
    breaks.append(BreakPeriod(start=timestamp))
    entry.breaks = dump_breaks(breaks)
    entry.check_consistency()
    await session.commit()
    await session.refresh(entry)
    metrics.record_time_tracking("start_break", "ok")
    _log("time_tracking_break_start", entry, breaks=len(breaks))
    return entry


async def end_break(session: AsyncSession, user_id: str, now: datetime | None = None) -> TimeEntry:
    timestamp = ensure_utc(now or utcnow())
    entry = await get_active_entry(session, user_id, for_update=True)
    if entry is None or entry.state != SessionState.ON_BREAK:
        metrics.record_time_tracking("end_break", "not_on_break")
        raise NotOnBreak()
    _ensure_monotonic(entry, timestamp, "end_break")

    breaks = entry.break_periods
    breaks[-1] = breaks[-1].closed_at(timestamp)
    entry.breaks = dump_breaks(breaks)
    entry.check_consistency()
    await session.commit()
    await session.refresh(entry)
    metrics.record_time_tracking("end_break", "ok")
    _log("time_tracking_break_end", entry, breaks=len(breaks))
    return entry


async def get_status(session: AsyncSession, user_id: str) -> dict[str, object]:
    entry = await get_active_entry(session, user_id)
    if entry is None:
        return {"is_clocked_in": False, "state": SessionState.NOT_CLOCKED_IN, "entry": None}
    return {"is_clocked_in": True, "state": entry.state, "entry": entry}


async def list_entries_for_day(
    session: AsyncSession, user_id: str, day: date, tz: tzinfo | None = None
) -> list[TimeEntry]:
    start, end = local_day_bounds(day, tz or settings.tzinfo)
    stmt = (
        select(TimeEntry)
        .where(
            TimeEntry.user_id == user_id,
            or_(
                and_(TimeEntry.clock_in_time >= start, TimeEntry.clock_in_time < end),
                and_(TimeEntry.clock_out_time >= start, TimeEntry.clock_out_time < end),
            ),
        )
        .order_by(TimeEntry.clock_in_time)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_history(
    session: AsyncSession, user_id: str, day: date, tz: tzinfo | None = None
) -> Iterator[TimelineEvent]:
    start, end = local_day_bounds(day, tz or settings.tzinfo)
    entries = await list_entries_for_day(session, user_id, day, tz)
    snapshots = (entry.snapshot() for entry in entries)
    return merge_timeline(snapshot for snapshot in snapshots if touches_day(snapshot, start, end))


async def get_event_time_entries(session: AsyncSession, event_id: str, user_id: str) -> list[TimeEntry]:
    stmt = (
        select(TimeEntry)
        .where(TimeEntry.event_id == event_id, TimeEntry.user_id == user_id)
        .order_by(TimeEntry.clock_in_time)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def force_close_stale_sessions(
    session: AsyncSession, now: datetime | None = None, *, max_session_hours: int | None = None
) -> list[TimeEntry]:
    """Close every open session older than the cap at ``clock_in_time + cap``."""
    timestamp = ensure_utc(now or utcnow())
    cap = _session_cap(max_session_hours)
    stmt = (
        select(TimeEntry)
        .where(TimeEntry.clock_out_time.is_(None), TimeEntry.clock_in_time < timestamp - cap)
        .order_by(TimeEntry.clock_in_time)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    entries = list(result.scalars().all())
    if not entries:
        return []

    for entry in entries:
        breaks = entry.break_periods
        close_at = max(entry.clock_in_time + cap, latest_timestamp(entry.clock_in_time, None, breaks))
        if breaks and breaks[-1].is_open:
            breaks[-1] = breaks[-1].closed_at(close_at)
            entry.breaks = dump_breaks(breaks)
        entry.clock_out_time = close_at
        entry.exceeded_max_duration = True
        entry.force_closed = True
        entry.check_consistency()
    await session.commit()

    for entry in entries:
        await session.refresh(entry)
        _log("time_tracking_force_close", entry, clock_out_time=entry.clock_out_time.isoformat())
    metrics.record_stale_session("force_close", len(entries))
    return entries
