from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from crewclock.domain.time_tracking.state import BreakPeriod, SessionSnapshot
from crewclock.domain.time_tracking.timeline import (
    TimelineEventType,
    local_day_bounds,
    merge_timeline,
    session_events,
    touches_day,
)


def _at(hour: int, minute: int = 0, day: int = 4) -> datetime:
    return datetime(2024, 3, day, hour, minute, tzinfo=timezone.utc)


def _session(entry_id, clock_in, clock_out=None, breaks=()) -> SessionSnapshot:
    return SessionSnapshot(
        entry_id=entry_id,
        user_id="user-1",
        event_id=f"event-{entry_id}",
        clock_in_time=clock_in,
        clock_out_time=clock_out,
        breaks=tuple(breaks),
    )


def test_session_events_follow_the_session():
    snapshot = _session("a", _at(9), _at(17), [BreakPeriod(start=_at(12), end=_at(12, 30))])

    events = session_events(snapshot)

    assert [event.type for event in events] == [
        TimelineEventType.CLOCK_IN,
        TimelineEventType.BREAK_START,
        TimelineEventType.BREAK_END,
        TimelineEventType.CLOCK_OUT,
    ]
    assert all(event.entry_id == "a" and event.event_id == "event-a" for event in events)


def test_open_session_stops_at_last_recorded_event():
    snapshot = _session("a", _at(9), breaks=[BreakPeriod(start=_at(11))])

    events = session_events(snapshot)

    assert [event.type.value for event in events] == ["Clock In", "Break Start"]


def test_merge_interleaves_sessions_chronologically():
    morning = _session("a", _at(8), _at(11), [BreakPeriod(start=_at(9), end=_at(9, 15))])
    afternoon = _session("b", _at(12), _at(16), [BreakPeriod(start=_at(14), end=_at(14, 10))])

    merged = list(merge_timeline([afternoon, morning]))

    assert [(event.entry_id, event.type.value) for event in merged] == [
        ("a", "Clock In"),
        ("a", "Break Start"),
        ("a", "Break End"),
        ("a", "Clock Out"),
        ("b", "Clock In"),
        ("b", "Break Start"),
        ("b", "Break End"),
        ("b", "Clock Out"),
    ]
    assert [event.time for event in merged] == sorted(event.time for event in merged)


def test_same_instant_events_use_action_precedence():
    handover = _at(12)
    first = _session("a", _at(8), handover)
    second = _session("b", handover, _at(16), [BreakPeriod(start=handover, end=_at(12, 5))])

    merged = [event for event in merge_timeline([first, second]) if event.time == handover]

    assert [event.type for event in merged] == [
        TimelineEventType.CLOCK_IN,
        TimelineEventType.BREAK_START,
        TimelineEventType.CLOCK_OUT,
    ]


def test_merge_is_lazy():
    stream = merge_timeline([_session("a", _at(9), _at(10))])

    assert not isinstance(stream, list)
    assert next(stream).type == TimelineEventType.CLOCK_IN
    assert next(stream).type == TimelineEventType.CLOCK_OUT


def test_local_day_bounds_convert_zone_to_utc():
    start, end = local_day_bounds(date(2024, 3, 4), ZoneInfo("America/New_York"))

    assert start == datetime(2024, 3, 4, 5, 0, tzinfo=timezone.utc)
    assert end == datetime(2024, 3, 5, 5, 0, tzinfo=timezone.utc)


def test_touches_day_matches_clock_in_or_clock_out():
    start, end = local_day_bounds(date(2024, 3, 4), timezone.utc)

    overnight = _session("a", _at(22, day=3), _at(2))
    same_day = _session("b", _at(9))
    earlier = _session("c", _at(9, day=2), _at(17, day=2))

    assert touches_day(overnight, start, end)
    assert touches_day(same_day, start, end)
    assert not touches_day(earlier, start, end)
