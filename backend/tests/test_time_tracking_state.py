from datetime import datetime, timedelta, timezone

import pytest

from crewclock.domain.time_tracking.state import (
    BreakPeriod,
    SessionSnapshot,
    SessionState,
    derive_state,
    dump_breaks,
    ensure_utc,
    latest_timestamp,
    load_breaks,
    validate_breaks,
)

START = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


def test_derive_state_covers_every_combination():
    open_break = [BreakPeriod(start=START + timedelta(hours=1))]
    closed_break = [BreakPeriod(start=START + timedelta(hours=1), end=START + timedelta(hours=2))]

    assert derive_state(None, []) == SessionState.WORKING
    assert derive_state(None, closed_break) == SessionState.WORKING
    assert derive_state(None, open_break) == SessionState.ON_BREAK
    assert derive_state(START + timedelta(hours=3), closed_break) == SessionState.NOT_CLOCKED_IN


def test_breaks_serialize_as_utc_iso_strings():
    local = timezone(timedelta(hours=-5))
    periods = [
        BreakPeriod(start=datetime(2024, 3, 4, 7, 0, tzinfo=local), end=datetime(2024, 3, 4, 7, 30, tzinfo=local)),
        BreakPeriod(start=datetime(2024, 3, 4, 9, 0, tzinfo=local)),
    ]

    raw = dump_breaks(periods)

    assert raw[0] == {"start": "2024-03-04T12:00:00+00:00", "end": "2024-03-04T12:30:00+00:00"}
    assert raw[1]["end"] is None
    loaded = load_breaks(raw)
    assert loaded[0].start == datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
    assert loaded[1].is_open


def test_load_breaks_rejects_missing_start():
    with pytest.raises(ValueError):
        load_breaks([{"start": None, "end": None}])


def test_ensure_utc_treats_naive_values_as_utc():
    naive = datetime(2024, 3, 4, 9, 0)
    assert ensure_utc(naive) == START
    assert ensure_utc(naive).tzinfo == timezone.utc


def test_validate_breaks_accepts_well_ordered_session():
    breaks = [
        BreakPeriod(start=START + timedelta(hours=1), end=START + timedelta(hours=1, minutes=15)),
        BreakPeriod(start=START + timedelta(hours=3), end=START + timedelta(hours=3, minutes=30)),
    ]
    validate_breaks(START, START + timedelta(hours=8), breaks)
    validate_breaks(START, None, breaks + [BreakPeriod(start=START + timedelta(hours=5))])


@pytest.mark.parametrize(
    "clock_out, breaks",
    [
        (START - timedelta(minutes=1), []),
        (None, [BreakPeriod(start=START - timedelta(minutes=5), end=START + timedelta(minutes=5))]),
        (None, [BreakPeriod(start=START + timedelta(hours=1)), BreakPeriod(start=START + timedelta(hours=2))]),
        (START + timedelta(hours=4), [BreakPeriod(start=START + timedelta(hours=1))]),
        (None, [BreakPeriod(start=START + timedelta(hours=2), end=START + timedelta(hours=1))]),
        (START + timedelta(hours=2), [BreakPeriod(start=START + timedelta(hours=1), end=START + timedelta(hours=3))]),
        (
            None,
            [
                BreakPeriod(start=START + timedelta(hours=1), end=START + timedelta(hours=2)),
                BreakPeriod(start=START + timedelta(hours=1, minutes=30), end=START + timedelta(hours=3)),
            ],
        ),
    ],
)
def test_validate_breaks_rejects_disordered_sessions(clock_out, breaks):
    with pytest.raises(ValueError):
        validate_breaks(START, clock_out, breaks)


def test_latest_timestamp_considers_open_break_start():
    breaks = [
        BreakPeriod(start=START + timedelta(hours=1), end=START + timedelta(hours=2)),
        BreakPeriod(start=START + timedelta(hours=4)),
    ]
    assert latest_timestamp(START, None, breaks) == START + timedelta(hours=4)
    assert latest_timestamp(START, START + timedelta(hours=6), breaks[:1]) == START + timedelta(hours=6)


def test_snapshot_state_follows_breaks():
    snapshot = SessionSnapshot(
        entry_id="entry-1",
        user_id="user-1",
        event_id="event-1",
        clock_in_time=START,
        breaks=(BreakPeriod(start=START + timedelta(hours=2)),),
    )
    assert snapshot.state == SessionState.ON_BREAK
