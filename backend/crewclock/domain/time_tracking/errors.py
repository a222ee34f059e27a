"""Typed, user-facing time-tracking failures.

Every error is recoverable: the HTTP layer renders it as problem details and the
user retries with a new, deliberate action.
"""

from dataclasses import dataclass

from crewclock.domain.errors import DomainError
from crewclock.domain.time_tracking.billing import BillableFlag

PROBLEM_BASE = "https://example.com/problems/time-tracking"


@dataclass
class TimeTrackingError(DomainError):
    detail: str = "Time tracking action rejected."
    title: str = "Time Tracking Error"
    type: str = f"{PROBLEM_BASE}/error"
    status: int = 409
    code: str = "TimeTrackingError"


@dataclass
class AlreadyClockedIn(TimeTrackingError):
    detail: str = "User is already clocked in."
    title: str = "Already Clocked In"
    type: str = f"{PROBLEM_BASE}/already-clocked-in"
    code: str = "AlreadyClockedIn"


@dataclass
class NotClockedIn(TimeTrackingError):
    detail: str = "User is not clocked in."
    title: str = "Not Clocked In"
    type: str = f"{PROBLEM_BASE}/not-clocked-in"
    code: str = "NotClockedIn"


@dataclass
class AlreadyOnBreak(TimeTrackingError):
    detail: str = "User is already on a break."
    title: str = "Already On Break"
    type: str = f"{PROBLEM_BASE}/already-on-break"
    code: str = "AlreadyOnBreak"


@dataclass
class NotOnBreak(TimeTrackingError):
    detail: str = "User is not on a break."
    title: str = "Not On Break"
    type: str = f"{PROBLEM_BASE}/not-on-break"
    code: str = "NotOnBreak"


@dataclass
class TimestampOutOfOrder(TimeTrackingError):
    detail: str = "Clock reading precedes the latest recorded time for this session."
    title: str = "Timestamp Out Of Order"
    type: str = f"{PROBLEM_BASE}/timestamp-out-of-order"
    code: str = "TimestampOutOfOrder"


@dataclass
class InvalidRate(TimeTrackingError):
    detail: str = "Hourly rate must be positive."
    title: str = "Invalid Rate"
    type: str = f"{PROBLEM_BASE}/invalid-rate"
    status: int = 422
    code: str = "InvalidRate"


@dataclass
class StaleSessionExceeded24h(TimeTrackingError):
    """Problem document for a session closed past the maximum duration.

    The state machine never raises it; clock-out still succeeds and the entry
    carries the ``BillableFlag.STALE_SESSION`` flag instead. It keeps the
    problem metadata so that a reviewer who wants the condition as an error
    (for example when rejecting a flagged line) gets the same type URI and code
    as every other time-tracking failure. The code is the flag name.
    """

    detail: str = "Session exceeded the maximum duration and needs review."
    title: str = "Stale Session"
    type: str = f"{PROBLEM_BASE}/stale-session"
    code: str = BillableFlag.STALE_SESSION.value
