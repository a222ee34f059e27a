from datetime import datetime

from crewclock.domain.time_tracking.state import utcnow
from crewclock.infra.db import get_db_session  # noqa: F401


def get_clock() -> datetime:
    """Current instant for clock actions; overridden in tests."""
    return utcnow()
