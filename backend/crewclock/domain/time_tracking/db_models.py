from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON, TypeDecorator

from crewclock.domain.time_tracking.state import (
    BreakPeriod,
    SessionSnapshot,
    SessionState,
    derive_state,
    load_breaks,
    validate_breaks,
)
from crewclock.infra.db import Base


class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class TimeEntry(Base):
    """One clock-in to clock-out session of a user on an event.

    Clocked-in and on-break status are derived from ``clock_out_time`` and the
    ``breaks`` list, never stored separately.
    """

    __tablename__ = "time_entries"

    entry_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    clock_in_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    clock_out_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    breaks: Mapped[list[dict[str, str | None]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    exceeded_max_duration: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa.false(), default=False
    )
    force_closed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa.false(), default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", "clock_in_time", name="uq_time_entries_user_event_start"),
        Index(
            "uq_time_entries_active_user",
            "user_id",
            unique=True,
            postgresql_where=sa.text("clock_out_time IS NULL"),
            sqlite_where=sa.text("clock_out_time IS NULL"),
        ),
        Index("ix_time_entries_user_clock_in", "user_id", "clock_in_time"),
        Index("ix_time_entries_event_user", "event_id", "user_id"),
    )

    @property
    def break_periods(self) -> list[BreakPeriod]:
        """Stored breaks, checked against the session's clock-in and clock-out.

        Raises ``ValueError`` for a corrupt record instead of deriving a state
        from it.
        """
        breaks = load_breaks(self.breaks)
        validate_breaks(self.clock_in_time, self.clock_out_time, breaks)
        return breaks

    def check_consistency(self) -> None:
        validate_breaks(self.clock_in_time, self.clock_out_time, load_breaks(self.breaks))

    @property
    def state(self) -> SessionState:
        return derive_state(self.clock_out_time, self.break_periods)

    @property
    def is_clocked_in(self) -> bool:
        return self.clock_out_time is None

    @property
    def is_on_break(self) -> bool:
        return self.state == SessionState.ON_BREAK

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            entry_id=self.entry_id,
            user_id=self.user_id,
            event_id=self.event_id,
            clock_in_time=self.clock_in_time,
            clock_out_time=self.clock_out_time,
            breaks=tuple(self.break_periods),
            exceeded_max_duration=bool(self.exceeded_max_duration),
        )

    def __repr__(self) -> str:
        return f"TimeEntry({self.entry_id}, user={self.user_id}, state={self.state.value})"
