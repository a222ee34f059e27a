"""time entries table with active-session index

Revision ID: 0001_time_entries
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_time_entries"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        json_default = sa.text("'[]'::json")
    else:
        json_default = sa.text("'[]'")

    op.create_table(
        "time_entries",
        sa.Column("entry_id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("clock_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("breaks", sa.JSON(), nullable=False, server_default=json_default),
        sa.Column("exceeded_max_duration", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("force_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "user_id", "event_id", "clock_in_time", name="uq_time_entries_user_event_start"
        ),
    )
    op.create_index(
        "uq_time_entries_active_user",
        "time_entries",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("clock_out_time IS NULL"),
        sqlite_where=sa.text("clock_out_time IS NULL"),
    )
    op.create_index("ix_time_entries_user_clock_in", "time_entries", ["user_id", "clock_in_time"])
    op.create_index("ix_time_entries_event_user", "time_entries", ["event_id", "user_id"])


def downgrade() -> None:
    op.drop_index("ix_time_entries_event_user", table_name="time_entries")
    op.drop_index("ix_time_entries_user_clock_in", table_name="time_entries")
    op.drop_index("uq_time_entries_active_user", table_name="time_entries")
    op.drop_table("time_entries")
