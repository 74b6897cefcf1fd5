"""seat reservation schema and overlap guard

Revision ID: 3b71c0d94a2e
Revises: 
Create Date: 2026-10-19 09:12:04.318211

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = '3b71c0d94a2e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist;")

    op.create_table(
        "app_user",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="STUDENT"),
    )
    op.create_table(
        "room",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("floor", sa.Integer, nullable=False, server_default="0"),
        sa.Column("opening_time", sa.Time, nullable=False),
        sa.Column("closing_time", sa.Time, nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False),
    )
    op.create_table(
        "seat",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("room_id", sa.String(36), sa.ForeignKey("room.id"), nullable=False),
        sa.Column("label", sa.String(50), nullable=False),
        sa.Column("has_power_outlet", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_window", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_accessible", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("state", sa.String(20), nullable=False, server_default="AVAILABLE"),
    )
    op.create_index("ix_seat_room_id", "seat", ["room_id"])

    op.create_table(
        "reservation",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("seat_id", sa.String(36), sa.ForeignKey("seat.id"), nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("start_time", sa.Time, nullable=False),
        sa.Column("end_time", sa.Time, nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column("check_in_at", sa.DateTime, nullable=True),
        sa.Column("check_out_at", sa.DateTime, nullable=True),
        sa.Column("commuter_margin", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("commuter_margin_minutes", sa.Integer, nullable=False, server_default="30"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.CheckConstraint("start_time < end_time", name="reservation_range_check"),
    )
    op.create_index("ix_reservation_user_id", "reservation", ["user_id"])
    op.create_index("ix_reservation_seat_date_state", "reservation", ["seat_id", "date", "state"])
    op.create_index("ix_reservation_state_date", "reservation", ["state", "date"])
    # two active reservations on one seat may touch but never overlap
    op.execute(
        """
        ALTER TABLE reservation
          ADD CONSTRAINT reservation_no_overlap
          EXCLUDE USING gist (
            seat_id WITH =,
            tsrange(date + start_time, date + end_time, '[)') WITH &&
          )
          WHERE (state IN ('CONFIRMED', 'CHECKED_IN'));
        """
    )

    op.create_table(
        "book",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(500), nullable=False),
    )
    op.create_table(
        "loan",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("book_id", sa.String(36), sa.ForeignKey("book.id"), nullable=False),
        sa.Column("borrowed_on", sa.Date, nullable=False),
        sa.Column("due_on", sa.Date, nullable=False),
        sa.Column("returned_on", sa.Date, nullable=True),
        sa.Column("state", sa.String(20), nullable=False),
    )
    op.create_index("ix_loan_user_id", "loan", ["user_id"])
    op.create_index("ix_loan_state_due_on", "loan", ["state", "due_on"])

    op.create_table(
        "notification",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("kind", sa.String(40), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("action_ref", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index(
        "ix_notification_user_kind_created", "notification", ["user_id", "kind", "created_at"]
    )

    op.create_table(
        "event_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("kind", sa.String(40), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("reservation_id", sa.String(36), nullable=True),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("details", sa.JSON, nullable=False),
    )
    op.create_index("ix_event_log_reservation_id", "event_log", ["reservation_id"])


def downgrade() -> None:
    op.drop_table("event_log")
    op.drop_table("notification")
    op.drop_table("loan")
    op.drop_table("book")
    op.execute("ALTER TABLE reservation DROP CONSTRAINT IF EXISTS reservation_no_overlap;")
    op.drop_table("reservation")
    op.drop_table("seat")
    op.drop_table("room")
    op.drop_table("app_user")
    op.execute("DROP EXTENSION IF EXISTS btree_gist;")
