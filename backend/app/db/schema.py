from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Time,
)


metadata = MetaData()


app_user = Table(
    "app_user",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("display_name", String(200), nullable=False),
    Column("role", String(20), nullable=False, server_default="STUDENT"),
)

room = Table(
    "room",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("floor", Integer, nullable=False, server_default="0"),
    Column("opening_time", Time, nullable=False),
    Column("closing_time", Time, nullable=False),
    Column("capacity", Integer, nullable=False),
)

seat = Table(
    "seat",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("room_id", String(36), ForeignKey("room.id"), nullable=False, index=True),
    Column("label", String(50), nullable=False),
    Column("has_power_outlet", Boolean, nullable=False, server_default="0"),
    Column("is_window", Boolean, nullable=False, server_default="0"),
    Column("is_accessible", Boolean, nullable=False, server_default="0"),
    Column("state", String(20), nullable=False, server_default="AVAILABLE"),
)

reservation = Table(
    "reservation",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("app_user.id"), nullable=False, index=True),
    Column("seat_id", String(36), ForeignKey("seat.id"), nullable=False),
    Column("date", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("state", String(20), nullable=False),
    Column("check_in_at", DateTime, nullable=True),
    Column("check_out_at", DateTime, nullable=True),
    Column("commuter_margin", Boolean, nullable=False, server_default="0"),
    Column("commuter_margin_minutes", Integer, nullable=False, server_default="30"),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Index("ix_reservation_seat_date_state", "seat_id", "date", "state"),
    Index("ix_reservation_state_date", "state", "date"),
)

book = Table(
    "book",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(500), nullable=False),
)

loan = Table(
    "loan",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("app_user.id"), nullable=False, index=True),
    Column("book_id", String(36), ForeignKey("book.id"), nullable=False),
    Column("borrowed_on", Date, nullable=False),
    Column("due_on", Date, nullable=False),
    Column("returned_on", Date, nullable=True),
    Column("state", String(20), nullable=False),
    Index("ix_loan_state_due_on", "state", "due_on"),
)

notification = Table(
    "notification",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("app_user.id"), nullable=False),
    Column("kind", String(40), nullable=False),
    Column("title", String(200), nullable=False),
    Column("message", Text, nullable=False),
    Column("action_ref", String(500), nullable=True),
    Column("created_at", DateTime, nullable=False),
    Index("ix_notification_user_kind_created", "user_id", "kind", "created_at"),
)

event_log = Table(
    "event_log",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("created_at", DateTime, nullable=False),
    Column("kind", String(40), nullable=False),
    Column("user_id", String(36), nullable=True),
    Column("reservation_id", String(36), nullable=True, index=True),
    Column("description", Text, nullable=False),
    Column("details", JSON, nullable=False),
)
