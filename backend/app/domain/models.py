"""Domain records for seats, reservations and loans."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import StrEnum
from uuid import uuid4


def new_id() -> str:
    return str(uuid4())


class SeatState(StrEnum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"


class ReservationState(StrEnum):
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    # No engine transition produces EXPIRED; it is set by administrative tooling.
    EXPIRED = "EXPIRED"


ACTIVE_STATES = frozenset({ReservationState.CONFIRMED, ReservationState.CHECKED_IN})


class LoanState(StrEnum):
    ACTIVE = "ACTIVE"
    RENEWED = "RENEWED"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"


class UserRole(StrEnum):
    STUDENT = "STUDENT"
    LIBRARIAN = "LIBRARIAN"
    ADMIN = "ADMIN"


class NotificationKind(StrEnum):
    BOOKING = "PRENOTAZIONE"
    CHECK_IN_REMINDER = "CHECK_IN_REMINDER"
    LOAN_EXPIRY = "SCADENZA_PRESTITO"
    SYSTEM = "SISTEMA"
    ALERT = "ALERT"


@dataclass(frozen=True)
class User:
    id: str
    display_name: str
    role: UserRole = UserRole.STUDENT


@dataclass(frozen=True)
class Room:
    id: str
    name: str
    opening_time: time
    closing_time: time
    capacity: int
    floor: int = 0


@dataclass(frozen=True)
class Seat:
    id: str
    room_id: str
    label: str
    state: SeatState = SeatState.AVAILABLE
    has_power_outlet: bool = False
    is_window: bool = False
    is_accessible: bool = False


@dataclass(frozen=True)
class Reservation:
    id: str
    user_id: str
    seat_id: str
    date: date
    start_time: time
    end_time: time
    state: ReservationState = ReservationState.CONFIRMED
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None
    commuter_margin: bool = False
    commuter_margin_minutes: int = 30
    notes: str | None = None
    created_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)


@dataclass(frozen=True)
class Book:
    id: str
    title: str


@dataclass(frozen=True)
class Loan:
    id: str
    user_id: str
    book_id: str
    borrowed_on: date
    due_on: date
    state: LoanState = LoanState.ACTIVE
    returned_on: date | None = None
    book_title: str = ""


@dataclass(frozen=True)
class Notification:
    user_id: str
    kind: NotificationKind
    title: str
    message: str
    action_ref: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime | None = None


@dataclass(frozen=True)
class SeatUpdate:
    """Payload announced on the room's real-time channel after a seat changes state."""

    room_id: str
    seat_id: str
    new_state: SeatState
    seat_label: str
