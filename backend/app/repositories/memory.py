"""In-process store for local runs and tests.

Writes are staged on the unit of work and only reach the shared store on
commit. Seat locks are ``asyncio.Lock`` objects held until the unit of work
exits, which gives the same check-then-write isolation as the SQL row lock.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time

from backend.app.core.clock import local_now
from backend.app.domain.audit import AuditEvent
from backend.app.domain.models import (
    Book,
    Loan,
    LoanState,
    Notification,
    NotificationKind,
    Reservation,
    ReservationState,
    Room,
    Seat,
    SeatState,
    User,
)
from backend.app.repositories.base import (
    AbstractUnitOfWork,
    AuditRepo,
    LoanRepo,
    NotificationRepo,
    ReservationRepo,
    RoomRepo,
    SeatRepo,
    UserRepo,
)


@dataclass
class InMemoryStore:
    users: dict[str, User] = field(default_factory=dict)
    rooms: dict[str, Room] = field(default_factory=dict)
    seats: dict[str, Seat] = field(default_factory=dict)
    reservations: dict[str, Reservation] = field(default_factory=dict)
    books: dict[str, Book] = field(default_factory=dict)
    loans: dict[str, Loan] = field(default_factory=dict)
    notifications: list[Notification] = field(default_factory=list)
    audit: list[AuditEvent] = field(default_factory=list)
    seat_locks: defaultdict[str, asyncio.Lock] = field(default_factory=lambda: defaultdict(asyncio.Lock))


class _Staged:
    """Pending writes of one unit of work."""

    def __init__(self) -> None:
        self.seats: dict[str, Seat] = {}
        self.reservations: dict[str, Reservation] = {}
        self.notifications: list[Notification] = []
        self.audit: list[AuditEvent] = []

    def clear(self) -> None:
        self.seats.clear()
        self.reservations.clear()
        self.notifications.clear()
        self.audit.clear()


class MemoryUserRepo(UserRepo):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get(self, user_id: str) -> User | None:
        return self.store.users.get(user_id)


class MemoryRoomRepo(RoomRepo):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get(self, room_id: str) -> Room | None:
        return self.store.rooms.get(room_id)


class MemorySeatRepo(SeatRepo):
    def __init__(self, store: InMemoryStore, staged: _Staged, held: set[str]):
        self.store = store
        self.staged = staged
        self.held = held

    async def get(self, seat_id: str) -> Seat | None:
        return self.staged.seats.get(seat_id) or self.store.seats.get(seat_id)

    async def lock(self, seat_id: str) -> Seat | None:
        if seat_id not in self.held:
            await self.store.seat_locks[seat_id].acquire()
            self.held.add(seat_id)
        return await self.get(seat_id)

    async def set_state(self, seat_id: str, state: SeatState) -> None:
        seat = await self.get(seat_id)
        if seat is not None:
            self.staged.seats[seat_id] = replace(seat, state=state)

    async def list_by_room(self, room_id: str) -> Sequence[Seat]:
        seats = [await self.get(seat_id) for seat_id, seat in self.store.seats.items() if seat.room_id == room_id]
        return sorted(seats, key=lambda seat: seat.label)


class MemoryReservationRepo(ReservationRepo):
    def __init__(self, store: InMemoryStore, staged: _Staged):
        self.store = store
        self.staged = staged

    def _all(self) -> list[Reservation]:
        merged = {**self.store.reservations, **self.staged.reservations}
        return sorted(merged.values(), key=lambda r: (r.date, r.start_time))

    async def get(self, reservation_id: str) -> Reservation | None:
        return self.staged.reservations.get(reservation_id) or self.store.reservations.get(reservation_id)

    async def add(self, reservation: Reservation) -> None:
        if reservation.created_at is None:
            reservation = replace(reservation, created_at=local_now())
        self.staged.reservations[reservation.id] = reservation

    async def update(self, reservation: Reservation) -> None:
        self.staged.reservations[reservation.id] = reservation

    async def list_active(self, seat_id: str, day: date) -> Sequence[Reservation]:
        # yield to the loop like a real round trip would
        await asyncio.sleep(0)
        return [r for r in self._all() if r.seat_id == seat_id and r.date == day and r.is_active]

    async def list_for_user(self, user_id: str) -> Sequence[Reservation]:
        return [r for r in reversed(self._all()) if r.user_id == user_id]

    async def list_for_seat(self, seat_id: str, day: date) -> Sequence[Reservation]:
        return [r for r in self._all() if r.seat_id == seat_id and r.date == day]

    async def list_confirmed_starting_between(self, day: date, earliest: time, latest: time) -> Sequence[Reservation]:
        return [
            r
            for r in self._all()
            if r.state == ReservationState.CONFIRMED and r.date == day and earliest <= r.start_time <= latest
        ]

    async def list_confirmed_started_before(self, cutoff: datetime) -> Sequence[Reservation]:
        return [r for r in self._all() if r.state == ReservationState.CONFIRMED and r.starts_at < cutoff]


class MemoryLoanRepo(LoanRepo):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def list_due_on(self, due_on: date, state: LoanState = LoanState.ACTIVE) -> Sequence[Loan]:
        loans = [loan for loan in self.store.loans.values() if loan.state == state and loan.due_on == due_on]
        result = []
        for loan in sorted(loans, key=lambda item: item.id):
            book = self.store.books.get(loan.book_id)
            result.append(replace(loan, book_title=book.title if book else loan.book_title))
        return result


class MemoryNotificationRepo(NotificationRepo):
    def __init__(self, store: InMemoryStore, staged: _Staged):
        self.store = store
        self.staged = staged

    async def add(self, notification: Notification) -> None:
        if notification.created_at is None:
            notification = replace(notification, created_at=local_now())
        self.staged.notifications.append(notification)

    async def exists_since(
        self,
        user_id: str,
        kind: NotificationKind,
        since: datetime,
        action_ref: str | None = None,
    ) -> bool:
        return any(
            n.user_id == user_id
            and n.kind == kind
            and n.created_at >= since
            and (action_ref is None or n.action_ref == action_ref)
            for n in [*self.store.notifications, *self.staged.notifications]
        )

    async def list_for_user(self, user_id: str) -> Sequence[Notification]:
        mine = [n for n in [*self.store.notifications, *self.staged.notifications] if n.user_id == user_id]
        return sorted(mine, key=lambda n: n.created_at, reverse=True)


class MemoryAuditRepo(AuditRepo):
    def __init__(self, store: InMemoryStore, staged: _Staged):
        self.store = store
        self.staged = staged

    async def add(self, event: AuditEvent) -> None:
        if event.created_at is None:
            event = replace(event, created_at=local_now())
        self.staged.audit.append(event)

    async def list_for_reservation(self, reservation_id: str) -> Sequence[AuditEvent]:
        return [e for e in [*self.store.audit, *self.staged.audit] if e.reservation_id == reservation_id]


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore):
        super().__init__()
        self.store = store
        self._staged = _Staged()
        self._held: set[str] = set()

    async def __aenter__(self) -> InMemoryUnitOfWork:
        self._staged = _Staged()
        self._held = set()
        self.users = MemoryUserRepo(self.store)
        self.rooms = MemoryRoomRepo(self.store)
        self.seats = MemorySeatRepo(self.store, self._staged, self._held)
        self.reservations = MemoryReservationRepo(self.store, self._staged)
        self.loans = MemoryLoanRepo(self.store)
        self.notifications = MemoryNotificationRepo(self.store, self._staged)
        self.audit = MemoryAuditRepo(self.store, self._staged)
        await super().__aenter__()
        return self

    async def __aexit__(self, *args):
        try:
            await super().__aexit__(*args)
        finally:
            for seat_id in self._held:
                self.store.seat_locks[seat_id].release()
            self._held.clear()

    async def _commit(self):
        self.store.seats.update(self._staged.seats)
        self.store.reservations.update(self._staged.reservations)
        self.store.notifications.extend(self._staged.notifications)
        self.store.audit.extend(self._staged.audit)
        self._staged.clear()

    async def rollback(self):
        self._staged.clear()
