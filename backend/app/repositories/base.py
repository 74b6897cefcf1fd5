"""Repository contracts and the unit of work that scopes them to one transaction."""

from __future__ import annotations

import abc
from collections.abc import Awaitable, Callable, Sequence
from datetime import date, datetime, time

from backend.app.domain.audit import AuditEvent
from backend.app.domain.models import (
    Loan,
    LoanState,
    Notification,
    NotificationKind,
    Reservation,
    Room,
    Seat,
    SeatState,
    User,
)


class UserRepo(abc.ABC):
    @abc.abstractmethod
    async def get(self, user_id: str) -> User | None: ...


class RoomRepo(abc.ABC):
    @abc.abstractmethod
    async def get(self, room_id: str) -> Room | None: ...


class SeatRepo(abc.ABC):
    @abc.abstractmethod
    async def get(self, seat_id: str) -> Seat | None: ...

    @abc.abstractmethod
    async def lock(self, seat_id: str) -> Seat | None:
        """Read the seat and hold an exclusive lock on it until the transaction ends."""

    @abc.abstractmethod
    async def set_state(self, seat_id: str, state: SeatState) -> None: ...

    @abc.abstractmethod
    async def list_by_room(self, room_id: str) -> Sequence[Seat]: ...


class ReservationRepo(abc.ABC):
    @abc.abstractmethod
    async def get(self, reservation_id: str) -> Reservation | None: ...

    @abc.abstractmethod
    async def add(self, reservation: Reservation) -> None: ...

    @abc.abstractmethod
    async def update(self, reservation: Reservation) -> None: ...

    @abc.abstractmethod
    async def list_active(self, seat_id: str, day: date) -> Sequence[Reservation]:
        """CONFIRMED and CHECKED_IN reservations of one seat on one date."""

    @abc.abstractmethod
    async def list_for_user(self, user_id: str) -> Sequence[Reservation]: ...

    @abc.abstractmethod
    async def list_for_seat(self, seat_id: str, day: date) -> Sequence[Reservation]: ...

    @abc.abstractmethod
    async def list_confirmed_starting_between(self, day: date, earliest: time, latest: time) -> Sequence[Reservation]:
        """CONFIRMED reservations on ``day`` whose start lies in ``[earliest, latest]``."""

    @abc.abstractmethod
    async def list_confirmed_started_before(self, cutoff: datetime) -> Sequence[Reservation]:
        """CONFIRMED reservations whose date and start time lie strictly before ``cutoff``."""


class LoanRepo(abc.ABC):
    @abc.abstractmethod
    async def list_due_on(self, due_on: date, state: LoanState = LoanState.ACTIVE) -> Sequence[Loan]: ...


class NotificationRepo(abc.ABC):
    @abc.abstractmethod
    async def add(self, notification: Notification) -> None: ...

    @abc.abstractmethod
    async def exists_since(
        self,
        user_id: str,
        kind: NotificationKind,
        since: datetime,
        action_ref: str | None = None,
    ) -> bool: ...

    @abc.abstractmethod
    async def list_for_user(self, user_id: str) -> Sequence[Notification]: ...


class AuditRepo(abc.ABC):
    @abc.abstractmethod
    async def add(self, event: AuditEvent) -> None: ...

    @abc.abstractmethod
    async def list_for_reservation(self, reservation_id: str) -> Sequence[AuditEvent]: ...


class AbstractUnitOfWork(abc.ABC):
    users: UserRepo
    rooms: RoomRepo
    seats: SeatRepo
    reservations: ReservationRepo
    loans: LoanRepo
    notifications: NotificationRepo
    audit: AuditRepo

    def __init__(self) -> None:
        self._after_commit: list[Callable[[], Awaitable[None]]] = []

    async def __aenter__(self) -> AbstractUnitOfWork:
        self._after_commit = []
        return self

    async def __aexit__(self, *args):
        await self.rollback()

    def after_commit(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Run ``callback`` once the transaction has committed; dropped on rollback."""
        self._after_commit.append(callback)

    async def commit(self):
        await self._commit()
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            await callback()

    async def lock_seats(self, *seat_ids: str) -> dict[str, Seat | None]:
        """Lock several seats in a stable order so concurrent callers cannot deadlock."""
        return {seat_id: await self.seats.lock(seat_id) for seat_id in sorted(set(seat_ids))}

    @abc.abstractmethod
    async def _commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    async def rollback(self):
        raise NotImplementedError


UnitOfWorkFactory = Callable[[], AbstractUnitOfWork]
