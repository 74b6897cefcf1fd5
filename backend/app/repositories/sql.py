"""SQLAlchemy implementation of the repository contracts."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, time

from sqlalchemy import and_, exists, insert, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.clock import local_now
from backend.app.core.errors import ReservationError, SlotTaken, StorageError
from backend.app.core.logger_config import custom_logger
from backend.app.db import schema
from backend.app.domain.audit import AuditEvent, AuditKind
from backend.app.domain.models import (
    ACTIVE_STATES,
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
    UserRole,
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


SLOT_GUARD_CONSTRAINT = "reservation_no_overlap"
_ACTIVE = [state.value for state in ACTIVE_STATES]


def _to_reservation(row) -> Reservation:
    return Reservation(
        id=row["id"],
        user_id=row["user_id"],
        seat_id=row["seat_id"],
        date=row["date"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        state=ReservationState(row["state"]),
        check_in_at=row["check_in_at"],
        check_out_at=row["check_out_at"],
        commuter_margin=row["commuter_margin"],
        commuter_margin_minutes=row["commuter_margin_minutes"],
        notes=row["notes"],
        created_at=row["created_at"],
    )


def _to_seat(row) -> Seat:
    return Seat(
        id=row["id"],
        room_id=row["room_id"],
        label=row["label"],
        state=SeatState(row["state"]),
        has_power_outlet=row["has_power_outlet"],
        is_window=row["is_window"],
        is_accessible=row["is_accessible"],
    )


def _to_notification(row) -> Notification:
    return Notification(
        id=row["id"],
        user_id=row["user_id"],
        kind=NotificationKind(row["kind"]),
        title=row["title"],
        message=row["message"],
        action_ref=row["action_ref"],
        created_at=row["created_at"],
    )


class SqlUserRepo(UserRepo):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> User | None:
        result = await self.session.execute(select(schema.app_user).where(schema.app_user.c.id == user_id))
        row = result.mappings().one_or_none()
        if row is None:
            return None
        return User(id=row["id"], display_name=row["display_name"], role=UserRole(row["role"]))


class SqlRoomRepo(RoomRepo):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, room_id: str) -> Room | None:
        result = await self.session.execute(select(schema.room).where(schema.room.c.id == room_id))
        row = result.mappings().one_or_none()
        if row is None:
            return None
        return Room(
            id=row["id"],
            name=row["name"],
            floor=row["floor"],
            opening_time=row["opening_time"],
            closing_time=row["closing_time"],
            capacity=row["capacity"],
        )


class SqlSeatRepo(SeatRepo):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, seat_id: str) -> Seat | None:
        result = await self.session.execute(select(schema.seat).where(schema.seat.c.id == seat_id))
        row = result.mappings().one_or_none()
        return _to_seat(row) if row is not None else None

    async def lock(self, seat_id: str) -> Seat | None:
        # Row lock on the seat serialises every check-then-write on its reservations.
        # SQLite ignores FOR UPDATE and needs BEGIN IMMEDIATE transactions for the same effect.
        result = await self.session.execute(
            select(schema.seat).where(schema.seat.c.id == seat_id).with_for_update()
        )
        row = result.mappings().one_or_none()
        return _to_seat(row) if row is not None else None

    async def set_state(self, seat_id: str, state: SeatState) -> None:
        await self.session.execute(
            update(schema.seat).where(schema.seat.c.id == seat_id).values(state=state.value)
        )

    async def list_by_room(self, room_id: str) -> Sequence[Seat]:
        result = await self.session.execute(
            select(schema.seat).where(schema.seat.c.room_id == room_id).order_by(schema.seat.c.label)
        )
        return [_to_seat(row) for row in result.mappings()]


class SqlReservationRepo(ReservationRepo):
    def __init__(self, session: AsyncSession):
        self.session = session
        self.table = schema.reservation

    def _values(self, reservation: Reservation) -> dict:
        return {
            "id": reservation.id,
            "user_id": reservation.user_id,
            "seat_id": reservation.seat_id,
            "date": reservation.date,
            "start_time": reservation.start_time,
            "end_time": reservation.end_time,
            "state": reservation.state.value,
            "check_in_at": reservation.check_in_at,
            "check_out_at": reservation.check_out_at,
            "commuter_margin": reservation.commuter_margin,
            "commuter_margin_minutes": reservation.commuter_margin_minutes,
            "notes": reservation.notes,
            "created_at": reservation.created_at or local_now(),
        }

    async def _many(self, *conditions, order_by=None) -> list[Reservation]:
        stmt = select(self.table).where(*conditions)
        stmt = stmt.order_by(*(order_by or (self.table.c.date, self.table.c.start_time)))
        result = await self.session.execute(stmt)
        return [_to_reservation(row) for row in result.mappings()]

    async def get(self, reservation_id: str) -> Reservation | None:
        result = await self.session.execute(select(self.table).where(self.table.c.id == reservation_id))
        row = result.mappings().one_or_none()
        return _to_reservation(row) if row is not None else None

    async def add(self, reservation: Reservation) -> None:
        await self.session.execute(insert(self.table).values(**self._values(reservation)))

    async def update(self, reservation: Reservation) -> None:
        values = self._values(reservation)
        values.pop("id")
        values.pop("created_at")
        await self.session.execute(update(self.table).where(self.table.c.id == reservation.id).values(**values))

    async def list_active(self, seat_id: str, day: date) -> Sequence[Reservation]:
        return await self._many(
            self.table.c.seat_id == seat_id,
            self.table.c.date == day,
            self.table.c.state.in_(_ACTIVE),
            order_by=(self.table.c.start_time,),
        )

    async def list_for_user(self, user_id: str) -> Sequence[Reservation]:
        return await self._many(
            self.table.c.user_id == user_id,
            order_by=(self.table.c.date.desc(), self.table.c.start_time),
        )

    async def list_for_seat(self, seat_id: str, day: date) -> Sequence[Reservation]:
        return await self._many(
            self.table.c.seat_id == seat_id,
            self.table.c.date == day,
            order_by=(self.table.c.start_time,),
        )

    async def list_confirmed_starting_between(self, day: date, earliest: time, latest: time) -> Sequence[Reservation]:
        return await self._many(
            self.table.c.state == ReservationState.CONFIRMED.value,
            self.table.c.date == day,
            self.table.c.start_time >= earliest,
            self.table.c.start_time <= latest,
        )

    async def list_confirmed_started_before(self, cutoff: datetime) -> Sequence[Reservation]:
        return await self._many(
            self.table.c.state == ReservationState.CONFIRMED.value,
            or_(
                self.table.c.date < cutoff.date(),
                and_(self.table.c.date == cutoff.date(), self.table.c.start_time < cutoff.time()),
            ),
        )


class SqlLoanRepo(LoanRepo):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_due_on(self, due_on: date, state: LoanState = LoanState.ACTIVE) -> Sequence[Loan]:
        loan, book = schema.loan, schema.book
        result = await self.session.execute(
            select(loan, book.c.title.label("book_title"))
            .join(book, book.c.id == loan.c.book_id)
            .where(loan.c.state == state.value, loan.c.due_on == due_on)
            .order_by(loan.c.id)
        )
        return [
            Loan(
                id=row["id"],
                user_id=row["user_id"],
                book_id=row["book_id"],
                borrowed_on=row["borrowed_on"],
                due_on=row["due_on"],
                returned_on=row["returned_on"],
                state=LoanState(row["state"]),
                book_title=row["book_title"],
            )
            for row in result.mappings()
        ]


class SqlNotificationRepo(NotificationRepo):
    def __init__(self, session: AsyncSession):
        self.session = session
        self.table = schema.notification

    async def add(self, notification: Notification) -> None:
        await self.session.execute(
            insert(self.table).values(
                id=notification.id,
                user_id=notification.user_id,
                kind=notification.kind.value,
                title=notification.title,
                message=notification.message,
                action_ref=notification.action_ref,
                created_at=notification.created_at or local_now(),
            )
        )

    async def exists_since(
        self,
        user_id: str,
        kind: NotificationKind,
        since: datetime,
        action_ref: str | None = None,
    ) -> bool:
        conditions = [
            self.table.c.user_id == user_id,
            self.table.c.kind == kind.value,
            self.table.c.created_at >= since,
        ]
        if action_ref is not None:
            conditions.append(self.table.c.action_ref == action_ref)
        result = await self.session.execute(select(exists().where(*conditions)))
        return bool(result.scalar())

    async def list_for_user(self, user_id: str) -> Sequence[Notification]:
        result = await self.session.execute(
            select(self.table).where(self.table.c.user_id == user_id).order_by(self.table.c.created_at.desc())
        )
        return [_to_notification(row) for row in result.mappings()]


class SqlAuditRepo(AuditRepo):
    def __init__(self, session: AsyncSession):
        self.session = session
        self.table = schema.event_log

    async def add(self, event: AuditEvent) -> None:
        await self.session.execute(
            insert(self.table).values(
                id=event.id,
                created_at=event.created_at or local_now(),
                kind=event.kind.value,
                user_id=event.user_id,
                reservation_id=event.reservation_id,
                description=event.description,
                details=event.details_json(),
            )
        )

    async def list_for_reservation(self, reservation_id: str) -> Sequence[AuditEvent]:
        result = await self.session.execute(
            select(self.table)
            .where(self.table.c.reservation_id == reservation_id)
            .order_by(self.table.c.created_at)
        )
        return [
            AuditEvent(
                id=row["id"],
                created_at=row["created_at"],
                kind=AuditKind(row["kind"]),
                user_id=row["user_id"],
                reservation_id=row["reservation_id"],
                description=row["description"],
                details=AuditEvent.details_from_json(row["details"]),
            )
            for row in result.mappings()
        ]


def translate_db_error(exc: SQLAlchemyError) -> ReservationError:
    """Map driver errors onto domain errors: slot-guard violations are conflicts, the rest is storage."""
    message = str(getattr(exc, "orig", exc))
    if isinstance(exc, IntegrityError) and SLOT_GUARD_CONSTRAINT in message:
        return SlotTaken()
    if isinstance(exc, DBAPIError) and "conflicting key value violates exclusion constraint" in message:
        return SlotTaken()
    return StorageError()


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        super().__init__()
        self.session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> SqlAlchemyUnitOfWork:
        self.session = self.session_factory()
        self.users = SqlUserRepo(self.session)
        self.rooms = SqlRoomRepo(self.session)
        self.seats = SqlSeatRepo(self.session)
        self.reservations = SqlReservationRepo(self.session)
        self.loans = SqlLoanRepo(self.session)
        self.notifications = SqlNotificationRepo(self.session)
        self.audit = SqlAuditRepo(self.session)
        await super().__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            await self.session.close()
        if isinstance(exc, SQLAlchemyError):
            custom_logger.error(f"Storage failure inside unit of work: {exc}")
            raise translate_db_error(exc) from exc

    async def _commit(self):
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            custom_logger.error(f"Commit failed: {exc}")
            raise translate_db_error(exc) from exc

    async def rollback(self):
        await self.session.rollback()
