"""Reservation service: booking, lifecycle transitions, extensions and reschedules.

Every mutating operation runs in one unit of work. The seat row is locked
before the free-slot check and stays locked until commit, so the check and
the write that claims the slot are indivisible for concurrent callers.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from typing import TypeVar

from backend.app.core.clock import Clock, local_now
from backend.app.core.config import Settings, settings
from backend.app.core.errors import (
    DurationExceeded,
    InvalidRange,
    InvalidTransition,
    NotFound,
    OutOfHours,
    ReservationError,
    SeatUnavailable,
    SlotTaken,
    StorageError,
)
from backend.app.core.logger_config import custom_logger
from backend.app.domain import audit
from backend.app.domain.models import (
    NotificationKind,
    Reservation,
    ReservationState,
    Room,
    Seat,
    SeatState,
    SeatUpdate,
    new_id,
)
from backend.app.domain.overlap import alternative_starts, free_blocks, is_slot_free, validate_range
from backend.app.domain.state_machine import ReservationStateMachine, TransitionResult, Trigger
from backend.app.repositories.base import AbstractUnitOfWork, UnitOfWorkFactory
from backend.app.services.events import EventSink


T = TypeVar("T")


@dataclass(frozen=True)
class BookingOptions:
    commuter_margin: bool = False
    commuter_margin_minutes: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class RescheduleChanges:
    seat_id: str | None = None
    date: date | None = None
    start_time: time | None = None
    end_time: time | None = None


@dataclass(frozen=True)
class ExtensionOption:
    start: time
    end: time
    free: bool
    total_hours: float


@dataclass(frozen=True)
class Availability:
    free: bool
    alternatives: list[time]


def _hours(start: time, end: time) -> float:
    delta = datetime.combine(date.min, end) - datetime.combine(date.min, start)
    return delta.total_seconds() / 3600


def _hhmm(moment: time) -> str:
    return moment.strftime("%H:%M")


class ReservationService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        sink: EventSink,
        clock: Clock = local_now,
        config: Settings = settings,
    ):
        self.uow_factory = uow_factory
        self.sink = sink
        self.clock = clock
        self.config = config
        self.state_machine = ReservationStateMachine(
            check_in_window=timedelta(minutes=config.CHECK_IN_WINDOW_MINUTES),
            no_show_grace=timedelta(minutes=config.NO_SHOW_GRACE_MINUTES),
        )
        self.max_duration = timedelta(hours=config.MAX_RESERVATION_HOURS)

    # ------------------------------------------------------------------ helpers

    async def _read(self, operation: Callable[[AbstractUnitOfWork], Awaitable[T]]) -> T:
        """Run a read-only operation, retrying once if the store fails."""
        try:
            async with self.uow_factory() as uow:
                return await operation(uow)
        except StorageError:
            custom_logger.warning("Storage failure on read, retrying once")
        async with self.uow_factory() as uow:
            return await operation(uow)

    async def _room_of(self, uow: AbstractUnitOfWork, seat: Seat) -> Room:
        room = await uow.rooms.get(seat.room_id)
        if room is None:
            raise NotFound(f"Room {seat.room_id} not found")
        return room

    @staticmethod
    def _check_hours(room: Room, start: time, end: time) -> None:
        if start < room.opening_time or end > room.closing_time:
            raise OutOfHours(
                f"{room.name} is open from {_hhmm(room.opening_time)} to {_hhmm(room.closing_time)}"
            )

    def _check_duration(self, day: date, start: time, end: time) -> None:
        if datetime.combine(day, end) - datetime.combine(day, start) > self.max_duration:
            raise DurationExceeded(
                f"A reservation cannot last more than {self.config.MAX_RESERVATION_HOURS} hours"
            )

    async def _alternatives(
        self, uow: AbstractUnitOfWork, room: Room, seat_id: str, day: date, start: time, end: time
    ) -> list[time]:
        return await alternative_starts(
            uow,
            seat_id,
            day,
            start,
            end,
            closing=room.closing_time,
            step=timedelta(minutes=self.config.ALTERNATIVE_STEP_MINUTES),
            max_results=self.config.MAX_ALTERNATIVES,
            max_probes=self.config.MAX_ALTERNATIVE_PROBES,
        )

    async def _load_locked(self, uow: AbstractUnitOfWork, reservation_id: str) -> tuple[Reservation, Seat]:
        reservation = await uow.reservations.get(reservation_id)
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found")
        seat = await uow.seats.lock(reservation.seat_id)
        if seat is None:
            raise NotFound(f"Seat {reservation.seat_id} not found")
        # re-read under the seat lock, a concurrent caller may have moved it on
        reservation = await uow.reservations.get(reservation_id)
        return reservation, seat

    async def _checked_in_elsewhere(self, uow: AbstractUnitOfWork, seat: Seat, reservation: Reservation) -> bool:
        others = await uow.reservations.list_active(seat.id, reservation.date)
        return any(r.id != reservation.id and r.state == ReservationState.CHECKED_IN for r in others)

    async def _derived_seat_state(
        self, uow: AbstractUnitOfWork, seat: Seat, reservation: Reservation, target: SeatState
    ) -> SeatState | None:
        """Seat state after ``reservation`` moves, or None when the seat must stay as is."""
        if seat.state == SeatState.MAINTENANCE:
            return None
        if target == SeatState.AVAILABLE and await self._checked_in_elsewhere(uow, seat, reservation):
            return None
        return target if seat.state != target else None

    async def _apply(
        self,
        uow: AbstractUnitOfWork,
        reservation: Reservation,
        seat: Seat,
        trigger: Trigger,
        *,
        operator_override: bool = False,
    ) -> TransitionResult:
        result = self.state_machine.apply(reservation, trigger, self.clock(), operator_override=operator_override)
        await uow.reservations.update(result.reservation)
        if result.seat_state is not None:
            new_state = await self._derived_seat_state(uow, seat, result.reservation, result.seat_state)
            if new_state is not None:
                await uow.seats.set_state(seat.id, new_state)
                self.sink.seat_changed(
                    uow, SeatUpdate(room_id=seat.room_id, seat_id=seat.id, new_state=new_state, seat_label=seat.label)
                )
        return result

    # -------------------------------------------------------------------- reads

    async def get(self, reservation_id: str) -> Reservation:
        async def _get(uow: AbstractUnitOfWork) -> Reservation:
            reservation = await uow.reservations.get(reservation_id)
            if reservation is None:
                raise NotFound(f"Reservation {reservation_id} not found")
            return reservation

        return await self._read(_get)

    async def list_for_user(self, user_id: str) -> Sequence[Reservation]:
        return await self._read(lambda uow: uow.reservations.list_for_user(user_id))

    async def list_for_seat(self, seat_id: str, day: date) -> Sequence[Reservation]:
        return await self._read(lambda uow: uow.reservations.list_for_seat(seat_id, day))

    async def history(self, reservation_id: str) -> Sequence[audit.AuditEvent]:
        return await self._read(lambda uow: uow.audit.list_for_reservation(reservation_id))

    async def check_availability(self, seat_id: str, day: date, start: time, end: time) -> Availability:
        validate_range(start, end)

        async def _check(uow: AbstractUnitOfWork) -> Availability:
            seat = await uow.seats.get(seat_id)
            if seat is None:
                raise NotFound(f"Seat {seat_id} not found")
            room = await self._room_of(uow, seat)
            self._check_hours(room, start, end)
            if seat.state != SeatState.MAINTENANCE and await is_slot_free(uow, seat_id, day, start, end):
                return Availability(free=True, alternatives=[])
            return Availability(free=False, alternatives=await self._alternatives(uow, room, seat_id, day, start, end))

        return await self._read(_check)

    async def extension_options(self, reservation_id: str) -> list[ExtensionOption]:
        """Fixed-size blocks after the current end, up to closing time and the maximum duration."""

        async def _options(uow: AbstractUnitOfWork) -> list[ExtensionOption]:
            reservation = await uow.reservations.get(reservation_id)
            if reservation is None:
                raise NotFound(f"Reservation {reservation_id} not found")
            if not reservation.is_active:
                raise InvalidTransition("Only active reservations can be extended")
            seat = await uow.seats.get(reservation.seat_id)
            room = await self._room_of(uow, seat)

            until = room.closing_time
            cap = reservation.starts_at + self.max_duration
            if cap.date() == reservation.date and cap.time() < until:
                until = cap.time()

            blocks = await free_blocks(
                uow,
                reservation.seat_id,
                reservation.date,
                reservation.end_time,
                until,
                timedelta(minutes=self.config.EXTENSION_BLOCK_MINUTES),
                exclude_reservation_id=reservation.id,
            )
            return [
                ExtensionOption(
                    start=block.start,
                    end=block.end,
                    free=block.free,
                    total_hours=_hours(reservation.start_time, block.end),
                )
                for block in blocks
            ]

        return await self._read(_options)

    # ---------------------------------------------------------------- mutations

    async def create(
        self,
        user_id: str,
        seat_id: str,
        day: date,
        start: time,
        end: time,
        options: BookingOptions | None = None,
    ) -> Reservation:
        validate_range(start, end)
        options = options or BookingOptions()

        async with self.uow_factory() as uow:
            if await uow.users.get(user_id) is None:
                raise NotFound(f"User {user_id} not found")
            seat = await uow.seats.lock(seat_id)
            if seat is None:
                raise NotFound(f"Seat {seat_id} not found")
            if seat.state == SeatState.MAINTENANCE:
                raise SeatUnavailable(f"Seat {seat.label} is under maintenance")
            room = await self._room_of(uow, seat)
            self._check_hours(room, start, end)

            if not await is_slot_free(uow, seat_id, day, start, end):
                alternatives = await self._alternatives(uow, room, seat_id, day, start, end)
                custom_logger.info(f"Slot taken: seat={seat_id} date={day} {_hhmm(start)}-{_hhmm(end)}")
                raise SlotTaken(
                    "The seat is already booked for this time",
                    alternatives=[_hhmm(moment) for moment in alternatives],
                )

            reservation = Reservation(
                id=new_id(),
                user_id=user_id,
                seat_id=seat_id,
                date=day,
                start_time=start,
                end_time=end,
                state=ReservationState.CONFIRMED,
                commuter_margin=options.commuter_margin,
                commuter_margin_minutes=(
                    options.commuter_margin_minutes
                    if options.commuter_margin_minutes is not None
                    else self.config.DEFAULT_COMMUTER_MARGIN_MINUTES
                ),
                notes=options.notes,
                created_at=self.clock(),
            )
            await uow.reservations.add(reservation)
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.RESERVATION_CREATED,
                description=f"Reservation created for seat {seat.label}",
                details=audit.ReservationCreatedDetails(
                    seat_id=seat_id,
                    on_date=day,
                    start_time=start,
                    end_time=end,
                    commuter_margin=options.commuter_margin,
                ),
                user_id=user_id,
                reservation_id=reservation.id,
            )
            await self.sink.notify(
                uow,
                user_id=user_id,
                kind=NotificationKind.BOOKING,
                title="Reservation confirmed",
                message=(
                    f"Your reservation for seat {seat.label} in {room.name} is confirmed for "
                    f"{day:%d/%m/%Y} from {_hhmm(start)} to {_hhmm(end)}."
                ),
                action_ref=f"/reservations/{reservation.id}",
            )
            await uow.commit()

        custom_logger.info(f"Reservation {reservation.id} created: seat={seat_id} date={day} {_hhmm(start)}-{_hhmm(end)}")
        return reservation

    async def check_in(self, reservation_id: str, *, operator_override: bool = False) -> Reservation:
        async with self.uow_factory() as uow:
            reservation, seat = await self._load_locked(uow, reservation_id)
            if seat.state == SeatState.MAINTENANCE:
                raise SeatUnavailable(f"Seat {seat.label} is under maintenance")
            if reservation.state == ReservationState.CONFIRMED and await self._checked_in_elsewhere(
                uow, seat, reservation
            ):
                raise SeatUnavailable(f"Seat {seat.label} is still occupied by the previous reservation")
            result = await self._apply(uow, reservation, seat, Trigger.CHECK_IN, operator_override=operator_override)
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.CHECK_IN,
                description=f"Check-in for seat {seat.label}",
                details=audit.CheckInDetails(seat_id=seat.id, operator_override=operator_override),
                user_id=reservation.user_id,
                reservation_id=reservation.id,
            )
            if operator_override:
                await self.sink.notify(
                    uow,
                    user_id=reservation.user_id,
                    kind=NotificationKind.BOOKING,
                    title="Check-in recorded",
                    message=f"Staff checked you in for seat {seat.label} on {reservation.date:%d/%m/%Y}.",
                    action_ref=f"/reservations/{reservation.id}",
                )
            await uow.commit()

        custom_logger.info(f"Reservation {reservation_id} checked in (override={operator_override})")
        return result.reservation

    async def check_out(self, reservation_id: str) -> Reservation:
        async with self.uow_factory() as uow:
            reservation, seat = await self._load_locked(uow, reservation_id)
            result = await self._apply(uow, reservation, seat, Trigger.CHECK_OUT)
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.CHECK_OUT,
                description=f"Check-out for seat {seat.label}",
                details=audit.CheckOutDetails(seat_id=seat.id),
                user_id=reservation.user_id,
                reservation_id=reservation.id,
            )
            await uow.commit()

        custom_logger.info(f"Reservation {reservation_id} checked out")
        return result.reservation

    async def cancel(
        self, reservation_id: str, *, by_operator: bool = False, reason: str | None = None
    ) -> Reservation:
        trigger = Trigger.OPERATOR_CANCEL if by_operator else Trigger.CANCEL
        async with self.uow_factory() as uow:
            reservation, seat = await self._load_locked(uow, reservation_id)
            result = await self._apply(uow, reservation, seat, trigger)
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.RESERVATION_CANCELLED,
                description=f"Reservation cancelled for seat {seat.label}",
                details=audit.ReservationCancelledDetails(
                    seat_id=seat.id,
                    previous_state=result.previous_state.value,
                    by_operator=by_operator,
                    reason=reason,
                ),
                user_id=reservation.user_id,
                reservation_id=reservation.id,
            )
            await self.sink.notify(
                uow,
                user_id=reservation.user_id,
                kind=NotificationKind.SYSTEM,
                title="Reservation cancelled",
                message=(
                    f"Your reservation for seat {seat.label} on {reservation.date:%d/%m/%Y} "
                    f"({_hhmm(reservation.start_time)}-{_hhmm(reservation.end_time)}) "
                    + ("was cancelled by the staff." if by_operator else "has been cancelled.")
                ),
                action_ref="/reservations",
            )
            await uow.commit()

        custom_logger.info(f"Reservation {reservation_id} cancelled (operator={by_operator})")
        return result.reservation

    async def cancel_many(self, reservation_ids: Sequence[str], reason: str | None = None) -> dict[str, str]:
        """Operator bulk cancel; each reservation commits or fails on its own."""
        outcomes: dict[str, str] = {}
        for reservation_id in reservation_ids:
            try:
                cancelled = await self.cancel(reservation_id, by_operator=True, reason=reason)
                outcomes[reservation_id] = cancelled.state.value
            except ReservationError as exc:
                outcomes[reservation_id] = f"error: {exc.message}"
        return outcomes

    async def extend(self, reservation_id: str, new_end: time) -> Reservation:
        async with self.uow_factory() as uow:
            reservation, seat = await self._load_locked(uow, reservation_id)
            if not reservation.is_active:
                raise InvalidTransition("Only active reservations can be extended")
            if new_end <= reservation.end_time:
                raise InvalidRange("The new end time must be after the current one")
            room = await self._room_of(uow, seat)
            if new_end > room.closing_time:
                raise OutOfHours(f"Cannot extend past closing time ({_hhmm(room.closing_time)})")
            self._check_duration(reservation.date, reservation.start_time, new_end)
            if not await is_slot_free(
                uow, seat.id, reservation.date, reservation.end_time, new_end, exclude_reservation_id=reservation.id
            ):
                raise SlotTaken("The requested extension overlaps another reservation")

            extended = replace(reservation, end_time=new_end)
            await uow.reservations.update(extended)
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.RESERVATION_EXTENDED,
                description=f"Reservation extended to {_hhmm(new_end)} for seat {seat.label}",
                details=audit.ReservationExtendedDetails(
                    seat_id=seat.id, previous_end=reservation.end_time, new_end=new_end
                ),
                user_id=reservation.user_id,
                reservation_id=reservation.id,
            )
            await self.sink.notify(
                uow,
                user_id=reservation.user_id,
                kind=NotificationKind.SYSTEM,
                title="Reservation extended",
                message=f"Your reservation for seat {seat.label} now ends at {_hhmm(new_end)}.",
                action_ref=f"/reservations/{reservation.id}",
            )
            await uow.commit()

        custom_logger.info(f"Reservation {reservation_id} extended to {_hhmm(new_end)}")
        return extended

    async def reschedule(self, reservation_id: str, changes: RescheduleChanges) -> Reservation:
        """Administrative move of a reservation to another seat, date or time."""
        async with self.uow_factory() as uow:
            current = await uow.reservations.get(reservation_id)
            if current is None:
                raise NotFound(f"Reservation {reservation_id} not found")
            target_seat_id = changes.seat_id if changes.seat_id is not None else current.seat_id
            locked = await uow.lock_seats(current.seat_id, target_seat_id)
            current = await uow.reservations.get(reservation_id)

            if not current.is_active:
                raise InvalidTransition(f"Cannot modify a reservation in state {current.state.value}")
            day = changes.date if changes.date is not None else current.date
            start = changes.start_time if changes.start_time is not None else current.start_time
            end = changes.end_time if changes.end_time is not None else current.end_time
            validate_range(start, end)

            if current.state == ReservationState.CHECKED_IN and (
                target_seat_id != current.seat_id or day != current.date or start != current.start_time
            ):
                raise InvalidTransition("A checked-in reservation can only change its end time")

            target_seat = locked[target_seat_id]
            if target_seat is None:
                raise NotFound(f"Seat {target_seat_id} not found")
            if target_seat_id != current.seat_id and target_seat.state == SeatState.MAINTENANCE:
                raise SeatUnavailable(f"Seat {target_seat.label} is under maintenance")
            room = await self._room_of(uow, target_seat)
            self._check_hours(room, start, end)
            self._check_duration(day, start, end)
            if not await is_slot_free(uow, target_seat_id, day, start, end, exclude_reservation_id=current.id):
                raise SlotTaken(f"Seat {target_seat.label} is already booked for this time")

            moved = replace(current, seat_id=target_seat_id, date=day, start_time=start, end_time=end)
            await uow.reservations.update(moved)
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.RESERVATION_MODIFIED,
                description=f"Reservation moved to seat {target_seat.label} on {day:%d/%m/%Y}",
                details=audit.ReservationModifiedDetails(
                    previous_seat_id=current.seat_id,
                    seat_id=target_seat_id,
                    previous_date=current.date,
                    on_date=day,
                    start_time=start,
                    end_time=end,
                ),
                user_id=current.user_id,
                reservation_id=current.id,
            )
            await self.sink.notify(
                uow,
                user_id=current.user_id,
                kind=NotificationKind.SYSTEM,
                title="Reservation updated",
                message=(
                    f"Your reservation was changed by the staff: seat {target_seat.label}, "
                    f"{day:%d/%m/%Y} from {_hhmm(start)} to {_hhmm(end)}."
                ),
                action_ref=f"/reservations/{current.id}",
            )
            await uow.commit()

        custom_logger.info(f"Reservation {reservation_id} rescheduled to seat={target_seat_id} date={day}")
        return moved

    async def release_no_show(self, reservation_id: str) -> Reservation | None:
        """Mark a reservation NO_SHOW if it is still eligible; None when a concurrent caller got there first."""
        async with self.uow_factory() as uow:
            reservation, seat = await self._load_locked(uow, reservation_id)
            now = self.clock()
            if not self.state_machine.no_show_due(reservation, now):
                return None
            room = await self._room_of(uow, seat)
            result = await self._apply(uow, reservation, seat, Trigger.NO_SHOW)
            await self.sink.notify(
                uow,
                user_id=reservation.user_id,
                kind=NotificationKind.ALERT,
                title="Reservation cancelled: no-show",
                message=(
                    f"Your reservation for seat {seat.label} in {room.name} was cancelled because you did not "
                    f"check in within {self.config.NO_SHOW_GRACE_MINUTES} minutes of the start time."
                ),
                action_ref="/reservations",
            )
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.NO_SHOW,
                description=f"Automatic release of seat {seat.label} for no-show",
                details=audit.NoShowDetails(
                    seat_id=seat.id, start_time=reservation.start_time, released_at=now, automatic=True
                ),
                user_id=reservation.user_id,
                reservation_id=reservation.id,
            )
            await uow.commit()

        return result.reservation
