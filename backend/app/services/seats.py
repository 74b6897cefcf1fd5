from collections.abc import Sequence
from dataclasses import replace

from backend.app.core.errors import InvalidTransition, NotFound
from backend.app.core.logger_config import custom_logger
from backend.app.domain import audit
from backend.app.domain.models import Seat, SeatState, SeatUpdate
from backend.app.repositories.base import UnitOfWorkFactory
from backend.app.services.events import EventSink


class SeatService:
    """Operator actions on seats. OCCUPIED is owned by the reservation lifecycle."""

    def __init__(self, uow_factory: UnitOfWorkFactory, sink: EventSink):
        self.uow_factory = uow_factory
        self.sink = sink

    async def list_room(self, room_id: str) -> Sequence[Seat]:
        async with self.uow_factory() as uow:
            if await uow.rooms.get(room_id) is None:
                raise NotFound(f"Room {room_id} not found")
            return await uow.seats.list_by_room(room_id)

    async def set_state(self, seat_id: str, state: SeatState, reason: str | None = None) -> Seat:
        if state == SeatState.OCCUPIED:
            raise InvalidTransition("Seats become occupied only through a check-in")

        async with self.uow_factory() as uow:
            seat = await uow.seats.lock(seat_id)
            if seat is None:
                raise NotFound(f"Seat {seat_id} not found")
            if seat.state == SeatState.OCCUPIED:
                raise InvalidTransition(f"Seat {seat.label} is occupied, check the guest out first")
            if seat.state == state:
                return seat

            await uow.seats.set_state(seat_id, state)
            await self.sink.audit(
                uow,
                kind=audit.AuditKind.SEAT_STATE,
                description=f"Seat {seat.label} set to {state.value}",
                details=audit.SeatStateDetails(
                    seat_id=seat_id, previous_state=seat.state, new_state=state, reason=reason
                ),
            )
            self.sink.seat_changed(
                uow, SeatUpdate(room_id=seat.room_id, seat_id=seat_id, new_state=state, seat_label=seat.label)
            )
            await uow.commit()

        custom_logger.info(f"Seat {seat_id} set to {state.value}")
        return replace(seat, state=state)
